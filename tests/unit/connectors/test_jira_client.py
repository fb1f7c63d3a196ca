"""
Unit tests for the Jira issue search client.
"""

import base64

import httpx
import pytest

from activity_sync.connectors.jira import SEARCH_FIELDS, JiraClient
from activity_sync.errors import ExternalCallError
from activity_sync.resilience.classifier import SyncOutcome
from activity_sync.resilience.wrapper import JIRA
from tests.support.clock import FakeClock
from tests.support.sync import credentials, resilience_wrapper

pytestmark = pytest.mark.unit


def _issue(n):
    return {"id": str(n), "key": f"P1-{n}", "fields": {"summary": f"Issue {n}", "issuetype": {"name": "Task"}}}


def _client(handler, settings, metrics, clock=None):
    clock = clock or FakeClock()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JiraClient(http, resilience_wrapper(JIRA, metrics, clock), settings), http, clock


@pytest.mark.asyncio
async def test_paginates_until_total_is_reached(settings, metrics):
    requests = []

    def handler(request):
        requests.append(request)
        start = int(request.url.params["startAt"])
        issues = [_issue(n) for n in range(start, min(start + 2, 3))]
        return httpx.Response(200, json={"startAt": start, "total": 3, "issues": issues})

    client, http, _ = _client(handler, settings, metrics)
    issues = await client.fetch_issues(credentials(1))
    await http.aclose()

    assert [i.key for i in issues] == ["P1-0", "P1-1", "P1-2"]
    assert [r.url.params["startAt"] for r in requests] == ["0", "2"]
    first = requests[0]
    assert str(first.url).startswith("https://tenant1.atlassian.test/rest/api/3/search")
    assert first.url.params["jql"] == 'project = "P1" ORDER BY updated DESC'
    assert first.url.params["maxResults"] == "2"
    assert first.url.params["fields"] == SEARCH_FIELDS
    expected_auth = base64.b64encode(b"x:jira-token").decode()
    assert first.headers["Authorization"] == f"Basic {expected_auth}"


@pytest.mark.asyncio
async def test_stops_at_max_pages(settings, metrics):
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        start = int(request.url.params["startAt"])
        return httpx.Response(200, json={"total": 1000, "issues": [_issue(start), _issue(start + 1)]})

    client, http, _ = _client(handler, settings, metrics)
    issues = await client.fetch_issues(credentials(1))
    await http.aclose()

    assert calls == settings.sync_max_pages
    assert len(issues) == 2 * settings.sync_max_pages


@pytest.mark.asyncio
async def test_transient_page_error_is_retried(settings, metrics):
    responses = [httpx.Response(503), httpx.Response(200, json={"total": 1, "issues": [_issue(1)]})]

    client, http, clock = _client(lambda request: responses.pop(0), settings, metrics)
    issues = await client.fetch_issues(credentials(1))
    await http.aclose()

    assert [i.key for i in issues] == ["P1-1"]
    assert len(clock.sleeps) == 1


@pytest.mark.asyncio
async def test_unauthorized_is_a_configuration_error(settings, metrics):
    client, http, clock = _client(lambda request: httpx.Response(401, text="bad token"), settings, metrics)

    with pytest.raises(ExternalCallError) as exc_info:
        await client.fetch_issues(credentials(1))
    await http.aclose()

    assert exc_info.value.outcome is SyncOutcome.FAILED_INVALID_CREDENTIAL
    assert "bad token" in exc_info.value.message
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_missing_jira_settings_fail_without_request(settings, metrics):
    def handler(request):
        raise AssertionError("no request expected")

    client, http, _ = _client(handler, settings, metrics)
    creds = credentials(1).model_copy(update={"jira_project_key": None})

    with pytest.raises(ExternalCallError) as exc_info:
        await client.fetch_issues(creds)
    await http.aclose()

    assert exc_info.value.outcome is SyncOutcome.FAILED_BAD_REQUEST


@pytest.mark.asyncio
async def test_project_key_is_quoted_as_a_jql_literal(settings, metrics):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"startAt": 0, "total": 0, "issues": []})

    tenant = credentials(1).model_copy(update={"jira_project_key": 'P1" OR project != "X'})
    client, http, _ = _client(handler, settings, metrics)
    await client.fetch_issues(tenant)
    await http.aclose()

    assert requests[0].url.params["jql"] == 'project = "P1\\" OR project != \\"X" ORDER BY updated DESC'
