"""
Unit tests for the GitHub commit client.
"""

import httpx
import pytest

from activity_sync.connectors.github import API_VERSION, GithubClient, parse_repo_url
from activity_sync.errors import ExternalCallError
from activity_sync.resilience.classifier import SyncOutcome
from activity_sync.resilience.wrapper import GITHUB
from tests.support.clock import FakeClock
from tests.support.sync import credentials, resilience_wrapper

pytestmark = pytest.mark.unit


def _listed(sha):
    return {"sha": sha, "commit": {"message": f"msg {sha}", "author": {"date": "2026-01-01T00:00:00Z"}}}


def _client(handler, settings, metrics, clock=None):
    clock = clock or FakeClock()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GithubClient(http, resilience_wrapper(GITHUB, metrics, clock), settings), http


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://github.com/octo/repo", ("octo", "repo")),
        ("https://github.com/octo/repo.git", ("octo", "repo")),
        ("https://ghe.example.com/octo/repo/", ("octo", "repo")),
        ("octo/repo", ("octo", "repo")),
    ],
)
def test_parse_repo_url(url, expected):
    assert parse_repo_url(url) == expected


def test_parse_repo_url_rejects_incomplete_urls():
    with pytest.raises(ExternalCallError) as exc_info:
        parse_repo_url("https://github.com/octo")
    assert exc_info.value.outcome is SyncOutcome.FAILED_BAD_REQUEST


@pytest.mark.asyncio
async def test_lists_pages_and_fetches_commit_detail(settings, metrics):
    seen = []

    def handler(request):
        seen.append(request)
        path = request.url.path
        if path == "/repos/tenant1/repo/commits":
            page = int(request.url.params["page"])
            body = {1: [_listed("a"), _listed("b")], 2: [_listed("c")]}[page]
            return httpx.Response(200, json=body)
        sha = path.rsplit("/", 1)[-1]
        return httpx.Response(
            200,
            json={
                "sha": sha,
                "stats": {"additions": 1, "deletions": 0, "total": 1},
                "files": [{"filename": f"{sha}.txt", "status": "added", "additions": 1, "changes": 1}],
            },
        )

    client, http = _client(handler, settings, metrics)
    commits = await client.fetch_commits(credentials(1))
    await http.aclose()

    assert [c.sha for c in commits] == ["a", "b", "c"]
    assert all(c.stats.total == 1 for c in commits)
    assert commits[0].files[0].filename == "a.txt"
    assert commits[0].commit.message == "msg a"
    listing = seen[0]
    assert listing.headers["Authorization"] == "Bearer gh-token"
    assert listing.headers["X-GitHub-Api-Version"] == API_VERSION
    assert listing.url.params["per_page"] == "2"


@pytest.mark.asyncio
async def test_commit_with_stats_skips_detail_request(settings, metrics):
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200, json=[{**_listed("a"), "stats": {"additions": 2, "deletions": 2, "total": 4}}])

    client, http = _client(handler, settings, metrics)
    commits = await client.fetch_commits(credentials(1))
    await http.aclose()

    assert paths == ["/repos/tenant1/repo/commits"]
    assert commits[0].stats.total == 4


@pytest.mark.asyncio
async def test_missing_repository_is_not_found(settings, metrics):
    client, http = _client(lambda request: httpx.Response(404, json={"message": "Not Found"}), settings, metrics)

    with pytest.raises(ExternalCallError) as exc_info:
        await client.fetch_commits(credentials(1))
    await http.aclose()

    assert exc_info.value.outcome is SyncOutcome.FAILED_NOT_FOUND


@pytest.mark.asyncio
async def test_exhausted_quota_forbidden_is_retried_after_the_advertised_delay(settings, metrics):
    responses = [
        httpx.Response(403, headers={"X-RateLimit-Remaining": "0", "Retry-After": "1"}),
        httpx.Response(200, json=[]),
    ]
    clock = FakeClock()
    client, http = _client(lambda request: responses.pop(0), settings, metrics, clock)

    commits = await client.fetch_commits(credentials(1))
    await http.aclose()

    assert commits == []
    assert clock.sleeps == [1.0]


@pytest.mark.asyncio
async def test_persistent_quota_exhaustion_is_rate_limited_not_a_bad_credential(settings, metrics):
    def handler(request):
        return httpx.Response(403, headers={"X-RateLimit-Remaining": "0", "Retry-After": "0"})

    client, http = _client(handler, settings, metrics)

    with pytest.raises(ExternalCallError) as exc_info:
        await client.fetch_commits(credentials(1))
    await http.aclose()

    assert exc_info.value.outcome is SyncOutcome.FAILED_RATE_LIMITED
    assert not exc_info.value.outcome.is_configuration_error
    assert exc_info.value.attempts == 3
