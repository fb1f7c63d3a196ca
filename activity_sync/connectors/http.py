"""
HTTP helpers for connectors.

Turns non-success responses into `HttpStatusError` so the resilience layer can
classify them. Retries live in `ResilienceWrapper`, not here.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog

from activity_sync.errors import HttpStatusError
from activity_sync.resilience.classifier import classify

logger = structlog.get_logger()

_MAX_DETAIL_CHARS = 200


def parse_retry_after(value: str | None) -> float | None:
    """Parse a `Retry-After` header given in seconds; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def parse_rate_limit_reset(value: str | None, *, now: float | None = None) -> float | None:
    """Seconds until an `X-RateLimit-Reset` epoch timestamp, never negative."""
    if not value:
        return None
    try:
        reset_at = float(value.strip())
    except ValueError:
        return None
    current = time.time() if now is None else now
    return max(reset_at - current, 0.0)


def is_throttled_forbidden(response: httpx.Response) -> bool:
    """A 403 that reports an exhausted quota rather than a bad credential."""
    if response.status_code != 403:
        return False
    headers = response.headers
    return headers.get("X-RateLimit-Remaining", "").strip() == "0" or "Retry-After" in headers


def raise_for_status(response: httpx.Response) -> None:
    if classify(response.status_code).is_success:
        return

    detail = None
    try:
        detail = response.text[:_MAX_DETAIL_CHARS] or None
    except Exception:
        detail = None

    retry_after = parse_retry_after(response.headers.get("Retry-After"))
    rate_limited = is_throttled_forbidden(response)
    if rate_limited and retry_after is None:
        retry_after = parse_rate_limit_reset(response.headers.get("X-RateLimit-Reset"))

    raise HttpStatusError(
        status_code=response.status_code,
        url=str(response.request.url),
        retry_after=retry_after,
        detail=detail,
        rate_limited=rate_limited,
    )


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> Any:
    """
    Make a single HTTP request and return the decoded JSON body.

    Raises `HttpStatusError` for any non-success status. Transport errors and
    timeouts propagate unchanged for the classifier to handle.
    """
    response = await client.request(method, url, **kwargs)
    raise_for_status(response)
    if response.status_code == 204 or not response.content:
        return None
    return response.json()
