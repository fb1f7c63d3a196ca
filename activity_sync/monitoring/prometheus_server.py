"""Prometheus HTTP server for the sync scheduler process.

The scheduler runs as a standalone process and exposes its own metrics port
for Prometheus to scrape.

Enable by setting `PROMETHEUS_METRICS_PORT` in the process environment.
"""

from __future__ import annotations

import structlog
from prometheus_client import start_http_server

from activity_sync.config import get_settings

logger = structlog.get_logger()

_started = False


def maybe_start_prometheus_http_server(*, component: str) -> bool:
    """Start a metrics server if `PROMETHEUS_METRICS_PORT` is configured."""
    global _started
    if _started:
        return True

    port = get_settings().prometheus_metrics_port
    if port is None:
        return False

    if port <= 0 or port > 65535:
        logger.warning(
            "Invalid PROMETHEUS_METRICS_PORT (metrics server disabled)",
            component=component,
            value=port,
        )
        return False

    # Listen on all interfaces so the Prometheus container can scrape it.
    start_http_server(port, addr="0.0.0.0")
    _started = True
    logger.info("Prometheus metrics server started", component=component, port=port)
    return True
