"""
Monitoring Module

Provides Prometheus metrics for the sync service.
"""

from activity_sync.monitoring.metrics import SyncMetrics, get_metrics

__all__ = [
    "SyncMetrics",
    "get_metrics",
]
