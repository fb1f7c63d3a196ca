"""
Scheduling Module

Periodic triggers guarded by a cluster-wide lease so each tick runs on one
replica only.
"""

from activity_sync.scheduling.gate import GateResult, SchedulerGate
from activity_sync.scheduling.leases import Lease, LeaseStore, PostgresLeaseStore
from activity_sync.scheduling.scheduler import SyncScheduler

__all__ = [
    "GateResult",
    "Lease",
    "LeaseStore",
    "PostgresLeaseStore",
    "SchedulerGate",
    "SyncScheduler",
]
