"""
Distributed Scheduler Gate

Runs a periodic body on at most one replica at a time:

- acquire the named lease for at most `max_hold` (it expires by itself if
  the holder dies)
- run the body
- release, keeping the lease for at least `min_hold` so a replica whose
  clock fires slightly later does not run the same tick again

Being denied is the normal case on all but one replica and is logged at
debug level only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Generic, TypeVar

import structlog

from activity_sync.scheduling.leases import LeaseStore

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class GateResult(Generic[T]):
    granted: bool
    value: T | None = None

    @classmethod
    def denied(cls) -> "GateResult[Any]":
        return cls(granted=False)


class SchedulerGate:
    def __init__(self, lease_store: LeaseStore):
        self.lease_store = lease_store

    async def attempt_run(
        self,
        lock_name: str,
        max_hold: timedelta,
        min_hold: timedelta,
        body: Callable[[], Awaitable[T]],
    ) -> GateResult[T]:
        """Run `body` if this replica wins the lease, else return a denied result.

        Exceptions from `body` propagate after the lease is released.
        """
        if min_hold > max_hold:
            raise ValueError("min_hold must not exceed max_hold")

        lease = await self.lease_store.try_acquire(lock_name, max_hold)
        if lease is None:
            logger.debug("Scheduler lease held elsewhere, skipping tick", lock_name=lock_name)
            return GateResult.denied()

        logger.debug(
            "Scheduler lease acquired",
            lock_name=lock_name,
            locked_by=lease.locked_by,
            lock_until=lease.lock_until.isoformat(),
        )
        try:
            value = await body()
        finally:
            try:
                await self.lease_store.release(lease, min_hold)
            except Exception as exc:
                # The lease still expires at lock_until.
                logger.warning("Failed to release scheduler lease", lock_name=lock_name, error=str(exc))
        return GateResult(granted=True, value=value)
