"""
Scheduler Leases

Time-bounded, named leases stored in `scheduler_locks`. All timing uses the
database clock (`now()`), so clock skew between replicas does not matter.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import structlog

from activity_sync.db import client as db_client
from activity_sync.kernel.time import coerce_utc

logger = structlog.get_logger()


@dataclass(frozen=True)
class Lease:
    name: str
    locked_at: datetime
    lock_until: datetime
    locked_by: str


class LeaseStore(Protocol):
    async def try_acquire(self, name: str, max_hold: timedelta) -> Lease | None:
        """Take the lease unless another holder's lease is still live."""
        ...

    async def release(self, lease: Lease, min_hold: timedelta) -> None:
        """Shorten the lease to `max(now, locked_at + min_hold)`."""
        ...


# The conditional upsert is the whole mutual exclusion: a live row makes the
# WHERE false, so nothing is returned.
_ACQUIRE_SQL = """
INSERT INTO scheduler_locks (name, lock_until, locked_at, locked_by)
VALUES ($1, now() + $2::interval, now(), $3)
ON CONFLICT (name) DO UPDATE
SET lock_until = EXCLUDED.lock_until,
    locked_at = EXCLUDED.locked_at,
    locked_by = EXCLUDED.locked_by
WHERE scheduler_locks.lock_until <= now()
RETURNING name, locked_at, lock_until, locked_by
"""

_RELEASE_SQL = """
UPDATE scheduler_locks
SET lock_until = GREATEST(now(), locked_at + $3::interval)
WHERE name = $1 AND locked_by = $2
"""


class PostgresLeaseStore:
    """Leases held on behalf of one replica, identified by `holder_id`."""

    def __init__(self, holder_id: str):
        self.holder_id = holder_id

    async def try_acquire(self, name: str, max_hold: timedelta) -> Lease | None:
        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(_ACQUIRE_SQL, name, max_hold, self.holder_id)
        if row is None:
            return None
        return Lease(
            name=row["name"],
            locked_at=coerce_utc(row["locked_at"]),
            lock_until=coerce_utc(row["lock_until"]),
            locked_by=row["locked_by"],
        )

    async def release(self, lease: Lease, min_hold: timedelta) -> None:
        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            await conn.execute(_RELEASE_SQL, lease.name, lease.locked_by, min_hold)
