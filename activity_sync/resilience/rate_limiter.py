"""
Client-side rate limiter.

Spaces calls to one dependency evenly at `rate_per_minute`, shared by every
tenant that talks to it, so a large batch cannot burst through the provider's
quota.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable


class RateLimiter:
    def __init__(
        self,
        name: str,
        rate_per_minute: int,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.rate_per_minute = rate_per_minute
        self._sleep = sleep
        self._clock = clock
        self._next_allowed = 0.0
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.rate_per_minute > 0

    async def acquire(self) -> float:
        """Wait for the next slot. Returns the seconds waited."""
        if not self.enabled:
            return 0.0
        interval = 60.0 / float(self.rate_per_minute)
        async with self._lock:
            now = self._clock()
            waited = max(self._next_allowed - now, 0.0)
            if waited > 0:
                await self._sleep(waited)
            self._next_allowed = max(now, self._next_allowed) + interval
        return waited
