"""
Bounded Task Executor

A fixed pool of asyncio worker tasks draining a bounded queue.

Backpressure is explicit: when `workers + queue_capacity` tasks are already
outstanding (running or queued), `submit()` raises `TaskRejectedError`
immediately instead of waiting for space. The scheduler tick therefore never
blocks on a saturated pool.

Each submitted task runs in a copy of the submitter's contextvars, so the
batch correlation id bound by the orchestrator follows the task into the
worker.
"""

from __future__ import annotations

import asyncio
import contextvars
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

import structlog

from activity_sync.errors import ExecutorShutdownError, TaskRejectedError
from activity_sync.monitoring.metrics import SyncMetrics

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class _WorkItem(Generic[T]):
    func: Callable[[], Awaitable[T]]
    future: asyncio.Future
    context: contextvars.Context


class BoundedTaskExecutor:
    """
    Fixed-size worker pool with a bounded queue and rejection on saturation.

    Usage:
        executor = BoundedTaskExecutor(workers=5, queue_capacity=100, metrics=metrics)
        executor.start()
        future = executor.submit(lambda: pipeline.run(job))
        result = await future
        await executor.shutdown(grace_seconds=60)
    """

    def __init__(
        self,
        *,
        workers: int,
        queue_capacity: int,
        metrics: SyncMetrics,
        name: str = "sync-executor",
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        if queue_capacity < 0:
            raise ValueError("queue_capacity must be non-negative")

        self.workers = workers
        self.queue_capacity = queue_capacity
        self.metrics = metrics
        self.name = name

        self._queue: asyncio.Queue[_WorkItem[Any] | None] = asyncio.Queue()
        self._worker_tasks: list[asyncio.Task] = []
        self._in_flight: set[asyncio.Task] = set()
        self._queued = 0
        self._running = 0
        self._accepting = False

    @property
    def capacity(self) -> int:
        return self.workers + self.queue_capacity

    @property
    def running(self) -> int:
        return self._running

    @property
    def queued(self) -> int:
        return self._queued

    @property
    def outstanding(self) -> int:
        return self._running + self._queued

    @property
    def is_running(self) -> bool:
        return self._accepting

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from inside the event loop."""
        if self._accepting:
            return
        self._accepting = True
        for index in range(self.workers):
            task = asyncio.create_task(self._worker(index), name=f"{self.name}-{index}")
            self._worker_tasks.append(task)
        logger.info(
            "Executor started",
            executor=self.name,
            workers=self.workers,
            queue_capacity=self.queue_capacity,
        )

    def submit(self, func: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """
        Queue `func` for execution and return a future for its result.

        Raises `TaskRejectedError` when the pool is saturated and
        `ExecutorShutdownError` once shutdown has begun.
        """
        if not self._accepting:
            raise ExecutorShutdownError()

        if self.outstanding >= self.capacity:
            raise TaskRejectedError(outstanding=self.outstanding, capacity=self.capacity)

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        item = _WorkItem(
            func=func,
            future=future,
            context=contextvars.copy_context(),
        )
        self._queued += 1
        self._queue.put_nowait(item)
        self._report_load()
        return future

    async def shutdown(self, grace_seconds: float = 60.0) -> int:
        """
        Stop accepting work, drop queued tasks, and wait for in-flight ones.

        In-flight tasks still running after `grace_seconds` are cancelled.
        Returns the number of queued tasks that were dropped. Dropped and
        timed-out tasks are both counted in `sync_tasks_cancelled_total`.
        """
        if not self._accepting and not self._worker_tasks:
            return 0
        self._accepting = False

        dropped = self._drain_queue()
        if dropped:
            self.metrics.track_task_cancelled(dropped)
            logger.warning("Dropped queued tasks on shutdown", executor=self.name, cancelled=dropped)

        if self._in_flight:
            _, pending = await asyncio.wait(set(self._in_flight), timeout=max(grace_seconds, 0))
            if pending:
                logger.warning(
                    "Cancelling in-flight tasks after grace period",
                    executor=self.name,
                    count=len(pending),
                    grace_seconds=grace_seconds,
                )
                for task in pending:
                    task.cancel()
                self.metrics.track_task_cancelled(len(pending))
                await asyncio.gather(*pending, return_exceptions=True)

        for _ in self._worker_tasks:
            self._queue.put_nowait(None)
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks.clear()
        self._report_load()

        logger.info("Executor stopped", executor=self.name, cancelled=dropped)
        return dropped

    def _drain_queue(self) -> int:
        dropped = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is None:
                continue
            self._queued -= 1
            if not item.future.done():
                item.future.cancel()
            dropped += 1
        return dropped

    async def _worker(self, index: int) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                return

            self._queued -= 1
            if item.future.cancelled():
                self._report_load()
                continue

            self._running += 1
            self._report_load()
            task = asyncio.create_task(item.func(), context=item.context)
            self._in_flight.add(task)
            try:
                result = await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.done():
                    # The worker itself is being torn down; let shutdown handle the task.
                    raise
                if not item.future.done():
                    item.future.cancel()
            except Exception as exc:
                # Never crash the worker loop because of a single task.
                if not item.future.done():
                    item.future.set_exception(exc)
            else:
                if not item.future.done():
                    item.future.set_result(result)
            finally:
                self._in_flight.discard(task)
                self._running -= 1
                self._report_load()

    def _report_load(self) -> None:
        self.metrics.set_executor_load(queued=self._queued, active=self._running)
