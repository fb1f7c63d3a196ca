"""
Scheduler Runner

Runs the sync scheduler as a standalone process. Every replica runs this;
the scheduler gate keeps periodic jobs cluster-wide exclusive.
"""

import asyncio
import os
import signal
import socket

import httpx
import structlog

from activity_sync.config import get_settings
from activity_sync.connectors.config_service import ConfigurationServiceClient
from activity_sync.connectors.github import GithubClient
from activity_sync.connectors.jira import JiraClient
from activity_sync.db.client import close_db_pool, init_db_pool
from activity_sync.db.store import PostgresSyncStore
from activity_sync.logging_setup import configure_logging
from activity_sync.monitoring.metrics import get_metrics
from activity_sync.monitoring.prometheus_server import maybe_start_prometheus_http_server
from activity_sync.resilience.wrapper import CONFIG_SERVICE, GITHUB, JIRA, ResilienceRegistry
from activity_sync.scheduling.gate import SchedulerGate
from activity_sync.scheduling.leases import PostgresLeaseStore
from activity_sync.scheduling.scheduler import SyncScheduler
from activity_sync.sync.executor import BoundedTaskExecutor
from activity_sync.sync.ledger import JobLedger
from activity_sync.sync.orchestrator import SyncOrchestrator
from activity_sync.sync.pipeline import SyncPipeline

logger = structlog.get_logger()


def _holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


async def _run() -> None:
    configure_logging()
    settings = get_settings()

    await init_db_pool()
    maybe_start_prometheus_http_server(component="sync-scheduler")

    metrics = get_metrics()
    http_client = httpx.AsyncClient(follow_redirects=True)
    registry = ResilienceRegistry(settings, metrics=metrics)

    config_client = ConfigurationServiceClient(http_client, registry.get(CONFIG_SERVICE), settings)
    store = PostgresSyncStore()
    ledger = JobLedger(store, metrics)
    pipeline = SyncPipeline(
        config_client=config_client,
        jira_client=JiraClient(http_client, registry.get(JIRA), settings),
        github_client=GithubClient(http_client, registry.get(GITHUB), settings),
        store=store,
        ledger=ledger,
        metrics=metrics,
    )
    executor = BoundedTaskExecutor(
        workers=settings.sync_executor_workers,
        queue_capacity=settings.sync_executor_queue_capacity,
        metrics=metrics,
    )
    executor.start()
    orchestrator = SyncOrchestrator(
        config_client=config_client,
        pipeline=pipeline,
        ledger=ledger,
        executor=executor,
        metrics=metrics,
    )
    holder_id = _holder_id()
    scheduler = SyncScheduler(
        gate=SchedulerGate(PostgresLeaseStore(holder_id)),
        orchestrator=orchestrator,
        executor=executor,
        resilience=registry,
        settings=settings,
    )
    scheduler.start()
    logger.info("Scheduler runner started", holder_id=holder_id)

    # Sleep forever until signal
    stop_event = asyncio.Event()

    def _handle_signal(*_args):
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            asyncio.get_running_loop().add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    try:
        await stop_event.wait()
    finally:
        scheduler.shutdown()
        await executor.shutdown(grace_seconds=settings.sync_executor_shutdown_grace_seconds)
        # Batches finalize cancelled jobs after the executor drops them.
        if not await orchestrator.wait_idle(timeout=10):
            logger.warning("Sync batches still finalizing at shutdown")
        await http_client.aclose()
        await close_db_pool()
        logger.info("Scheduler runner stopped")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
