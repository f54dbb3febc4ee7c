"""Temporal worker hosting the sync workflows and provider activities."""

import asyncio
import signal
from datetime import timedelta
from typing import Any, Callable, Optional, Sequence

import structlog
from temporalio.client import Client
from temporalio.worker import UnsandboxedWorkflowRunner, Worker, WorkflowRunner
from temporalio.worker.workflow_sandbox import SandboxedWorkflowRunner

from connector_sync.config import Settings, load_settings

from .crawl import CrawlWorkflow
from .interceptors import ActivityMetricsInterceptor
from .sync import (
    ContainerSyncWorkflow,
    DebouncedSyncWorkflow,
    FullSyncWorkflow,
    GarbageCollectWorkflow,
    ReposSyncWorkflow,
)

logger = structlog.get_logger(__name__)

WORKFLOWS = [
    FullSyncWorkflow,
    ReposSyncWorkflow,
    ContainerSyncWorkflow,
    DebouncedSyncWorkflow,
    GarbageCollectWorkflow,
    CrawlWorkflow,
]


def sandbox_config(disable_sandbox: bool) -> WorkflowRunner:
    """Determine the workflow runner."""
    if disable_sandbox:
        logger.warning("temporal_sandbox_disabled")
        return UnsandboxedWorkflowRunner()
    return SandboxedWorkflowRunner()


def build_worker(
    client: Client,
    task_queue: str,
    activities: Sequence[Callable[..., Any]],
    disable_sandbox: bool = False,
    graceful_shutdown_seconds: float = 0.0,
) -> Worker:
    """Build a worker for every sync workflow and the given activities."""
    return Worker(
        client,
        task_queue=task_queue,
        workflows=WORKFLOWS,
        activities=list(activities),
        workflow_runner=sandbox_config(disable_sandbox),
        interceptors=[ActivityMetricsInterceptor()],
        # Flush heartbeats often so cancellation reaches long activities quickly
        default_heartbeat_throttle_interval=timedelta(seconds=2),
        max_heartbeat_throttle_interval=timedelta(seconds=2),
        graceful_shutdown_timeout=timedelta(seconds=graceful_shutdown_seconds),
    )


class SyncWorker:
    """Runs a worker until stopped; tracks whether it is running or draining."""

    def __init__(
        self,
        client: Client,
        settings: Settings,
        activities: Sequence[Callable[..., Any]],
    ) -> None:
        self._client = client
        self._settings = settings
        self._activities = list(activities)
        self.worker: Optional[Worker] = None
        self.running = False
        self.draining = False

    @property
    def status(self) -> str:
        if self.draining:
            return "draining"
        return "running" if self.running else "stopped"

    async def start(self) -> None:
        """Poll the task queue until stop() is called."""
        self.worker = build_worker(
            self._client,
            self._settings.temporal_task_queue,
            self._activities,
            disable_sandbox=self._settings.temporal_disable_sandbox,
            graceful_shutdown_seconds=self._settings.temporal_graceful_shutdown_seconds,
        )
        self.running = True
        logger.info(
            "temporal_worker_started",
            task_queue=self._settings.temporal_task_queue,
            graceful_shutdown_seconds=self._settings.temporal_graceful_shutdown_seconds,
        )
        try:
            await self.worker.run()
        finally:
            self.running = False

    async def stop(self) -> None:
        """Stop polling and wait for in-flight activities, up to the grace period."""
        if self.worker is not None and self.running:
            self.draining = True
            logger.info("temporal_worker_stopping")
            await self.worker.shutdown()
        self.running = False


async def main() -> None:
    """Run a standalone worker process."""
    from connector_sync.github.activities import GithubActivities
    from connector_sync.main import create_document_store, create_state_store
    from connector_sync.webcrawler.activities import WebCrawlerActivities

    from .client import connect

    settings = load_settings()
    state_store = await create_state_store(settings)
    document_store = create_document_store(settings)
    github = GithubActivities.from_settings(settings, state_store, document_store)
    webcrawler = WebCrawlerActivities.from_settings(settings, state_store, document_store)

    client = await connect(settings)
    worker = SyncWorker(client, settings, github.definitions() + webcrawler.definitions())

    def signal_handler(signum: int, frame: Any) -> None:
        logger.info("temporal_worker_signal_received", signal=signum)
        asyncio.ensure_future(worker.stop())

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await worker.start()
    finally:
        await github.close()
        await document_store.close()
        await state_store.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
