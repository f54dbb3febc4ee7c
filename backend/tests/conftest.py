"""pytest fixtures for connector sync tests."""

import os
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Sequence

# Set environment variables BEFORE any imports
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("STATE_STORE_BACKEND", "memory")
os.environ.setdefault("METRICS_ENABLED", "false")

import pytest
import pytest_asyncio
from temporalio.testing import WorkflowEnvironment

from connector_sync.config import ActivityTimeouts
from connector_sync.documents.store import InMemoryDocumentStore
from connector_sync.orchestration.models import (
    ConnectorProvider,
    ContainerRef,
    SyncOptions,
    SyncTarget,
)
from connector_sync.store.memory import InMemoryStateStore
from connector_sync.store.models import Connector
from connector_sync.workflows.worker import build_worker


@pytest.fixture
def state_store() -> InMemoryStateStore:
    """Provide an empty in-memory state store."""
    return InMemoryStateStore()


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    """Provide an empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def timeouts() -> ActivityTimeouts:
    """Short activity timeouts keeping the ordering of the defaults."""
    return ActivityTimeouts(metadata=10, listing=20, upsert=30, gc=40, bulk=50, heartbeat=20)


@pytest.fixture
def sync_target() -> SyncTarget:
    """Provide a GitHub sync target for connector 1."""
    return SyncTarget(connector_id="1", installation_id="inst-1", data_source_id="ds-1")


@pytest.fixture
def repo() -> ContainerRef:
    """Provide a repository reference."""
    return ContainerRef(id="100", name="widgets", owner="acme")


@pytest_asyncio.fixture
async def github_connector(state_store) -> Connector:
    """Persist a GitHub connector with id 1."""
    return await state_store.create_connector(
        Connector(
            id="1",
            provider=ConnectorProvider.GITHUB,
            workspace_id="ws-1",
            data_source_id="ds-1",
            connection_id="inst-1",
        )
    )


@pytest.fixture
def sync_options(timeouts) -> SyncOptions:
    """Run options with a ten second quiet window and millisecond retry backoff."""
    return SyncOptions(
        timeouts=timeouts,
        container_concurrency=2,
        leaf_concurrency=2,
        debounce_window_seconds=10,
        max_attempts=3,
        retry_initial_seconds=0.01,
        retry_max_seconds=0.05,
    )


@pytest_asyncio.fixture
async def env() -> AsyncIterator[WorkflowEnvironment]:
    """Time-skipping Temporal test server."""
    async with await WorkflowEnvironment.start_time_skipping() as workflow_env:
        yield workflow_env


@pytest.fixture
def start_worker(env):
    """Run a worker for every sync workflow and the given activities.

    Usage:
        async with start_worker(activities.definitions()) as task_queue:
            ...
    """

    @asynccontextmanager
    async def _start(activities: Sequence[Callable[..., Any]]) -> AsyncIterator[str]:
        task_queue = f"connector-sync-test-{uuid.uuid4()}"
        async with build_worker(env.client, task_queue, activities, disable_sandbox=True):
            yield task_queue

    return _start
