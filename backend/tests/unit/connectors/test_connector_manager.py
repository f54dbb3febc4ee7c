"""Tests for the connector lifecycle manager."""

import re
from types import SimpleNamespace
from typing import Any, Optional

import pytest
import pytest_asyncio
from temporalio.common import TypedSearchAttributes, WorkflowIDConflictPolicy
from temporalio.exceptions import WorkflowAlreadyStartedError
from temporalio.service import RPCError, RPCStatusCode

from connector_sync.connectors.manager import ConnectorManager, failure_reason_for
from connector_sync.connectors.models import FailureReason, ResourceRef
from connector_sync.core.errors import ConflictError, InvalidUrlError, StoreError
from connector_sync.orchestration.models import ConnectorProvider, UnitKind
from connector_sync.workflows.client import CONNECTOR_ID
from connector_sync.workflows.crawl import CrawlInput


class FakeTemporalClient:
    """Tracks running workflows per connector and applies id conflict policies."""

    def __init__(self) -> None:
        self.running: dict[str, str] = {}
        self.started: list[tuple[str, Any]] = []
        self.signals: list[tuple[str, str, list]] = []
        self.terminated: list[str] = []
        self.vanished: set[str] = set()

    async def start_workflow(
        self,
        workflow,
        arg,
        *,
        id: str,
        task_queue: str,
        id_conflict_policy: WorkflowIDConflictPolicy = WorkflowIDConflictPolicy.UNSPECIFIED,
        search_attributes: Optional[TypedSearchAttributes] = None,
        start_signal: Optional[str] = None,
        start_signal_args: Any = (),
    ):
        if id in self.running and start_signal is None:
            if id_conflict_policy == WorkflowIDConflictPolicy.FAIL:
                raise WorkflowAlreadyStartedError(id, workflow.__qualname__)
            if id_conflict_policy == WorkflowIDConflictPolicy.USE_EXISTING:
                return SimpleNamespace(id=id)
            self.terminated.append(id)
            del self.running[id]
        if id not in self.running:
            self.running[id] = search_attributes[CONNECTOR_ID]
            self.started.append((id, arg))
        if start_signal is not None:
            self.signals.append((id, start_signal, list(start_signal_args)))
        return SimpleNamespace(id=id)

    def list_workflows(self, query: str):
        connector_id = re.search(r"ConnectorId = '([^']+)'", query).group(1)
        assert "ExecutionStatus = 'Running'" in query

        async def executions():
            for workflow_id, owner in list(self.running.items()):
                if owner == connector_id:
                    yield SimpleNamespace(id=workflow_id)

        return executions()

    def get_workflow_handle(self, workflow_id: str):
        async def terminate(reason: Optional[str] = None) -> None:
            if workflow_id in self.vanished:
                raise RPCError("workflow not found", RPCStatusCode.NOT_FOUND, b"")
            self.running.pop(workflow_id, None)
            self.terminated.append(workflow_id)

        return SimpleNamespace(id=workflow_id, terminate=terminate)

    def started_ids(self) -> list[str]:
        return [workflow_id for workflow_id, _ in self.started]


@pytest.fixture
def client() -> FakeTemporalClient:
    return FakeTemporalClient()


@pytest.fixture
def manager(state_store, client, sync_options) -> ConnectorManager:
    return ConnectorManager(
        state_store,
        client,
        "connector-sync-test",
        sync_options,
        default_max_depth=3,
        default_max_pages=50,
    )


@pytest_asyncio.fixture
async def github_id(manager) -> str:
    result = await manager.create_connector(ConnectorProvider.GITHUB, "ws-1", "ds-1", "inst-1")
    assert result.ok
    return result.value.id


class TestFailureReasons:
    """Tests for mapping errors onto failure reasons."""

    def test_mapping(self):
        assert failure_reason_for(InvalidUrlError("x", "bad")) == FailureReason.INVALID_CONFIGURATION
        assert failure_reason_for(ConflictError("busy")) == FailureReason.CONFLICT
        assert failure_reason_for(StoreError("put", "down")) == FailureReason.INTERNAL_ERROR


class TestCreateConnector:
    """Tests for connector creation."""

    @pytest.mark.asyncio
    async def test_github_connector_starts_full_sync(self, manager, client, github_id):
        assert github_id == "1"
        workflow_id, input = client.started[0]
        assert workflow_id == "github-full-sync-1"
        assert input.target.installation_id == "inst-1"
        assert client.running == {"github-full-sync-1": "1"}
        status = await manager.get_status("1")
        assert status.value.running_tasks == ["github-full-sync-1"]

    @pytest.mark.asyncio
    async def test_webcrawler_connector(self, manager, state_store, client):
        result = await manager.create_connector(
            ConnectorProvider.WEBCRAWLER, "ws-1", "ds-1", "https://Docs.Example.com/guide/"
        )

        assert result.ok
        assert result.value.connection_id == "https://docs.example.com/guide"
        configuration = await state_store.get_webcrawler_configuration(result.value.id)
        assert (configuration.max_depth, configuration.max_pages) == (3, 50)
        workflow_id, input = client.started[0]
        assert workflow_id == f"webcrawler-crawl-{result.value.id}"
        assert isinstance(input, CrawlInput)
        assert input.connector_id == result.value.id

    @pytest.mark.asyncio
    async def test_invalid_seed_url(self, manager, state_store, client):
        result = await manager.create_connector(
            ConnectorProvider.WEBCRAWLER, "ws-1", "ds-1", "ftp://example.com"
        )

        assert not result.ok
        assert result.reason == FailureReason.INVALID_CONFIGURATION
        assert await state_store.list_connectors() == []
        assert client.started == []

    @pytest.mark.asyncio
    async def test_invalid_limits(self, manager):
        result = await manager.create_connector(
            ConnectorProvider.WEBCRAWLER, "ws-1", "ds-1", "https://example.com", max_pages=0
        )

        assert result.reason == FailureReason.INVALID_CONFIGURATION


class TestSyncLifecycle:
    """Tests for start, stop, resume and delete."""

    @pytest.mark.asyncio
    async def test_start_sync_unknown_connector(self, manager):
        result = await manager.start_sync("404")

        assert result.reason == FailureReason.NOT_FOUND

    @pytest.mark.asyncio
    async def test_start_sync_replaces_running_sync(self, manager, client, github_id):
        result = await manager.start_sync(github_id, sync_code_only=True)

        assert result.value == "github-full-sync-1"
        assert client.terminated == ["github-full-sync-1"]
        assert client.started_ids() == ["github-full-sync-1", "github-full-sync-1"]
        assert client.started[-1][1].target.sync_code_only is True

    @pytest.mark.asyncio
    async def test_stop_and_resume(self, manager, github_id):
        stopped = await manager.stop(github_id)
        assert stopped.value == ["github-full-sync-1"]
        assert (await manager.get_status(github_id)).value.running_tasks == []

        resumed = await manager.resume(github_id)
        assert resumed.value == "github-full-sync-1"
        assert (await manager.get_status(github_id)).value.running_tasks == ["github-full-sync-1"]

    @pytest.mark.asyncio
    async def test_stop_terminates_every_workflow_of_the_connector(self, manager, client, repo, github_id):
        other = await manager.create_connector(ConnectorProvider.GITHUB, "ws-1", "ds-2", "inst-2")
        await manager.trigger_incremental(github_id, ResourceRef(kind=UnitKind.CODE, repository=repo))

        stopped = await manager.stop(github_id)

        assert stopped.value == ["github-code-sync-1-100", "github-full-sync-1"]
        assert list(client.running) == [f"github-full-sync-{other.value.id}"]

    @pytest.mark.asyncio
    async def test_stop_skips_workflow_that_already_closed(self, manager, client, repo, github_id):
        await manager.trigger_incremental(github_id, ResourceRef(kind=UnitKind.CODE, repository=repo))
        client.vanished.add("github-full-sync-1")

        stopped = await manager.stop(github_id)

        assert stopped.ok
        assert stopped.value == ["github-code-sync-1-100"]

    @pytest.mark.asyncio
    async def test_delete_connector(self, manager, client, state_store, github_id):
        result = await manager.delete_connector(github_id)

        assert result.ok
        assert await state_store.get_connector(github_id) is None
        assert client.terminated == ["github-full-sync-1"]
        assert (await manager.delete_connector(github_id)).reason == FailureReason.NOT_FOUND


class TestGithubOperations:
    """Tests for repository syncs, incremental triggers and GC launches."""

    @pytest.mark.asyncio
    async def test_repositories_sync_conflict(self, manager, repo, github_id):
        first = await manager.sync_repositories(github_id, [repo])
        second = await manager.sync_repositories(github_id, [repo])

        assert first.value == "github-repos-sync-1"
        assert second.reason == FailureReason.CONFLICT

    @pytest.mark.asyncio
    async def test_trigger_incremental_signals_one_workflow(self, manager, client, repo, github_id):
        resource = ResourceRef(kind=UnitKind.ISSUE, repository=repo, number=5)

        first = await manager.trigger_incremental(github_id, resource)
        second = await manager.trigger_incremental(github_id, resource)

        assert first.value == second.value == "github-issue-sync-1-100-5"
        assert client.started_ids().count("github-issue-sync-1-100-5") == 1
        assert client.signals == [
            ("github-issue-sync-1-100-5", "notify", ["issue"]),
            ("github-issue-sync-1-100-5", "notify", ["issue"]),
        ]

    @pytest.mark.asyncio
    async def test_trigger_requires_number(self, manager, repo, github_id):
        result = await manager.trigger_incremental(
            github_id, ResourceRef(kind=UnitKind.DISCUSSION, repository=repo)
        )

        assert result.reason == FailureReason.INVALID_CONFIGURATION

    @pytest.mark.asyncio
    async def test_trigger_code_sync(self, manager, client, repo, github_id):
        result = await manager.trigger_incremental(
            github_id, ResourceRef(kind=UnitKind.CODE, repository=repo)
        )

        assert result.value == "github-code-sync-1-100"
        assert client.started[-1][1].external_id is None

    @pytest.mark.asyncio
    async def test_garbage_collect_one_issue(self, manager, client, repo, github_id):
        resource = ResourceRef(kind=UnitKind.ISSUE, repository=repo, number=5)

        result = await manager.garbage_collect(github_id, resource)
        again = await manager.garbage_collect(github_id, resource)

        assert result.value == again.value == "github-gc-1-issue-100-5"
        gc_starts = [input for workflow_id, input in client.started if workflow_id.startswith("github-gc")]
        assert len(gc_starts) == 1
        assert [a.artifact_id for a in gc_starts[0].artifacts] == ["issue:100:5"]

    @pytest.mark.asyncio
    async def test_github_operations_rejected_for_webcrawler(self, manager):
        created = await manager.create_connector(
            ConnectorProvider.WEBCRAWLER, "ws-1", "ds-1", "https://example.com"
        )

        result = await manager.garbage_collect(created.value.id)

        assert result.reason == FailureReason.UNSUPPORTED


class TestWebcrawlerResources:
    """Tests for the resource tree operations."""

    @pytest.mark.asyncio
    async def test_permissions_rejected_for_github(self, manager, github_id):
        result = await manager.retrieve_permissions(github_id)

        assert result.reason == FailureReason.UNSUPPORTED

    @pytest.mark.asyncio
    async def test_unknown_parent_folder(self, manager):
        created = await manager.create_connector(
            ConnectorProvider.WEBCRAWLER, "ws-1", "ds-1", "https://example.com"
        )

        empty = await manager.retrieve_permissions(created.value.id)
        missing = await manager.retrieve_permissions(created.value.id, "nope")

        assert empty.value == []
        assert missing.reason == FailureReason.NOT_FOUND
