"""Connector lifecycle: creation, sync launches, stop/resume, GC and deletion.

Syncs run as Temporal workflows tagged with the ConnectorId search
attribute. The manager translates typed errors raised underneath into
OperationResult failures; it never lets an AppError escape to its caller.
"""

from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog
from temporalio.client import Client
from temporalio.common import (
    TypedSearchAttributes,
    WorkflowIDConflictPolicy,
)
from temporalio.exceptions import WorkflowAlreadyStartedError
from temporalio.service import RPCError, RPCStatusCode

from connector_sync.config import DEFAULT_CRAWL_MAX_DEPTH, DEFAULT_CRAWL_MAX_PAGES
from connector_sync.core.errors import (
    AppError,
    ConfigurationError,
    ConflictError,
    ConnectorNotFoundError,
    DocumentUpsertError,
    InvalidUrlError,
    ResourceNotFoundError,
    UnsupportedOperationError,
    UpstreamPermanentError,
    UpstreamTransientError,
    ValidationError,
)
from connector_sync.github.activities import (
    discussion_artifact,
    issue_artifact,
    repository_artifact,
)
from connector_sync.github.workflows import fan_out_input, gc_input, gc_task_id, incremental_input
from connector_sync.orchestration.garbage_collector import MirroredArtifact
from connector_sync.orchestration.models import (
    ConnectorProvider,
    ContainerRef,
    SyncOptions,
    SyncTarget,
    UnitKind,
)
from connector_sync.store.base import StateStore
from connector_sync.store.models import Connector, WebCrawlerConfiguration
from connector_sync.webcrawler import permissions
from connector_sync.webcrawler.activities import crawl_task_id
from connector_sync.webcrawler.permissions import ConnectorResource
from connector_sync.webcrawler.url_hierarchy import normalize_url
from connector_sync.workflows.client import CONNECTOR_ID
from connector_sync.workflows.crawl import CrawlInput, CrawlWorkflow
from connector_sync.workflows.sync import (
    DebouncedSyncWorkflow,
    FullSyncWorkflow,
    GarbageCollectWorkflow,
    ReposSyncWorkflow,
)

from .models import ConnectorStatus, FailureReason, OperationResult, ResourceRef

logger = structlog.get_logger(__name__)

T = TypeVar("T")

FAILURE_REASONS: list[tuple[tuple[type[AppError], ...], FailureReason]] = [
    ((ConnectorNotFoundError, ResourceNotFoundError), FailureReason.NOT_FOUND),
    (
        (ValidationError, InvalidUrlError, ConfigurationError),
        FailureReason.INVALID_CONFIGURATION,
    ),
    ((UnsupportedOperationError,), FailureReason.UNSUPPORTED),
    (
        (UpstreamTransientError, UpstreamPermanentError, DocumentUpsertError),
        FailureReason.UPSTREAM_ERROR,
    ),
    ((ConflictError,), FailureReason.CONFLICT),
]


def failure_reason_for(error: AppError) -> FailureReason:
    for error_types, reason in FAILURE_REASONS:
        if isinstance(error, error_types):
            return reason
    return FailureReason.INTERNAL_ERROR


def sync_target(connector: Connector, sync_code_only: bool = False) -> SyncTarget:
    return SyncTarget(
        connector_id=connector.id,
        installation_id=connector.connection_id,
        data_source_id=connector.data_source_id,
        sync_code_only=sync_code_only,
    )


class ConnectorManager:
    """Entry point for every operation exposed on connectors.

    Example:
        manager = ConnectorManager(store, client, "connector-sync", SyncOptions())
        result = await manager.create_connector(
            ConnectorProvider.WEBCRAWLER, "ws1", "ds1", "https://docs.example.com"
        )
        if not result.ok:
            ...
    """

    def __init__(
        self,
        state_store: StateStore,
        client: Client,
        task_queue: str,
        options: Optional[SyncOptions] = None,
        default_max_depth: int = DEFAULT_CRAWL_MAX_DEPTH,
        default_max_pages: int = DEFAULT_CRAWL_MAX_PAGES,
    ) -> None:
        self._store = state_store
        self._client = client
        self._task_queue = task_queue
        self._options = options or SyncOptions()
        self._default_max_depth = default_max_depth
        self._default_max_pages = default_max_pages
        self._logger = logger.bind(component="ConnectorManager")

    async def _guard(
        self, operation: str, fn: Callable[[], Awaitable[T]]
    ) -> OperationResult[T]:
        try:
            return OperationResult.success(await fn())
        except AppError as e:
            reason = failure_reason_for(e)
            self._logger.warning(
                "connector_operation_failed",
                operation=operation,
                reason=reason.value,
                error=e.message,
            )
            return OperationResult.failure(reason, e.message)
        except Exception as e:
            self._logger.exception("connector_operation_error", operation=operation)
            return OperationResult.failure(FailureReason.INTERNAL_ERROR, str(e))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_connector(
        self,
        provider: ConnectorProvider,
        workspace_id: str,
        data_source_id: str,
        connection_id: str,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> OperationResult[Connector]:
        """Persist a connector and launch its first sync.

        For GitHub the connection id is the installation id; for the
        webcrawler it is the seed URL.
        """

        async def create() -> Connector:
            if not connection_id:
                raise ValidationError("connection_id is required")
            connector_id = await self._store.allocate_connector_id()
            if provider == ConnectorProvider.WEBCRAWLER:
                url = normalize_url(connection_id)
                depth = self._default_max_depth if max_depth is None else max_depth
                pages = self._default_max_pages if max_pages is None else max_pages
                if depth < 1 or pages < 1:
                    raise ValidationError(
                        "max_depth and max_pages must be >= 1",
                        details={"max_depth": depth, "max_pages": pages},
                    )
                connector = Connector(
                    id=connector_id,
                    provider=provider,
                    workspace_id=workspace_id,
                    data_source_id=data_source_id,
                    connection_id=url,
                )
                await self._store.create_connector_with_configuration(
                    connector,
                    WebCrawlerConfiguration(
                        connector_id=connector_id,
                        url=url,
                        max_depth=depth,
                        max_pages=pages,
                    ),
                )
            else:
                connector = await self._store.create_connector(
                    Connector(
                        id=connector_id,
                        provider=provider,
                        workspace_id=workspace_id,
                        data_source_id=data_source_id,
                        connection_id=connection_id,
                    )
                )
            self._logger.info(
                "connector_created",
                connector_id=connector_id,
                provider=provider.value,
                workspace_id=workspace_id,
            )
            await self._launch_sync(connector, sync_code_only=False)
            return connector

        return await self._guard("create_connector", create)

    async def start_sync(
        self, connector_id: str, sync_code_only: bool = False
    ) -> OperationResult[str]:
        """(Re)launch the connector's full sync and return its task id."""

        async def start() -> str:
            connector = await self._store.require_connector(connector_id)
            return await self._launch_sync(connector, sync_code_only)

        return await self._guard("start_sync", start)

    async def resume(self, connector_id: str) -> OperationResult[str]:
        async def resume() -> str:
            connector = await self._store.require_connector(connector_id)
            task_id = await self._launch_sync(connector, sync_code_only=False)
            self._logger.info("connector_resumed", connector_id=connector_id, task_id=task_id)
            return task_id

        return await self._guard("resume", resume)

    async def stop(self, connector_id: str) -> OperationResult[list[str]]:
        """Terminate every running workflow of the connector."""

        async def stop() -> list[str]:
            await self._store.require_connector(connector_id)
            return await self._stop_tasks(connector_id)

        return await self._guard("stop", stop)

    async def delete_connector(self, connector_id: str) -> OperationResult[None]:
        """Stop the connector, then remove it and everything it owns."""

        async def delete() -> None:
            await self._store.require_connector(connector_id)
            await self._stop_tasks(connector_id)
            await self._store.delete_connector(connector_id)
            self._logger.info("connector_deleted", connector_id=connector_id)

        return await self._guard("delete_connector", delete)

    async def get_status(self, connector_id: str) -> OperationResult[ConnectorStatus]:
        async def status() -> ConnectorStatus:
            connector = await self._store.require_connector(connector_id)
            running = await self._running_workflow_ids(connector_id)
            return ConnectorStatus(connector=connector, running_tasks=sorted(running))

        return await self._guard("get_status", status)

    # ------------------------------------------------------------------
    # GitHub
    # ------------------------------------------------------------------

    async def sync_repositories(
        self, connector_id: str, repositories: Sequence[ContainerRef]
    ) -> OperationResult[str]:
        """Sync repositories the installation just gained."""

        async def sync() -> str:
            connector = await self._require_provider(
                connector_id, ConnectorProvider.GITHUB, "sync_repositories"
            )
            target = sync_target(connector)
            task_id = target.repos_sync_task_id
            try:
                await self._client.start_workflow(
                    ReposSyncWorkflow.run,
                    fan_out_input(target, self._options, repositories),
                    id=task_id,
                    task_queue=self._task_queue,
                    id_conflict_policy=WorkflowIDConflictPolicy.FAIL,
                    search_attributes=self._search_attributes(connector_id),
                )
            except WorkflowAlreadyStartedError as e:
                raise ConflictError(
                    "A repositories sync is already running",
                    details={"task_id": task_id},
                ) from e
            return task_id

        return await self._guard("sync_repositories", sync)

    async def trigger_incremental(
        self, connector_id: str, resource: ResourceRef
    ) -> OperationResult[str]:
        """Notify the debounced workflow of one resource, starting it if needed."""

        async def trigger() -> str:
            connector = await self._require_provider(
                connector_id, ConnectorProvider.GITHUB, "trigger_incremental"
            )
            if resource.kind not in (UnitKind.CODE, UnitKind.ISSUE, UnitKind.DISCUSSION):
                raise UnsupportedOperationError("github", f"incremental:{resource.kind.value}")
            number = None if resource.kind == UnitKind.CODE else self._require_number(resource)
            task_id, input = incremental_input(
                sync_target(connector), resource.repository, resource.kind, self._options, number
            )
            await self._client.start_workflow(
                DebouncedSyncWorkflow.run,
                input,
                id=task_id,
                task_queue=self._task_queue,
                start_signal="notify",
                start_signal_args=[resource.kind.value],
                search_attributes=self._search_attributes(connector_id),
            )
            return task_id

        return await self._guard("trigger_incremental", trigger)

    async def garbage_collect(
        self, connector_id: str, resource: Optional[ResourceRef] = None
    ) -> OperationResult[str]:
        """Launch a target-wide GC pass, or the GC of one resource.

        A pass already running under the same id is left alone.
        """

        async def collect() -> str:
            connector = await self._require_provider(
                connector_id, ConnectorProvider.GITHUB, "garbage_collect"
            )
            artifacts: Optional[list[MirroredArtifact]] = None
            if resource is None:
                task_id = gc_task_id(connector_id)
            else:
                task_id = gc_task_id(connector_id, resource.suffix)
                artifacts = [self._artifact_for(connector_id, resource)]

            await self._client.start_workflow(
                GarbageCollectWorkflow.run,
                gc_input(sync_target(connector), self._options, artifacts),
                id=task_id,
                task_queue=self._task_queue,
                id_conflict_policy=WorkflowIDConflictPolicy.USE_EXISTING,
                search_attributes=self._search_attributes(connector_id),
            )
            return task_id

        return await self._guard("garbage_collect", collect)

    # ------------------------------------------------------------------
    # Webcrawler resource tree
    # ------------------------------------------------------------------

    async def retrieve_permissions(
        self, connector_id: str, parent_internal_id: Optional[str] = None
    ) -> OperationResult[list[ConnectorResource]]:
        async def retrieve() -> list[ConnectorResource]:
            await self._require_provider(
                connector_id, ConnectorProvider.WEBCRAWLER, "retrieve_permissions"
            )
            return await permissions.list_resources(self._store, connector_id, parent_internal_id)

        return await self._guard("retrieve_permissions", retrieve)

    async def retrieve_titles(
        self, connector_id: str, internal_ids: Sequence[str]
    ) -> OperationResult[dict[str, str]]:
        async def retrieve() -> dict[str, str]:
            await self._require_provider(
                connector_id, ConnectorProvider.WEBCRAWLER, "retrieve_titles"
            )
            return await permissions.retrieve_titles(self._store, connector_id, internal_ids)

        return await self._guard("retrieve_titles", retrieve)

    async def retrieve_parents(
        self, connector_id: str, internal_id: str
    ) -> OperationResult[list[str]]:
        async def retrieve() -> list[str]:
            await self._require_provider(
                connector_id, ConnectorProvider.WEBCRAWLER, "retrieve_parents"
            )
            return await permissions.retrieve_parents(self._store, connector_id, internal_id)

        return await self._guard("retrieve_parents", retrieve)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _require_provider(
        self, connector_id: str, provider: ConnectorProvider, operation: str
    ) -> Connector:
        connector = await self._store.require_connector(connector_id)
        if connector.provider != provider:
            raise UnsupportedOperationError(connector.provider.value, operation)
        return connector

    @staticmethod
    def _require_number(resource: ResourceRef) -> int:
        if resource.number is None:
            raise ValidationError(f"{resource.kind.value} resource requires a number")
        return resource.number

    @classmethod
    def _artifact_for(cls, connector_id: str, resource: ResourceRef) -> MirroredArtifact:
        repo_id = resource.repository.id
        if resource.kind == UnitKind.REPOSITORY:
            return repository_artifact(connector_id, repo_id)
        if resource.kind == UnitKind.ISSUE:
            return issue_artifact(connector_id, repo_id, cls._require_number(resource))
        if resource.kind == UnitKind.DISCUSSION:
            return discussion_artifact(connector_id, repo_id, cls._require_number(resource))
        raise UnsupportedOperationError("github", f"gc:{resource.kind.value}")

    @staticmethod
    def _search_attributes(connector_id: str) -> TypedSearchAttributes:
        return TypedSearchAttributes([CONNECTOR_ID.value_set(connector_id)])

    async def _launch_sync(self, connector: Connector, sync_code_only: bool) -> str:
        """Start the connector's sync workflow, terminating a running one."""
        workflow: Callable[..., Awaitable[Any]]
        if connector.provider == ConnectorProvider.GITHUB:
            target = sync_target(connector, sync_code_only)
            task_id = target.full_sync_task_id
            workflow = FullSyncWorkflow.run
            arg: Any = fan_out_input(target, self._options)
        else:
            task_id = crawl_task_id(connector.id)
            workflow = CrawlWorkflow.run
            arg = CrawlInput(connector_id=connector.id, options=self._options)

        await self._client.start_workflow(
            workflow,
            arg,
            id=task_id,
            task_queue=self._task_queue,
            id_conflict_policy=WorkflowIDConflictPolicy.TERMINATE_EXISTING,
            search_attributes=self._search_attributes(connector.id),
        )
        self._logger.info(
            "connector_sync_launched",
            connector_id=connector.id,
            task_id=task_id,
            sync_code_only=sync_code_only,
        )
        return task_id

    async def _running_workflow_ids(self, connector_id: str) -> list[str]:
        query = f"{CONNECTOR_ID.name} = '{connector_id}' AND ExecutionStatus = 'Running'"
        return [execution.id async for execution in self._client.list_workflows(query)]

    async def _stop_tasks(self, connector_id: str) -> list[str]:
        terminated = []
        for workflow_id in await self._running_workflow_ids(connector_id):
            try:
                await self._client.get_workflow_handle(workflow_id).terminate(
                    reason="connector_stopped"
                )
            except RPCError as e:
                # Completed between listing and termination.
                if e.status != RPCStatusCode.NOT_FOUND:
                    raise
                continue
            terminated.append(workflow_id)
        self._logger.info("connector_stopped", connector_id=connector_id, terminated=terminated)
        return sorted(terminated)
