"""Workflow-side calls into a provider's sync activities.

Activities are addressed by name (``github.sync_leaf``), so the generic
workflows never import provider code. Every call carries its own
start-to-close timeout and the run's retry policy.
"""

from datetime import timedelta
from typing import Any, Callable, Optional, Sequence, Type

from temporalio import workflow
from temporalio.workflow import ParentClosePolicy

from .models import (
    ConnectorProvider,
    ContainerPage,
    ContainerRef,
    ContainerSyncInput,
    FanOutReport,
    LeafPage,
    SyncActivity,
    SyncOptions,
    SyncTarget,
    UnitKind,
    activity_name,
)

CONTAINER_SYNC_WORKFLOW = "ContainerSyncWorkflow"


def describe_failure(error: BaseException) -> str:
    """Message of the failure behind an ActivityError or ChildWorkflowError."""
    cause = getattr(error, "cause", None)
    while getattr(cause, "cause", None) is not None:
        cause = cause.cause
    return str(cause or error)


def unless_replaying(record: Callable[..., None], *args: Any) -> None:
    """Call a metrics recorder only on first execution, never on replay."""
    if not workflow.unsafe.is_replaying():
        record(*args)


class ActivityInvoker:
    """Runs the activities of one provider with the options of one run."""

    def __init__(self, provider: ConnectorProvider, options: SyncOptions) -> None:
        self._provider = provider
        self._options = options

    @property
    def options(self) -> SyncOptions:
        return self._options

    async def execute(
        self,
        step: SyncActivity,
        *args: Any,
        timeout: float,
        heartbeat: bool = False,
        result_type: Optional[Type[Any]] = None,
    ) -> Any:
        heartbeat_timeout = (
            timedelta(seconds=self._options.timeouts.heartbeat) if heartbeat else None
        )
        return await workflow.execute_activity(
            activity_name(self._provider, step),
            args=list(args),
            start_to_close_timeout=timedelta(seconds=timeout),
            heartbeat_timeout=heartbeat_timeout,
            retry_policy=self._options.retry_policy(),
            result_type=result_type,
        )

    # ------------------------------------------------------------------
    # Sync state
    # ------------------------------------------------------------------

    async def save_start(self, target: SyncTarget) -> None:
        await self.execute(SyncActivity.SAVE_START, target, timeout=self._options.timeouts.metadata)

    async def save_success(self, target: SyncTarget) -> None:
        await self.execute(
            SyncActivity.SAVE_SUCCESS, target, timeout=self._options.timeouts.metadata
        )

    async def save_failure(self, target: SyncTarget, error_type: str) -> None:
        await self.execute(
            SyncActivity.SAVE_FAILURE,
            target,
            error_type,
            timeout=self._options.timeouts.metadata,
        )

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def list_containers(self, target: SyncTarget, cursor: Optional[str]) -> ContainerPage:
        return await self.execute(
            SyncActivity.LIST_CONTAINERS,
            target,
            cursor,
            timeout=self._options.timeouts.listing,
            result_type=ContainerPage,
        )

    async def list_leaves(
        self,
        target: SyncTarget,
        container: ContainerRef,
        kind: UnitKind,
        cursor: Optional[str],
    ) -> LeafPage:
        return await self.execute(
            SyncActivity.LIST_LEAVES,
            target,
            container,
            kind,
            cursor,
            timeout=self._options.timeouts.listing,
            result_type=LeafPage,
        )

    async def sync_leaf(
        self,
        target: SyncTarget,
        container: ContainerRef,
        kind: UnitKind,
        external_id: str,
    ) -> bool:
        return await self.execute(
            SyncActivity.SYNC_LEAF,
            target,
            container,
            kind,
            external_id,
            timeout=self._options.timeouts.upsert,
            result_type=bool,
        )

    async def sync_bulk(self, target: SyncTarget, container: ContainerRef) -> int:
        return await self.execute(
            SyncActivity.SYNC_BULK,
            target,
            container,
            timeout=self._options.timeouts.bulk,
            heartbeat=True,
            result_type=int,
        )

    async def sync_container(
        self,
        workflow_id: str,
        target: SyncTarget,
        container: ContainerRef,
        leaf_kinds: Sequence[UnitKind],
    ) -> FanOutReport:
        """Run one container as a child workflow terminated with its parent.

        The child carries the parent's search attributes, so stopping a
        connector finds it too.
        """
        return await workflow.execute_child_workflow(
            CONTAINER_SYNC_WORKFLOW,
            ContainerSyncInput(
                target=target,
                container=container,
                options=self._options,
                provider=self._provider,
                leaf_kinds=list(leaf_kinds),
            ),
            id=workflow_id,
            parent_close_policy=ParentClosePolicy.TERMINATE,
            search_attributes=workflow.info().typed_search_attributes,
            result_type=FanOutReport,
        )
