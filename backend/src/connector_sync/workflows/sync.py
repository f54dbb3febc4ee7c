"""Sync workflows shared by every provider.

Provider steps are activities addressed by name, so a workflow here only
decides what runs, in which order and with which limits.
"""

from functools import partial
from typing import Optional

from temporalio import workflow

with workflow.unsafe.imports_passed_through():
    from connector_sync.orchestration.debounce import DebounceLoop, DebounceState
    from connector_sync.orchestration.fanout import FanOutScheduler
    from connector_sync.orchestration.garbage_collector import GarbageCollector, GCInput
    from connector_sync.orchestration.invoker import ActivityInvoker
    from connector_sync.orchestration.models import (
        ContainerSyncInput,
        DebouncedSyncInput,
        FanOutInput,
        FanOutReport,
        GCReconciliationResult,
    )


def _scheduler(input: FanOutInput) -> FanOutScheduler:
    return FanOutScheduler(ActivityInvoker(input.provider, input.options), input.leaf_kinds)


@workflow.defn
class FullSyncWorkflow:
    """Sync every container of a target; containers run as child workflows."""

    @workflow.run
    async def run(self, input: FanOutInput) -> FanOutReport:
        return await _scheduler(input).run_full_sync(input.target)


@workflow.defn
class ReposSyncWorkflow:
    """Sync the containers given in the input, without listing the target."""

    @workflow.run
    async def run(self, input: FanOutInput) -> FanOutReport:
        return await _scheduler(input).run_repos_sync(input.target, input.containers or [])


@workflow.defn(name="ContainerSyncWorkflow")
class ContainerSyncWorkflow:
    """Leaves of one container, then its bulk content."""

    @workflow.run
    async def run(self, input: ContainerSyncInput) -> FanOutReport:
        scheduler = FanOutScheduler(
            ActivityInvoker(input.provider, input.options), input.leaf_kinds
        )
        return await scheduler.run_container_sync(input.target, input.container)


@workflow.defn
class DebouncedSyncWorkflow:
    """Long-lived incremental sync of one resource.

    Started with signal-with-start; every ``notify`` signal is a change
    notification. After ``passes_per_run`` passes the workflow continues as
    new so its history stays bounded.
    """

    @workflow.init
    def __init__(self, input: DebouncedSyncInput) -> None:
        self._loop = DebounceLoop(
            input.options.debounce_window_seconds,
            kind=input.kind.value,
            name=workflow.info().workflow_id,
        )

    @workflow.signal
    def notify(self, payload: Optional[str] = None) -> None:
        self._loop.notify(payload)

    @workflow.query
    def passes(self) -> int:
        return self._loop.passes

    @workflow.run
    async def run(self, input: DebouncedSyncInput) -> None:
        await self._loop.run(
            partial(self._sync_pass, input), max_passes=input.options.passes_per_run
        )
        workflow.continue_as_new(input)

    async def _sync_pass(self, input: DebouncedSyncInput, state: DebounceState) -> None:
        invoker = ActivityInvoker(input.provider, input.options)
        if input.external_id is None:
            await invoker.sync_bulk(input.target, input.container)
        else:
            await invoker.sync_leaf(input.target, input.container, input.kind, input.external_id)
        await invoker.save_success(input.target)


@workflow.defn
class GarbageCollectWorkflow:
    """Reconcile mirrored artifacts, then record a successful sync."""

    @workflow.run
    async def run(self, input: GCInput) -> GCReconciliationResult:
        invoker = ActivityInvoker(input.provider, input.options)
        result = await GarbageCollector(invoker).collect(input.target, input.artifacts)
        await invoker.save_success(input.target)
        return result
