"""Fan-out of one sync target into a tree of independently scheduled units.

installation -> containers (repositories) -> leaves (issues, discussions)
                                          -> bulk content step (code)

Runs inside a workflow. Each container is a child workflow with a
deterministic id, admitted through a container-level ConcurrencyGate.
Inside a container, leaves are activities admitted through a second,
separately sized gate. The bulk content step of a container always runs
once its leaves have settled, even when a leaf listing failed.
"""

import asyncio
from functools import partial
from typing import Any, AsyncIterator, Callable, Sequence

from temporalio import workflow
from temporalio.exceptions import ActivityError, ChildWorkflowError

from connector_sync.observability.metrics import record_sync_unit

from .concurrency import ConcurrencyGate
from .invoker import ActivityInvoker, describe_failure, unless_replaying
from .models import (
    ContainerRef,
    FanOutReport,
    SyncOptions,
    SyncStatus,
    SyncTarget,
    SyncUnit,
    UnitKind,
)
from .pagination import iterate_pages


class FanOutScheduler:
    """Drives a provider's activities over a sync target.

    Example:
        scheduler = FanOutScheduler(
            ActivityInvoker(input.provider, input.options),
            leaf_kinds=input.leaf_kinds,
        )
        report = await scheduler.run_full_sync(input.target)
    """

    def __init__(self, invoker: ActivityInvoker, leaf_kinds: Sequence[UnitKind] = ()) -> None:
        self._invoker = invoker
        self._leaf_kinds = list(leaf_kinds)

    @property
    def options(self) -> SyncOptions:
        return self._invoker.options

    @staticmethod
    def container_task_id(target: SyncTarget, container_id: str) -> str:
        flag = "true" if target.sync_code_only else "false"
        return f"{target.full_sync_task_id}-repo-{container_id}-sync-code-only-{flag}"

    @staticmethod
    def repos_sync_child_id(target: SyncTarget, container_id: str) -> str:
        return f"{target.repos_sync_task_id}-repo-{container_id}"

    # ------------------------------------------------------------------
    # Levels of the tree
    # ------------------------------------------------------------------

    async def run_full_sync(self, target: SyncTarget) -> FanOutReport:
        """Sync every container of the target.

        Containers are enumerated page by page and admitted as child
        workflows. A failed container is recorded in the report and never
        aborts its siblings. Success is saved unless every unit failed.
        """
        workflow.logger.info(
            "fanout_started",
            extra={"connector_id": target.connector_id, "sync_code_only": target.sync_code_only},
        )
        report = FanOutReport(connector_id=target.connector_id)
        report.mark_started(workflow.now())

        await self._invoker.save_start(target)

        pages = iterate_pages(partial(self._invoker.list_containers, target), name="containers")
        await self._fan_out_containers(
            target,
            pages,
            partial(self.container_task_id, target),
            report,
        )

        report.mark_completed(workflow.now())
        if report.status != SyncStatus.FAILED:
            await self._invoker.save_success(target)
        else:
            await self._invoker.save_failure(target, "all_units_failed")

        workflow.logger.info(
            "fanout_completed",
            extra={
                "connector_id": target.connector_id,
                "status": report.status.value,
                "units_succeeded": report.units_succeeded,
                "units_failed": report.units_failed,
                "duration_seconds": report.duration_seconds,
            },
        )
        return report

    async def run_repos_sync(
        self, target: SyncTarget, containers: Sequence[ContainerRef]
    ) -> FanOutReport:
        """Sync an explicit list of containers, without enumerating the target."""
        report = FanOutReport(connector_id=target.connector_id)
        report.mark_started(workflow.now())

        async def _given() -> AsyncIterator[Sequence[ContainerRef]]:
            yield containers

        await self._fan_out_containers(
            target,
            _given(),
            partial(self.repos_sync_child_id, target),
            report,
        )
        report.mark_completed(workflow.now())
        if report.status != SyncStatus.FAILED:
            await self._invoker.save_success(target)
        workflow.logger.info(
            "repos_sync_completed",
            extra={
                "connector_id": target.connector_id,
                "containers": len(containers),
                "status": report.status.value,
            },
        )
        return report

    async def run_container_sync(
        self, target: SyncTarget, container: ContainerRef
    ) -> FanOutReport:
        """Sync the leaves of one container, then its bulk content.

        Leaves are skipped in code-only mode. The bulk step runs only after
        every leaf settled, and runs in both modes.
        """
        report = FanOutReport(connector_id=target.connector_id)
        report.mark_started(workflow.now())

        if not target.sync_code_only:
            await self._fan_out_leaves(target, container, report)

        bulk_unit = SyncUnit(target, UnitKind.CODE, container.id)
        try:
            await self._invoker.sync_bulk(target, container)
        except ActivityError as e:
            workflow.logger.warning(
                "bulk_sync_failed",
                extra={"repo_id": container.id, "error": describe_failure(e)},
            )
            report.add_failure(UnitKind.CODE, bulk_unit.unit_id, describe_failure(e))
            unless_replaying(record_sync_unit, UnitKind.CODE.value, False)
        else:
            report.add_success(UnitKind.CODE)
            unless_replaying(record_sync_unit, UnitKind.CODE.value, True)

        report.mark_completed(workflow.now())
        workflow.logger.info(
            "container_sync_completed",
            extra={
                "connector_id": target.connector_id,
                "repo_id": container.id,
                "repo_name": container.name,
                "status": report.status.value,
                "units_succeeded": report.units_succeeded,
                "units_failed": report.units_failed,
            },
        )
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fan_out_containers(
        self,
        target: SyncTarget,
        pages: AsyncIterator[Sequence[ContainerRef]],
        child_id: Callable[[str], str],
        report: FanOutReport,
    ) -> None:
        gate = ConcurrencyGate(self.options.container_concurrency, name="containers")
        admitted: list[tuple[ContainerRef, Any]] = []
        try:
            try:
                async for containers in pages:
                    for container in containers:
                        work = partial(
                            self._invoker.sync_container,
                            child_id(container.id),
                            target,
                            container,
                            self._leaf_kinds,
                        )
                        admitted.append((container, gate.admit(work)))
            except ActivityError as e:
                # Containers admitted before the failure still run to completion.
                workflow.logger.warning(
                    "container_listing_failed",
                    extra={"connector_id": target.connector_id, "error": describe_failure(e)},
                )
                report.add_failure(
                    UnitKind.REPOSITORY,
                    f"{UnitKind.REPOSITORY.value}-listing-{target.connector_id}",
                    describe_failure(e),
                )
            outcomes = await gate.await_all(handle for _, handle in admitted)
        except asyncio.CancelledError:
            await gate.cancel()
            raise

        for (container, _), outcome in zip(admitted, outcomes):
            if isinstance(outcome, ChildWorkflowError):
                workflow.logger.warning(
                    "container_sync_failed",
                    extra={
                        "connector_id": target.connector_id,
                        "repo_id": container.id,
                        "error": describe_failure(outcome),
                    },
                )
                report.add_failure(UnitKind.REPOSITORY, container.id, describe_failure(outcome))
                unless_replaying(record_sync_unit, UnitKind.REPOSITORY.value, False)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                report.merge(outcome)
                unless_replaying(record_sync_unit, UnitKind.REPOSITORY.value, True)

    async def _fan_out_leaves(
        self,
        target: SyncTarget,
        container: ContainerRef,
        report: FanOutReport,
    ) -> None:
        gate = ConcurrencyGate(self.options.leaf_concurrency, name="leaves")
        admitted: list[tuple[SyncUnit, Any]] = []
        try:
            for kind in self._leaf_kinds:
                listing = partial(self._invoker.list_leaves, target, container, kind)
                try:
                    async for external_ids in iterate_pages(listing, name=f"{kind.value}s"):
                        for external_id in external_ids:
                            unit = SyncUnit(target, kind, str(external_id), container.id)
                            work = partial(
                                self._invoker.sync_leaf,
                                target,
                                container,
                                kind,
                                unit.external_id,
                            )
                            admitted.append((unit, gate.admit(work)))
                except ActivityError as e:
                    # One kind's listing failing leaves the other kinds and the bulk step alone.
                    workflow.logger.warning(
                        "leaf_listing_failed",
                        extra={
                            "connector_id": target.connector_id,
                            "repo_id": container.id,
                            "kind": kind.value,
                            "error": describe_failure(e),
                        },
                    )
                    report.add_failure(
                        kind, f"{kind.value}-listing-{container.id}", describe_failure(e)
                    )
                    unless_replaying(record_sync_unit, kind.value, False)
            outcomes = await gate.await_all(handle for _, handle in admitted)
        except asyncio.CancelledError:
            await gate.cancel()
            raise

        for (unit, _), outcome in zip(admitted, outcomes):
            if isinstance(outcome, ActivityError):
                workflow.logger.warning(
                    "leaf_sync_failed",
                    extra={
                        "connector_id": target.connector_id,
                        "unit_id": unit.unit_id,
                        "error": describe_failure(outcome),
                    },
                )
                report.add_failure(unit.kind, unit.unit_id, describe_failure(outcome))
                unless_replaying(record_sync_unit, unit.kind.value, False)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                report.add_success(unit.kind)
                unless_replaying(record_sync_unit, unit.kind.value, True)
