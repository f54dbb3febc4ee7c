"""Reconciliation of mirrored artifacts against upstream existence."""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from temporalio import workflow
from temporalio.exceptions import ActivityError

from connector_sync.observability.metrics import record_gc_artifact

from .invoker import ActivityInvoker, describe_failure, unless_replaying
from .models import (
    ConnectorProvider,
    GCReconciliationResult,
    SyncActivity,
    SyncOptions,
    SyncTarget,
    UnitKind,
)


@dataclass(frozen=True)
class MirroredArtifact:
    """A mirrored resource and the documents derived from it.

    Attributes:
        kind: Resource kind
        external_id: Upstream identifier (issue number, repository id, ...)
        resource_key: Exclusivity key shared with incremental syncs
        container_id: Owning container, if any
        container_key: Exclusivity key of the owning container, if any
        document_ids: Documents derived from the resource
    """

    kind: UnitKind
    external_id: str
    resource_key: str
    container_id: Optional[str] = None
    container_key: Optional[str] = None
    document_ids: list[str] = field(default_factory=list)

    @property
    def artifact_id(self) -> str:
        if self.container_id is None:
            return f"{self.kind.value}:{self.external_id}"
        return f"{self.kind.value}:{self.container_id}:{self.external_id}"


@dataclass
class GCInput:
    """Input of a garbage collection workflow.

    ``artifacts`` restricts the pass; None reconciles everything mirrored
    for the target.
    """

    target: SyncTarget
    options: SyncOptions = field(default_factory=SyncOptions)
    provider: ConnectorProvider = ConnectorProvider.GITHUB
    artifacts: Optional[list[MirroredArtifact]] = None


class GarbageCollector:
    """Removes mirrored artifacts whose upstream resource is confirmed absent.

    Deletions run under the resource's exclusivity key on the worker, so a
    pass never interleaves with an incremental sync of the same resource.
    A failed existence check keeps the artifact; a failed deletion is
    counted and the pass moves on.
    """

    def __init__(self, invoker: ActivityInvoker) -> None:
        self._invoker = invoker
        self._timeouts = invoker.options.timeouts

    async def collect(
        self,
        target: SyncTarget,
        artifacts: Optional[Sequence[MirroredArtifact]] = None,
    ) -> GCReconciliationResult:
        """Reconcile the given artifacts, or everything mirrored for the target.

        Args:
            target: Sync target owning the artifacts
            artifacts: Restrict the pass to these artifacts

        Returns:
            Counts of removed, kept and failed artifacts
        """
        if artifacts is None:
            artifacts = await self._invoker.execute(
                SyncActivity.GC_LIST_MIRRORED,
                target,
                timeout=self._timeouts.listing,
                result_type=list[MirroredArtifact],
            )

        workflow.logger.info(
            "gc_started",
            extra={"connector_id": target.connector_id, "artifacts": len(artifacts)},
        )
        result = GCReconciliationResult()
        for artifact in artifacts:
            await self._reconcile(target, artifact, result)

        workflow.logger.info(
            "gc_completed",
            extra={
                "connector_id": target.connector_id,
                "removed": result.removed,
                "kept": result.kept,
                "failed": result.failed,
            },
        )
        return result

    def _timeout_for(self, artifact: MirroredArtifact) -> float:
        if artifact.kind in (UnitKind.REPOSITORY, UnitKind.CODE):
            return self._timeouts.gc
        return self._timeouts.listing

    async def _reconcile(
        self,
        target: SyncTarget,
        artifact: MirroredArtifact,
        result: GCReconciliationResult,
    ) -> None:
        extra = {"connector_id": target.connector_id, "artifact_id": artifact.artifact_id}
        try:
            exists = await self._invoker.execute(
                SyncActivity.GC_EXISTS_UPSTREAM,
                target,
                artifact,
                timeout=self._timeouts.listing,
                result_type=bool,
            )
        except ActivityError as e:
            workflow.logger.warning(
                "gc_existence_check_failed", extra={**extra, "error": describe_failure(e)}
            )
            result.kept += 1
            unless_replaying(record_gc_artifact, artifact.kind.value, "kept")
            return

        if exists:
            result.kept += 1
            unless_replaying(record_gc_artifact, artifact.kind.value, "kept")
            return

        try:
            await self._invoker.execute(
                SyncActivity.GC_DELETE_MIRRORED,
                target,
                artifact,
                timeout=self._timeout_for(artifact),
            )
        except ActivityError as e:
            workflow.logger.warning(
                "gc_delete_failed", extra={**extra, "error": describe_failure(e)}
            )
            result.add_failure(artifact.artifact_id, describe_failure(e))
            unless_replaying(record_gc_artifact, artifact.kind.value, "failed")
            return

        workflow.logger.info(
            "gc_artifact_removed", extra={**extra, "documents": len(artifact.document_ids)}
        )
        result.removed += 1
        unless_replaying(record_gc_artifact, artifact.kind.value, "removed")
