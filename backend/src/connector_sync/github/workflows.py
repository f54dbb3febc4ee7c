"""GitHub workflow ids and the inputs of the generic sync workflows."""

from typing import Optional, Sequence

from connector_sync.orchestration.garbage_collector import GCInput, MirroredArtifact
from connector_sync.orchestration.models import (
    ConnectorProvider,
    ContainerRef,
    DebouncedSyncInput,
    FanOutInput,
    SyncOptions,
    SyncTarget,
    UnitKind,
)

LEAF_KINDS = [UnitKind.ISSUE, UnitKind.DISCUSSION]


# =============================================================================
# Workflow ids
# =============================================================================


def code_sync_task_id(connector_id: str, repo_id: str) -> str:
    return f"github-code-sync-{connector_id}-{repo_id}"


def issue_sync_task_id(connector_id: str, repo_id: str, number: int) -> str:
    return f"github-issue-sync-{connector_id}-{repo_id}-{number}"


def discussion_sync_task_id(connector_id: str, repo_id: str, number: int) -> str:
    return f"github-discussion-sync-{connector_id}-{repo_id}-{number}"


def gc_task_id(connector_id: str, resource: Optional[str] = None) -> str:
    if resource is None:
        return f"github-gc-{connector_id}"
    return f"github-gc-{connector_id}-{resource}"


# =============================================================================
# Workflow inputs
# =============================================================================


def fan_out_input(
    target: SyncTarget,
    options: SyncOptions,
    containers: Optional[Sequence[ContainerRef]] = None,
) -> FanOutInput:
    """Input of a full sync, or of a repositories sync when containers are given."""
    return FanOutInput(
        target=target,
        options=options,
        provider=ConnectorProvider.GITHUB,
        leaf_kinds=list(LEAF_KINDS),
        containers=list(containers) if containers is not None else None,
    )


def incremental_input(
    target: SyncTarget,
    repo: ContainerRef,
    kind: UnitKind,
    options: SyncOptions,
    number: Optional[int] = None,
) -> tuple[str, DebouncedSyncInput]:
    """Workflow id and input of the debounced sync of one resource.

    Code is synced per repository; issues and discussions one by one.
    """
    if kind == UnitKind.CODE:
        workflow_id = code_sync_task_id(target.connector_id, repo.id)
        external_id = None
    elif kind == UnitKind.ISSUE and number is not None:
        workflow_id = issue_sync_task_id(target.connector_id, repo.id, number)
        external_id = str(number)
    elif kind == UnitKind.DISCUSSION and number is not None:
        workflow_id = discussion_sync_task_id(target.connector_id, repo.id, number)
        external_id = str(number)
    else:
        raise ValueError(f"no incremental sync for {kind.value} (number={number})")
    return workflow_id, DebouncedSyncInput(
        target=target,
        container=repo,
        kind=kind,
        external_id=external_id,
        options=options,
        provider=ConnectorProvider.GITHUB,
    )


def gc_input(
    target: SyncTarget,
    options: SyncOptions,
    artifacts: Optional[Sequence[MirroredArtifact]] = None,
) -> GCInput:
    return GCInput(
        target=target,
        options=options,
        provider=ConnectorProvider.GITHUB,
        artifacts=list(artifacts) if artifacts is not None else None,
    )
