"""Data models for sync orchestration.

Defines sync targets and units, the inputs of sync workflows, the aggregate
report a fan-out produces and the result of a garbage collection pass.
Everything here crosses the workflow/activity boundary, so it is limited to
dataclasses, enums and types the Temporal data converter can round-trip.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from temporalio.common import RetryPolicy

from connector_sync.config import (
    DEFAULT_DEBOUNCE_WINDOW_SECONDS,
    DEFAULT_MAX_CONCURRENT_LEAF_SYNCS,
    DEFAULT_MAX_CONCURRENT_REPO_SYNCS,
    ActivityTimeouts,
    Settings,
)
from connector_sync.core.errors import (
    ConfigurationError,
    ConnectorNotFoundError,
    DocumentUpsertError,
    InvalidUrlError,
    UnsupportedOperationError,
    UpstreamPermanentError,
    ValidationError,
)

# Failures Temporal must not retry; matched on the exception class name.
NON_RETRYABLE_ERROR_TYPES = [
    error_type.__name__
    for error_type in (
        UpstreamPermanentError,
        ConfigurationError,
        ConnectorNotFoundError,
        UnsupportedOperationError,
        ValidationError,
        InvalidUrlError,
        DocumentUpsertError,
    )
]


class ConnectorProvider(str, Enum):
    """Supported connector providers."""

    GITHUB = "github"
    WEBCRAWLER = "webcrawler"


class UnitKind(str, Enum):
    """Kinds of sync units in the fan-out tree."""

    REPOSITORY = "repository"
    ISSUE = "issue"
    DISCUSSION = "discussion"
    CODE = "code"
    PAGE = "page"


class SyncStatus(str, Enum):
    """Status of a sync operation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class SyncActivity(str, Enum):
    """Steps a provider implements as activities for the generic workflows."""

    SAVE_START = "save_start"
    SAVE_SUCCESS = "save_success"
    SAVE_FAILURE = "save_failure"
    LIST_CONTAINERS = "list_containers"
    LIST_LEAVES = "list_leaves"
    SYNC_LEAF = "sync_leaf"
    SYNC_BULK = "sync_bulk"
    GC_LIST_MIRRORED = "gc_list_mirrored"
    GC_EXISTS_UPSTREAM = "gc_exists_upstream"
    GC_DELETE_MIRRORED = "gc_delete_mirrored"
    CRAWL = "crawl_website"


def activity_name(provider: ConnectorProvider, step: SyncActivity) -> str:
    """Registered activity name of one provider step, e.g. ``github.sync_leaf``."""
    return f"{provider.value}.{step.value}"


@dataclass(frozen=True)
class SyncOptions:
    """Tuning a workflow needs at run time.

    Workflows cannot read the environment, so the options travel with the
    workflow input and are fixed for the lifetime of a run.
    """

    timeouts: ActivityTimeouts = field(default_factory=ActivityTimeouts)
    container_concurrency: int = DEFAULT_MAX_CONCURRENT_REPO_SYNCS
    leaf_concurrency: int = DEFAULT_MAX_CONCURRENT_LEAF_SYNCS
    debounce_window_seconds: float = DEFAULT_DEBOUNCE_WINDOW_SECONDS
    max_attempts: int = 3
    retry_initial_seconds: float = 1.0
    retry_max_seconds: float = 30.0
    passes_per_run: int = 500

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncOptions":
        return cls(
            timeouts=settings.activity_timeouts,
            container_concurrency=settings.max_concurrent_repo_syncs,
            leaf_concurrency=settings.max_concurrent_leaf_syncs,
            debounce_window_seconds=settings.debounce_window_seconds,
            max_attempts=settings.activity_max_attempts,
            retry_initial_seconds=settings.activity_retry_initial_seconds,
            retry_max_seconds=settings.activity_retry_max_seconds,
        )

    def retry_policy(self) -> RetryPolicy:
        """Exponential backoff for transient failures; permanent ones fail at once."""
        return RetryPolicy(
            initial_interval=timedelta(seconds=self.retry_initial_seconds),
            maximum_interval=timedelta(seconds=self.retry_max_seconds),
            maximum_attempts=self.max_attempts,
            non_retryable_error_types=NON_RETRYABLE_ERROR_TYPES,
        )


@dataclass(frozen=True)
class SyncTarget:
    """An external installation/account scope mirrored into one data source.

    Attributes:
        connector_id: Connector owning the target
        installation_id: External installation identifier
        data_source_id: Destination document-store identifier
        sync_code_only: Restrict the pass to the bulk content step
    """

    connector_id: str
    installation_id: str
    data_source_id: str
    sync_code_only: bool = False

    @property
    def full_sync_task_id(self) -> str:
        return f"github-full-sync-{self.connector_id}"

    @property
    def repos_sync_task_id(self) -> str:
        return f"github-repos-sync-{self.connector_id}"

    def with_mode(self, sync_code_only: bool) -> "SyncTarget":
        return SyncTarget(
            connector_id=self.connector_id,
            installation_id=self.installation_id,
            data_source_id=self.data_source_id,
            sync_code_only=sync_code_only,
        )


@dataclass(frozen=True)
class ContainerRef:
    """A container resource (repository) discovered while listing a target."""

    id: str
    name: str
    owner: str


@dataclass
class ContainerPage:
    """One page of a target's containers, as returned by a listing activity."""

    items: list[ContainerRef] = field(default_factory=list)
    next_cursor: Optional[str] = None


@dataclass
class LeafPage:
    """One page of leaf external ids of one kind."""

    items: list[str] = field(default_factory=list)
    next_cursor: Optional[str] = None


@dataclass(frozen=True)
class SyncUnit:
    """One leaf of the fan-out tree.

    The unit id is derived from target, kind and external id only, so the
    same resource always maps to the same task and exclusivity key.
    """

    target: SyncTarget
    kind: UnitKind
    external_id: str
    container_id: Optional[str] = None

    @property
    def unit_id(self) -> str:
        parts = [self.kind.value, self.target.connector_id]
        if self.container_id is not None:
            parts.append(self.container_id)
        parts.append(self.external_id)
        return "-".join(parts)

    @property
    def container_key(self) -> str:
        """Key of the owning container; held shared while the unit syncs."""
        return exclusivity_key(self.target.connector_id, self.container_id or self.external_id)

    @property
    def exclusivity_key(self) -> str:
        if self.kind == UnitKind.REPOSITORY:
            return self.container_key
        resource_id = self.container_id or self.external_id
        if self.kind == UnitKind.CODE:
            return exclusivity_key(self.target.connector_id, resource_id, UnitKind.CODE)
        return exclusivity_key(self.target.connector_id, resource_id, self.kind, self.external_id)


def exclusivity_key(
    connector_id: str,
    resource_id: str,
    kind: Optional[UnitKind] = None,
    number: Optional[str] = None,
) -> str:
    """Per-resource key shared by incremental syncs and GC of that resource.

    ``c:repo`` names a whole container; ``c:repo:code`` and
    ``c:repo:issue:7`` name resources inside it.
    """
    if kind is None:
        return f"{connector_id}:{resource_id}"
    if number is None:
        return f"{connector_id}:{resource_id}:{kind.value}"
    return f"{connector_id}:{resource_id}:{kind.value}:{number}"


# =============================================================================
# Workflow inputs
# =============================================================================


@dataclass
class FanOutInput:
    """Input of a full sync, a repositories sync or one container sync.

    Attributes:
        target: Target being synced
        options: Concurrency, timeouts and retries of the run
        provider: Provider whose activities run the steps
        leaf_kinds: Leaf kinds listed inside each container
        containers: Explicit containers; a full sync lists them instead
    """

    target: SyncTarget
    options: SyncOptions = field(default_factory=SyncOptions)
    provider: ConnectorProvider = ConnectorProvider.GITHUB
    leaf_kinds: list[UnitKind] = field(default_factory=list)
    containers: Optional[list[ContainerRef]] = None


@dataclass
class ContainerSyncInput:
    """Input of the child workflow syncing one container."""

    target: SyncTarget
    container: ContainerRef
    options: SyncOptions = field(default_factory=SyncOptions)
    provider: ConnectorProvider = ConnectorProvider.GITHUB
    leaf_kinds: list[UnitKind] = field(default_factory=list)


@dataclass
class DebouncedSyncInput:
    """Input of the long-lived debounced sync of one resource.

    ``external_id`` is None for the bulk step of a container and the leaf's
    id otherwise.
    """

    target: SyncTarget
    container: ContainerRef
    kind: UnitKind
    external_id: Optional[str] = None
    options: SyncOptions = field(default_factory=SyncOptions)
    provider: ConnectorProvider = ConnectorProvider.GITHUB


# =============================================================================
# Results
# =============================================================================


@dataclass
class FanOutReport:
    """Aggregate outcome of a fan-out pass.

    Attributes:
        connector_id: Connector the pass ran for
        status: Overall status once completed
        units_total: Units that reached a terminal state
        units_succeeded: Units that completed successfully
        units_failed: Units that failed
        succeeded_by_kind: Successful units per kind
        failed_by_kind: Failed units per kind
        errors: Individual unit errors
        started_at: When the pass started
        completed_at: When the pass completed
        duration_seconds: Total duration in seconds
    """

    connector_id: str
    status: SyncStatus = SyncStatus.PENDING
    units_total: int = 0
    units_succeeded: int = 0
    units_failed: int = 0
    succeeded_by_kind: dict[str, int] = field(default_factory=dict)
    failed_by_kind: dict[str, int] = field(default_factory=dict)
    errors: list[dict[str, str]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    def mark_started(self, now: Optional[datetime] = None) -> None:
        """Mark the pass as started.

        Workflows pass ``workflow.now()`` so replays see the same timestamps.
        """
        self.status = SyncStatus.IN_PROGRESS
        self.started_at = now or datetime.now(timezone.utc)

    def mark_completed(self, now: Optional[datetime] = None) -> None:
        """Mark the pass as completed and derive its status."""
        self.completed_at = now or datetime.now(timezone.utc)
        if self.started_at:
            self.duration_seconds = (self.completed_at - self.started_at).total_seconds()

        if self.units_failed == 0:
            self.status = SyncStatus.COMPLETED
        elif self.units_succeeded > 0:
            self.status = SyncStatus.PARTIAL
        else:
            self.status = SyncStatus.FAILED

    def add_success(self, kind: UnitKind) -> None:
        self.units_total += 1
        self.units_succeeded += 1
        self.succeeded_by_kind[kind.value] = self.succeeded_by_kind.get(kind.value, 0) + 1

    def add_failure(self, kind: UnitKind, unit_id: str, error: str) -> None:
        self.units_total += 1
        self.units_failed += 1
        self.failed_by_kind[kind.value] = self.failed_by_kind.get(kind.value, 0) + 1
        self.errors.append({"kind": kind.value, "unit_id": unit_id, "error": error})

    def merge(self, other: "FanOutReport") -> None:
        """Fold a child report into this one."""
        self.units_total += other.units_total
        self.units_succeeded += other.units_succeeded
        self.units_failed += other.units_failed
        for kind, count in other.succeeded_by_kind.items():
            self.succeeded_by_kind[kind] = self.succeeded_by_kind.get(kind, 0) + count
        for kind, count in other.failed_by_kind.items():
            self.failed_by_kind[kind] = self.failed_by_kind.get(kind, 0) + count
        self.errors.extend(other.errors)

    def succeeded(self, kind: UnitKind) -> int:
        return self.succeeded_by_kind.get(kind.value, 0)

    def failed(self, kind: UnitKind) -> int:
        return self.failed_by_kind.get(kind.value, 0)


@dataclass
class GCReconciliationResult:
    """Result of a garbage collection pass.

    Attributes:
        removed: Mirrored artifacts confirmed absent upstream and deleted
        kept: Artifacts still present upstream, or whose absence was not confirmed
        failed: Artifacts whose deletion failed
        errors: Individual failures
    """

    removed: int = 0
    kept: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def add_failure(self, artifact_id: str, error: str) -> None:
        self.failed += 1
        self.errors.append({"artifact_id": artifact_id, "error": error})
