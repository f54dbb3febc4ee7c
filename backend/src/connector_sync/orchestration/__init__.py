"""Sync orchestration: pagination, admission control, fan-out, debounce and GC.

Fan-out, debounce and GC run inside workflows; locks run inside activities.
"""

from .concurrency import ConcurrencyGate
from .debounce import DebounceLoop, DebounceState
from .fanout import FanOutScheduler
from .garbage_collector import GarbageCollector, GCInput, MirroredArtifact
from .invoker import ActivityInvoker
from .locks import ResourceLocks
from .models import (
    ConnectorProvider,
    ContainerRef,
    FanOutReport,
    GCReconciliationResult,
    SyncActivity,
    SyncOptions,
    SyncStatus,
    SyncTarget,
    SyncUnit,
    UnitKind,
    activity_name,
    exclusivity_key,
)
from .pagination import Page, collect_all, iterate_items, iterate_pages, page_number_listing

__all__ = [
    "ActivityInvoker",
    "ConcurrencyGate",
    "ConnectorProvider",
    "ContainerRef",
    "DebounceLoop",
    "DebounceState",
    "FanOutReport",
    "FanOutScheduler",
    "GCInput",
    "GCReconciliationResult",
    "GarbageCollector",
    "MirroredArtifact",
    "Page",
    "ResourceLocks",
    "SyncActivity",
    "SyncOptions",
    "SyncStatus",
    "SyncTarget",
    "SyncUnit",
    "UnitKind",
    "activity_name",
    "collect_all",
    "exclusivity_key",
    "iterate_items",
    "iterate_pages",
    "page_number_listing",
]
