"""Prometheus metric definitions for sync orchestration.

Covers the fan-out tree (sync units per kind), the webcrawler (pages per
outcome), debounced incremental syncs, garbage collection and activity
execution on the Temporal worker.
"""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    REGISTRY,
)
import structlog

logger = structlog.get_logger(__name__)

# Default registry (can be overridden for testing)
_registry: CollectorRegistry = REGISTRY


def get_metrics_registry() -> CollectorRegistry:
    """Get the current metrics registry.

    Returns:
        The CollectorRegistry used for all metrics
    """
    return _registry


# =============================================================================
# Counter Metrics
# =============================================================================

SYNC_UNITS_TOTAL = Counter(
    "connector_sync_units_total",
    "Total number of sync units that reached a terminal state",
    labelnames=["kind", "outcome"],
    registry=_registry,
)
"""Counter for sync units.

Labels:
    kind: repository|issue|discussion|code|page
    outcome: success|failure
"""

CRAWL_PAGES_TOTAL = Counter(
    "connector_crawl_pages_total",
    "Total number of crawled pages by outcome",
    labelnames=["outcome"],
    registry=_registry,
)
"""Counter for crawled pages.

Labels:
    outcome: upserted|skipped|crawl_error|upsert_error
"""

DEBOUNCE_PASSES_TOTAL = Counter(
    "connector_debounce_passes_total",
    "Total number of debounced sync passes executed",
    labelnames=["kind"],
    registry=_registry,
)

DEBOUNCE_COALESCED_TOTAL = Counter(
    "connector_debounce_coalesced_total",
    "Total number of notifications folded into an already pending sync pass",
    labelnames=["kind"],
    registry=_registry,
)

GC_ARTIFACTS_TOTAL = Counter(
    "connector_gc_artifacts_total",
    "Total number of mirrored artifacts handled by garbage collection",
    labelnames=["kind", "outcome"],
    registry=_registry,
)
"""Counter for garbage collection.

Labels:
    kind: repository|issue|discussion|code
    outcome: removed|kept|failed
"""

# =============================================================================
# Histogram Metrics
# =============================================================================

# Activity buckets in seconds: 100ms up to 2h
ACTIVITY_BUCKETS = (0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 1200.0, 3600.0, 7200.0)

ACTIVITY_DURATION_SECONDS = Histogram(
    "connector_activity_duration_seconds",
    "Activity execution time including retries",
    labelnames=["activity", "outcome"],
    buckets=ACTIVITY_BUCKETS,
    registry=_registry,
)
"""Histogram for activity durations.

Labels:
    activity: registered activity name, e.g. github.sync_leaf
    outcome: success|failure|cancelled
"""

# =============================================================================
# Gauge Metrics
# =============================================================================

ACTIVITIES_IN_FLIGHT = Gauge(
    "connector_activities_in_flight",
    "Number of activities currently executing on this worker",
    labelnames=["activity"],
    registry=_registry,
)

GATE_ACTIVE = Gauge(
    "connector_gate_active",
    "Number of tasks currently admitted by a concurrency gate",
    labelnames=["gate"],
    registry=_registry,
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_sync_unit(kind: str, success: bool) -> None:
    """Record a sync unit reaching a terminal state."""
    SYNC_UNITS_TOTAL.labels(kind=kind, outcome="success" if success else "failure").inc()


def record_crawl_page(outcome: str) -> None:
    """Record a crawled page outcome."""
    CRAWL_PAGES_TOTAL.labels(outcome=outcome).inc()


def record_debounce_pass(kind: str, coalesced_count: int) -> None:
    """Record a debounced sync pass and how many notifications it absorbed."""
    DEBOUNCE_PASSES_TOTAL.labels(kind=kind).inc()
    if coalesced_count > 0:
        DEBOUNCE_COALESCED_TOTAL.labels(kind=kind).inc(coalesced_count)


def record_gc_artifact(kind: str, outcome: str) -> None:
    """Record a garbage collection decision for one artifact."""
    GC_ARTIFACTS_TOTAL.labels(kind=kind, outcome=outcome).inc()


def record_activity(activity: str, outcome: str, duration_seconds: float) -> None:
    """Record an activity execution."""
    ACTIVITY_DURATION_SECONDS.labels(activity=activity, outcome=outcome).observe(
        duration_seconds
    )


def track_activity_in_flight(activity: str, delta: int) -> None:
    """Adjust the number of executing activities of one type."""
    ACTIVITIES_IN_FLIGHT.labels(activity=activity).inc(delta)


def set_gate_active(gate: str, count: int) -> None:
    """Set the number of admitted tasks for a gate."""
    GATE_ACTIVE.labels(gate=gate).set(count)
