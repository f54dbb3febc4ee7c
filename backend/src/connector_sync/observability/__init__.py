"""Observability package: Prometheus metric definitions and helpers."""

from .metrics import (
    # Counters
    SYNC_UNITS_TOTAL,
    CRAWL_PAGES_TOTAL,
    DEBOUNCE_PASSES_TOTAL,
    DEBOUNCE_COALESCED_TOTAL,
    GC_ARTIFACTS_TOTAL,
    # Histograms
    ACTIVITY_DURATION_SECONDS,
    # Gauges
    ACTIVITIES_IN_FLIGHT,
    GATE_ACTIVE,
    # Helper functions
    record_sync_unit,
    record_crawl_page,
    record_debounce_pass,
    record_gc_artifact,
    record_activity,
    track_activity_in_flight,
    set_gate_active,
    get_metrics_registry,
)

__all__ = [
    "SYNC_UNITS_TOTAL",
    "CRAWL_PAGES_TOTAL",
    "DEBOUNCE_PASSES_TOTAL",
    "DEBOUNCE_COALESCED_TOTAL",
    "GC_ARTIFACTS_TOTAL",
    "ACTIVITY_DURATION_SECONDS",
    "ACTIVITIES_IN_FLIGHT",
    "GATE_ACTIVE",
    "record_sync_unit",
    "record_crawl_page",
    "record_debounce_pass",
    "record_gc_artifact",
    "record_activity",
    "track_activity_in_flight",
    "set_gate_active",
    "get_metrics_registry",
]
