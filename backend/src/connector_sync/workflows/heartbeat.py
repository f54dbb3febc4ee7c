"""Heartbeats from code that runs both inside and outside an activity."""

from typing import Any

from temporalio import activity


def heartbeat(*details: Any) -> None:
    """Record activity progress; a no-op outside an activity."""
    if activity.in_activity():
        activity.heartbeat(*details)
