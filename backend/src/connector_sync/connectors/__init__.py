"""Connector lifecycle layer."""

from .manager import ConnectorManager, failure_reason_for, sync_target
from .models import ConnectorStatus, FailureReason, OperationResult, ResourceRef

__all__ = [
    "ConnectorManager",
    "ConnectorStatus",
    "FailureReason",
    "OperationResult",
    "ResourceRef",
    "failure_reason_for",
    "sync_target",
]
