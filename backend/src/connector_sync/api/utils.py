"""Shared helpers for API routes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, TypeVar
from uuid import uuid4

from fastapi import HTTPException, Request

from connector_sync.connectors.manager import ConnectorManager
from connector_sync.connectors.models import FailureReason, OperationResult
from connector_sync.core.errors import AppError, ErrorCode

T = TypeVar("T")

FAILURE_STATUS: dict[FailureReason, tuple[ErrorCode, int]] = {
    FailureReason.NOT_FOUND: (ErrorCode.RESOURCE_NOT_FOUND, 404),
    FailureReason.INVALID_CONFIGURATION: (ErrorCode.VALIDATION_ERROR, 400),
    FailureReason.UNSUPPORTED: (ErrorCode.UNSUPPORTED_OPERATION, 400),
    FailureReason.UPSTREAM_ERROR: (ErrorCode.UPSTREAM_PERMANENT, 502),
    FailureReason.CONFLICT: (ErrorCode.CONFLICT, 409),
    FailureReason.INTERNAL_ERROR: (ErrorCode.INTERNAL_ERROR, 500),
}


def build_meta() -> dict[str, Any]:
    """Build standard response metadata."""
    return {
        "requestId": str(uuid4()),
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data, "meta": build_meta()}


def unwrap(result: OperationResult[T]) -> T:
    """Return the value of a successful result, or raise the matching AppError."""
    if result.ok:
        return result.value  # type: ignore[return-value]
    reason = result.reason or FailureReason.INTERNAL_ERROR
    code, status = FAILURE_STATUS[reason]
    raise AppError(
        code=code,
        message=result.message or reason.value,
        status=status,
        details={"reason": reason.value},
    )


async def get_connector_manager(request: Request) -> ConnectorManager:
    manager = getattr(request.app.state, "connector_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Connector manager unavailable")
    return manager
