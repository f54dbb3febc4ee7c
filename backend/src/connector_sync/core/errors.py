"""Error handling with RFC 7807 Problem Details support."""

from enum import Enum
from typing import Any, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class ErrorCode(str, Enum):
    """Standardized error codes for the application."""

    VALIDATION_ERROR = "validation_error"
    INVALID_URL = "invalid_url"
    CONNECTOR_NOT_FOUND = "connector_not_found"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFIGURATION_ERROR = "configuration_error"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    CONFLICT = "conflict"
    UPSTREAM_TRANSIENT = "upstream_transient"
    UPSTREAM_PERMANENT = "upstream_permanent"
    CRAWL_FAILED = "crawl_failed"
    DOCUMENT_UPSERT_FAILED = "document_upsert_failed"
    STORE_ERROR = "store_error"
    REDIS_ERROR = "redis_error"
    INTERNAL_ERROR = "internal_error"


class AppError(Exception):
    """
    Structured application error following RFC 7807 Problem Details.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        status: HTTP status code
        details: Additional error context
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status: int = 500,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}
        super().__init__(message)

    def to_problem_detail(self, instance: str) -> dict[str, Any]:
        """
        Convert error to RFC 7807 Problem Details format.

        Args:
            instance: The request path where the error occurred

        Returns:
            Dictionary in RFC 7807 format
        """
        problem = {
            "type": f"https://api.example.com/errors/{self.code.value.replace('_', '-')}",
            "title": self.code.value.replace("_", " ").title(),
            "status": self.status,
            "detail": self.message,
            "instance": instance,
        }
        if self.details:
            problem["errors"] = self.details
        return problem


class ValidationError(AppError):
    """Validation error for request data."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            status=400,
            details=details,
        )


class InvalidUrlError(AppError):
    """Error for invalid or inaccessible URLs."""

    def __init__(self, url: str, reason: str = "URL is not valid or accessible") -> None:
        super().__init__(
            code=ErrorCode.INVALID_URL,
            message=f"Invalid URL: {reason}",
            status=400,
            details={"url": url},
        )


class ConnectorNotFoundError(AppError):
    """Error when a connector is not found."""

    def __init__(self, connector_id: str) -> None:
        super().__init__(
            code=ErrorCode.CONNECTOR_NOT_FOUND,
            message=f"Connector with ID '{connector_id}' not found",
            status=404,
            details={"connector_id": connector_id},
        )


class ResourceNotFoundError(AppError):
    """Error when a connector resource (folder, page) is not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            code=ErrorCode.RESOURCE_NOT_FOUND,
            message=f"{resource_type.capitalize()} '{resource_id}' not found",
            status=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class ConfigurationError(AppError):
    """Unexpected configuration state for a sync target. Always fatal."""

    def __init__(self, connector_id: str, reason: str) -> None:
        super().__init__(
            code=ErrorCode.CONFIGURATION_ERROR,
            message=f"Invalid configuration for connector '{connector_id}': {reason}",
            status=409,
            details={"connector_id": connector_id},
        )


class UnsupportedOperationError(AppError):
    """Error when a connector provider does not support an operation."""

    def __init__(self, provider: str, operation: str) -> None:
        super().__init__(
            code=ErrorCode.UNSUPPORTED_OPERATION,
            message=f"Operation '{operation}' is not supported for {provider} connectors",
            status=400,
            details={"provider": provider, "operation": operation},
        )


class ConflictError(AppError):
    """Error when an operation conflicts with current state."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            code=ErrorCode.CONFLICT,
            message=message,
            status=409,
            details=details,
        )


class UpstreamTransientError(AppError):
    """Retryable upstream failure (rate limit, timeout, 5xx)."""

    def __init__(
        self,
        source: str,
        reason: str,
        retry_after: Optional[float] = None,
    ) -> None:
        details: dict[str, Any] = {"source": source}
        if retry_after is not None:
            details["retry_after"] = retry_after
        self.retry_after = retry_after
        super().__init__(
            code=ErrorCode.UPSTREAM_TRANSIENT,
            message=f"Transient upstream error from {source}: {reason}",
            status=502,
            details=details,
        )


class UpstreamPermanentError(AppError):
    """Non-retryable upstream failure."""

    def __init__(self, source: str, reason: str, status_code: Optional[int] = None) -> None:
        details: dict[str, Any] = {"source": source}
        if status_code is not None:
            details["status_code"] = status_code
        self.status_code = status_code
        super().__init__(
            code=ErrorCode.UPSTREAM_PERMANENT,
            message=f"Upstream error from {source}: {reason}",
            status=502,
            details=details,
        )


class CrawlError(AppError):
    """Error during crawling operation."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(
            code=ErrorCode.CRAWL_FAILED,
            message=f"Crawl failed: {reason}",
            status=500,
            details={"url": url},
        )


class DocumentUpsertError(AppError):
    """Error writing to the document store."""

    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            code=ErrorCode.DOCUMENT_UPSERT_FAILED,
            message=f"Document upsert failed: {reason}",
            status=502,
            details=details,
        )


class StoreError(AppError):
    """State store operation error."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            code=ErrorCode.STORE_ERROR,
            message=f"State store error during {operation}: {reason}",
            status=500,
        )


class RedisError(AppError):
    """Redis operation error."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            code=ErrorCode.REDIS_ERROR,
            message=f"Redis error during {operation}: {reason}",
            status=500,
        )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """
    FastAPI exception handler for AppError.

    Converts AppError to RFC 7807 Problem Details JSON response.

    Args:
        request: The FastAPI request object
        exc: The AppError exception

    Returns:
        JSONResponse with Problem Details format
    """
    return JSONResponse(
        status_code=exc.status,
        content=exc.to_problem_detail(str(request.url.path)),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render plain HTTPExceptions as Problem Details too."""
    problem = {
        "type": "about:blank",
        "title": "Http Error",
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    return JSONResponse(
        status_code=exc.status_code,
        content=problem,
        headers=getattr(exc, "headers", None),
    )
