"""Core utilities for the connector sync service."""

from .errors import (
    AppError,
    ConfigurationError,
    ConflictError,
    ConnectorNotFoundError,
    CrawlError,
    DocumentUpsertError,
    ErrorCode,
    InvalidUrlError,
    RedisError,
    ResourceNotFoundError,
    StoreError,
    UnsupportedOperationError,
    UpstreamPermanentError,
    UpstreamTransientError,
    ValidationError,
)

__all__ = [
    "AppError",
    "ConfigurationError",
    "ConflictError",
    "ConnectorNotFoundError",
    "CrawlError",
    "DocumentUpsertError",
    "ErrorCode",
    "InvalidUrlError",
    "RedisError",
    "ResourceNotFoundError",
    "StoreError",
    "UnsupportedOperationError",
    "UpstreamPermanentError",
    "UpstreamTransientError",
    "ValidationError",
]
