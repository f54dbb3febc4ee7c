"""Configuration management for the connector sync service."""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
import structlog


# Orchestration defaults
DEFAULT_MAX_CONCURRENT_REPO_SYNCS = 3
DEFAULT_MAX_CONCURRENT_LEAF_SYNCS = 3
DEFAULT_DEBOUNCE_WINDOW_SECONDS = 10.0

# Webcrawler defaults
DEFAULT_CRAWL_MAX_DEPTH = 5
DEFAULT_CRAWL_MAX_PAGES = 512
DEFAULT_CRAWL_CONCURRENCY = 4
DEFAULT_MAX_DOCUMENT_TXT_LEN = 750_000
DEFAULT_CRAWL_USER_AGENT = "ConnectorSync-Crawler/1.0"

DEVELOPMENT_ENVS = {"development", "dev", "test", "local"}

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ActivityTimeouts:
    """Start-to-close timeouts per activity kind, in seconds.

    Ordering is part of the contract: metadata < listing < gc < bulk.
    Per-item upserts sit between listing and bulk.
    """

    metadata: float = 60.0
    listing: float = 300.0
    upsert: float = 3600.0
    gc: float = 1200.0
    bulk: float = 7200.0
    heartbeat: float = 300.0

    def validate(self) -> None:
        if not (self.metadata < self.listing < self.gc < self.bulk):
            raise ValueError(
                "Activity timeouts must satisfy metadata < listing < gc < bulk "
                f"(got {self.metadata}, {self.listing}, {self.gc}, {self.bulk})."
            )
        if self.upsert <= self.listing or self.upsert > self.bulk:
            raise ValueError(
                "ACTIVITY_TIMEOUT_UPSERT_SECONDS must be greater than the listing "
                "timeout and at most the bulk timeout."
            )
        if self.heartbeat <= 0:
            raise ValueError("ACTIVITY_HEARTBEAT_TIMEOUT_SECONDS must be > 0.")


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables."""

    app_env: str
    backend_host: str
    backend_port: int
    # State store
    state_store_backend: str
    state_store_prefix: str
    redis_url: Optional[str]
    # Document store
    document_store_url: Optional[str]
    document_store_api_key: Optional[str]
    document_store_timeout_seconds: float
    # GitHub
    github_api_url: str
    github_token: Optional[str]
    github_request_timeout_seconds: float
    code_sync_max_file_bytes: int
    # Orchestration
    max_concurrent_repo_syncs: int
    max_concurrent_leaf_syncs: int
    debounce_window_seconds: float
    activity_timeouts: ActivityTimeouts
    activity_max_attempts: int
    activity_retry_initial_seconds: float
    activity_retry_max_seconds: float
    # Temporal
    temporal_host: str
    temporal_namespace: str
    temporal_task_queue: str
    temporal_disable_sandbox: bool
    temporal_graceful_shutdown_seconds: float
    run_embedded_worker: bool
    # Webcrawler
    crawl_max_depth: int
    crawl_max_pages: int
    crawl_concurrency: int
    crawl_request_timeout_seconds: float
    crawl_user_agent: str
    max_document_txt_len: int
    # Observability
    metrics_enabled: bool

    @property
    def is_development(self) -> bool:
        return self.app_env in DEVELOPMENT_ENVS


def _get_bool_env(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _load_activity_timeouts() -> ActivityTimeouts:
    try:
        timeouts = ActivityTimeouts(
            metadata=float(os.getenv("ACTIVITY_TIMEOUT_METADATA_SECONDS", "60")),
            listing=float(os.getenv("ACTIVITY_TIMEOUT_LISTING_SECONDS", "300")),
            upsert=float(os.getenv("ACTIVITY_TIMEOUT_UPSERT_SECONDS", "3600")),
            gc=float(os.getenv("ACTIVITY_TIMEOUT_GC_SECONDS", "1200")),
            bulk=float(os.getenv("ACTIVITY_TIMEOUT_BULK_SECONDS", "7200")),
            heartbeat=float(os.getenv("ACTIVITY_HEARTBEAT_TIMEOUT_SECONDS", "300")),
        )
    except ValueError as exc:
        raise ValueError(
            "ACTIVITY_TIMEOUT_*_SECONDS values must be valid numbers. Check your .env file."
        ) from exc
    timeouts.validate()
    return timeouts


def load_settings() -> Settings:
    """
    Load settings from environment variables.

    Returns:
        Settings instance with all configuration values

    Raises:
        ValueError: If a value cannot be parsed or fails validation
        RuntimeError: If required environment variables are missing
    """
    load_dotenv()

    app_env = os.getenv("APP_ENV", "development").strip().lower()

    try:
        backend_port = int(os.getenv("BACKEND_PORT", "8000"))
    except ValueError as exc:
        raise ValueError(
            "BACKEND_PORT must be a valid integer. Check your .env file."
        ) from exc

    state_store_backend = os.getenv("STATE_STORE_BACKEND", "memory").strip().lower()
    if state_store_backend not in {"memory", "redis"}:
        raise ValueError("STATE_STORE_BACKEND must be 'memory' or 'redis'.")
    redis_url = os.getenv("REDIS_URL") or None

    document_store_url = os.getenv("DOCUMENT_STORE_URL") or None

    missing = []
    if state_store_backend == "redis" and not redis_url:
        missing.append("REDIS_URL")
    if app_env not in DEVELOPMENT_ENVS and not document_store_url:
        missing.append("DOCUMENT_STORE_URL")
    if missing:
        raise RuntimeError(
            "Missing required environment variables: "
            f"{', '.join(missing)}. Set them in the environment or a .env file."
        )

    try:
        max_concurrent_repo_syncs = int(
            os.getenv("MAX_CONCURRENT_REPO_SYNCS", str(DEFAULT_MAX_CONCURRENT_REPO_SYNCS))
        )
        max_concurrent_leaf_syncs = int(
            os.getenv("MAX_CONCURRENT_LEAF_SYNCS", str(DEFAULT_MAX_CONCURRENT_LEAF_SYNCS))
        )
        crawl_max_depth = int(os.getenv("CRAWL_MAX_DEPTH", str(DEFAULT_CRAWL_MAX_DEPTH)))
        crawl_max_pages = int(os.getenv("CRAWL_MAX_PAGES", str(DEFAULT_CRAWL_MAX_PAGES)))
        crawl_concurrency = int(
            os.getenv("CRAWL_CONCURRENCY", str(DEFAULT_CRAWL_CONCURRENCY))
        )
        max_document_txt_len = int(
            os.getenv("MAX_DOCUMENT_TXT_LEN", str(DEFAULT_MAX_DOCUMENT_TXT_LEN))
        )
        code_sync_max_file_bytes = int(os.getenv("CODE_SYNC_MAX_FILE_BYTES", "1000000"))
        activity_max_attempts = int(os.getenv("ACTIVITY_MAX_ATTEMPTS", "3"))
    except ValueError as exc:
        raise ValueError(
            "MAX_CONCURRENT_*, CRAWL_MAX_DEPTH, CRAWL_MAX_PAGES, CRAWL_CONCURRENCY, "
            "MAX_DOCUMENT_TXT_LEN, CODE_SYNC_MAX_FILE_BYTES and ACTIVITY_MAX_ATTEMPTS "
            "must be valid integers. Check your .env file."
        ) from exc

    try:
        debounce_window_seconds = float(
            os.getenv("DEBOUNCE_WINDOW_SECONDS", str(DEFAULT_DEBOUNCE_WINDOW_SECONDS))
        )
        document_store_timeout_seconds = float(
            os.getenv("DOCUMENT_STORE_TIMEOUT_SECONDS", "30")
        )
        github_request_timeout_seconds = float(
            os.getenv("GITHUB_REQUEST_TIMEOUT_SECONDS", "30")
        )
        crawl_request_timeout_seconds = float(
            os.getenv("CRAWL_REQUEST_TIMEOUT_SECONDS", "30")
        )
        activity_retry_initial_seconds = float(
            os.getenv("ACTIVITY_RETRY_INITIAL_SECONDS", "1")
        )
        activity_retry_max_seconds = float(os.getenv("ACTIVITY_RETRY_MAX_SECONDS", "30"))
        temporal_graceful_shutdown_seconds = float(
            os.getenv("TEMPORAL_GRACEFUL_SHUTDOWN_TIMEOUT", "60")
        )
    except ValueError as exc:
        raise ValueError(
            "DEBOUNCE_WINDOW_SECONDS, *_TIMEOUT_SECONDS, ACTIVITY_RETRY_* and "
            "TEMPORAL_GRACEFUL_SHUTDOWN_TIMEOUT values "
            "must be valid numbers. Check your .env file."
        ) from exc

    for name, value in (
        ("MAX_CONCURRENT_REPO_SYNCS", max_concurrent_repo_syncs),
        ("MAX_CONCURRENT_LEAF_SYNCS", max_concurrent_leaf_syncs),
        ("CRAWL_CONCURRENCY", crawl_concurrency),
        ("CRAWL_MAX_PAGES", crawl_max_pages),
        ("MAX_DOCUMENT_TXT_LEN", max_document_txt_len),
        ("ACTIVITY_MAX_ATTEMPTS", activity_max_attempts),
    ):
        if value < 1:
            raise ValueError(f"{name} must be >= 1.")
    if crawl_max_depth < 0:
        raise ValueError("CRAWL_MAX_DEPTH must be >= 0.")
    if debounce_window_seconds <= 0:
        raise ValueError("DEBOUNCE_WINDOW_SECONDS must be > 0.")
    if activity_retry_max_seconds < activity_retry_initial_seconds:
        raise ValueError(
            "ACTIVITY_RETRY_MAX_SECONDS must be >= ACTIVITY_RETRY_INITIAL_SECONDS."
        )
    if temporal_graceful_shutdown_seconds < 0:
        raise ValueError("TEMPORAL_GRACEFUL_SHUTDOWN_TIMEOUT must be >= 0.")

    activity_timeouts = _load_activity_timeouts()

    github_token = os.getenv("GITHUB_TOKEN") or None
    if not github_token:
        logger.warning("github_token_not_configured", env=app_env)

    return Settings(
        app_env=app_env,
        backend_host=os.getenv("BACKEND_HOST", "0.0.0.0"),
        backend_port=backend_port,
        state_store_backend=state_store_backend,
        state_store_prefix=os.getenv("STATE_STORE_PREFIX", "connector-sync"),
        redis_url=redis_url,
        document_store_url=document_store_url,
        document_store_api_key=os.getenv("DOCUMENT_STORE_API_KEY") or None,
        document_store_timeout_seconds=document_store_timeout_seconds,
        github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
        github_token=github_token,
        github_request_timeout_seconds=github_request_timeout_seconds,
        code_sync_max_file_bytes=code_sync_max_file_bytes,
        max_concurrent_repo_syncs=max_concurrent_repo_syncs,
        max_concurrent_leaf_syncs=max_concurrent_leaf_syncs,
        debounce_window_seconds=debounce_window_seconds,
        activity_timeouts=activity_timeouts,
        activity_max_attempts=activity_max_attempts,
        activity_retry_initial_seconds=activity_retry_initial_seconds,
        activity_retry_max_seconds=activity_retry_max_seconds,
        temporal_host=os.getenv("TEMPORAL_HOST", "localhost:7233"),
        temporal_namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
        temporal_task_queue=os.getenv("TEMPORAL_TASK_QUEUE", "connector-sync"),
        temporal_disable_sandbox=_get_bool_env("TEMPORAL_DISABLE_SANDBOX"),
        temporal_graceful_shutdown_seconds=temporal_graceful_shutdown_seconds,
        run_embedded_worker=_get_bool_env("RUN_EMBEDDED_WORKER", "true"),
        crawl_max_depth=crawl_max_depth,
        crawl_max_pages=crawl_max_pages,
        crawl_concurrency=crawl_concurrency,
        crawl_request_timeout_seconds=crawl_request_timeout_seconds,
        crawl_user_agent=os.getenv("CRAWL_USER_AGENT", DEFAULT_CRAWL_USER_AGENT),
        max_document_txt_len=max_document_txt_len,
        metrics_enabled=_get_bool_env("METRICS_ENABLED"),
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once
    from environment variables.

    Returns:
        Cached Settings instance
    """
    return load_settings()
