"""Retry helpers shared by activities and upstream HTTP clients.

Upstream HTTP calls retry transient failures (rate limits, timeouts, 5xx,
network errors) in-process with tenacity. Activity-level retries belong to
Temporal; see SyncOptions.retry_policy.
"""

from typing import Optional

import httpx
from tenacity import RetryCallState, wait_exponential

from connector_sync.core.errors import UpstreamTransientError

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def should_retry_on_rate_limit(exception: BaseException) -> bool:
    """Check if exception is a 429 response."""
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code == 429
    return False


def should_retry_on_timeout(exception: BaseException) -> bool:
    """Check if exception is a timeout or dropped connection."""
    return isinstance(exception, (httpx.TimeoutException, httpx.NetworkError))


def should_retry_http(exception: BaseException) -> bool:
    """Retry condition for raw httpx calls: 429, 5xx, timeouts and network errors."""
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code in RETRYABLE_STATUS_CODES
    return should_retry_on_timeout(exception)


def is_transient_error(exception: BaseException) -> bool:
    """Classify an activity failure as transient (retryable) or permanent."""
    if isinstance(exception, UpstreamTransientError):
        return True
    return should_retry_http(exception)


def wait_rate_limit_with_backoff(retry_state: RetryCallState) -> float:
    """Honour Retry-After on 429s, exponential backoff otherwise.

    Args:
        retry_state: tenacity retry state

    Returns:
        Number of seconds to wait before retry
    """
    exception = retry_state.outcome.exception() if retry_state.outcome else None

    retry_after = None
    if isinstance(exception, httpx.HTTPStatusError) and exception.response.status_code == 429:
        retry_after = exception.response.headers.get("Retry-After")
    elif isinstance(exception, UpstreamTransientError) and exception.retry_after is not None:
        retry_after = exception.retry_after

    if retry_after is not None:
        try:
            # Never below 1s, never above 2 minutes.
            return min(max(float(retry_after), 1.0), 120.0)
        except (ValueError, TypeError):
            pass
        return wait_exponential(multiplier=1, min=2, max=30)(retry_state)

    return wait_exponential(multiplier=1, min=2, max=10)(retry_state)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds; None if absent or not numeric."""
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
