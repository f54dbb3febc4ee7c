"""Worker interceptors: activity metrics and failure logs."""

import asyncio
import time
from typing import Any

import structlog
from temporalio import activity
from temporalio.worker import (
    ActivityInboundInterceptor,
    ExecuteActivityInput,
    Interceptor,
)

from connector_sync.observability.metrics import record_activity, track_activity_in_flight

from .retry import is_transient_error

logger = structlog.get_logger(__name__)


class ActivityMetricsInterceptor(Interceptor):
    """Records every activity attempt: duration by outcome and in-flight count."""

    def intercept_activity(self, next: ActivityInboundInterceptor) -> ActivityInboundInterceptor:
        return _ActivityMetricsInbound(next)


class _ActivityMetricsInbound(ActivityInboundInterceptor):
    async def execute_activity(self, input: ExecuteActivityInput) -> Any:
        info = activity.info()
        name = info.activity_type
        outcome = "failure"
        started = time.perf_counter()
        track_activity_in_flight(name, 1)
        try:
            result = await super().execute_activity(input)
            outcome = "success"
            return result
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        except Exception as e:
            logger.warning(
                "activity_failed",
                activity=name,
                workflow_id=info.workflow_id,
                attempt=info.attempt,
                error=str(e),
                error_type=type(e).__name__,
                transient=is_transient_error(e),
            )
            raise
        finally:
            track_activity_in_flight(name, -1)
            record_activity(name, outcome, time.perf_counter() - started)
