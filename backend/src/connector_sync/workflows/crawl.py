"""Webcrawler sync workflow."""

from dataclasses import dataclass, field

from temporalio import workflow
from temporalio.exceptions import ActivityError, ApplicationError

with workflow.unsafe.imports_passed_through():
    from connector_sync.orchestration.invoker import ActivityInvoker, describe_failure
    from connector_sync.orchestration.models import ConnectorProvider, SyncActivity, SyncOptions
    from connector_sync.webcrawler.crawl_scheduler import CrawlReport


@dataclass
class CrawlInput:
    connector_id: str
    options: SyncOptions = field(default_factory=SyncOptions)


def failure_type(error: ActivityError) -> str:
    """Name of the exception class that failed the activity."""
    cause = error.cause
    if isinstance(cause, ApplicationError) and cause.type:
        return cause.type
    return type(cause or error).__name__


@workflow.defn
class CrawlWorkflow:
    """Mark the sync started, then crawl; a failed crawl is recorded and re-raised."""

    @workflow.run
    async def run(self, input: CrawlInput) -> CrawlReport:
        invoker = ActivityInvoker(ConnectorProvider.WEBCRAWLER, input.options)
        timeouts = input.options.timeouts
        await invoker.execute(
            SyncActivity.SAVE_START, input.connector_id, timeout=timeouts.metadata
        )
        try:
            return await invoker.execute(
                SyncActivity.CRAWL,
                input.connector_id,
                timeout=timeouts.bulk,
                heartbeat=True,
                result_type=CrawlReport,
            )
        except ActivityError as e:
            error_type = failure_type(e)
            workflow.logger.warning(
                "crawl_failed",
                extra={
                    "connector_id": input.connector_id,
                    "error": describe_failure(e),
                    "error_type": error_type,
                },
            )
            await invoker.execute(
                SyncActivity.SAVE_FAILURE,
                input.connector_id,
                error_type,
                timeout=timeouts.metadata,
            )
            raise
