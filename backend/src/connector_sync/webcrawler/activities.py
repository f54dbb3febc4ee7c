"""Webcrawler activities: sync bookkeeping and the crawl itself."""

from dataclasses import replace
from typing import Callable, Optional

import structlog
from temporalio import activity

from connector_sync.config import Settings
from connector_sync.core.errors import ConfigurationError
from connector_sync.documents.store import DocumentStore
from connector_sync.orchestration.models import ConnectorProvider, SyncActivity, activity_name
from connector_sync.store.base import StateStore

from .crawl_scheduler import CrawlLimits, CrawlReport, CrawlScheduler, HttpPageFetcher, PageFetcher

logger = structlog.get_logger(__name__)

FetcherFactory = Callable[[], PageFetcher]


def crawl_task_id(connector_id: str) -> str:
    return f"webcrawler-crawl-{connector_id}"


class WebCrawlerActivities:
    """Runs a connector's crawl as one heartbeating activity.

    The connector is marked successful as soon as one page was persisted,
    before document upsert failures (if any) fail the activity.
    """

    def __init__(
        self,
        state_store: StateStore,
        document_store: DocumentStore,
        fetcher_factory: Optional[FetcherFactory] = None,
        limits: Optional[CrawlLimits] = None,
    ) -> None:
        self._state_store = state_store
        self._document_store = document_store
        self._fetcher_factory = fetcher_factory or HttpPageFetcher
        self._limits = limits or CrawlLimits()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        state_store: StateStore,
        document_store: DocumentStore,
    ) -> "WebCrawlerActivities":
        def fetcher_factory() -> PageFetcher:
            return HttpPageFetcher(
                timeout=settings.crawl_request_timeout_seconds,
                user_agent=settings.crawl_user_agent,
            )

        return cls(
            state_store,
            document_store,
            fetcher_factory=fetcher_factory,
            limits=CrawlLimits(
                max_depth=settings.crawl_max_depth,
                max_pages=settings.crawl_max_pages,
                concurrency=settings.crawl_concurrency,
                max_document_len=settings.max_document_txt_len,
            ),
        )

    @activity.defn(name=activity_name(ConnectorProvider.WEBCRAWLER, SyncActivity.SAVE_START))
    async def save_start(self, connector_id: str) -> None:
        await self._state_store.mark_sync_started(connector_id)

    @activity.defn(name=activity_name(ConnectorProvider.WEBCRAWLER, SyncActivity.SAVE_FAILURE))
    async def save_failure(self, connector_id: str, error_type: str) -> None:
        await self._state_store.mark_sync_failed(connector_id, error_type)

    @activity.defn(name=activity_name(ConnectorProvider.WEBCRAWLER, SyncActivity.CRAWL))
    async def crawl_website(self, connector_id: str) -> CrawlReport:
        """Crawl the configured site of a connector.

        Raises:
            ConnectorNotFoundError: If the connector does not exist
            ConfigurationError: If the connector has no crawl configuration
            DocumentUpsertError: If any crawled document failed to upsert
        """
        connector = await self._state_store.require_connector(connector_id)
        configuration = await self._state_store.get_webcrawler_configuration(connector_id)
        if configuration is None:
            raise ConfigurationError(connector_id, "webcrawler configuration not found")

        limits = replace(
            self._limits,
            max_depth=configuration.max_depth,
            max_pages=configuration.max_pages,
        )

        async def report_progress(page_count: int) -> None:
            await self._state_store.report_progress(connector_id, f"{page_count} pages")

        fetcher = self._fetcher_factory()
        try:
            scheduler = CrawlScheduler(
                connector_id=connector_id,
                data_source_id=connector.data_source_id,
                fetcher=fetcher,
                state_store=self._state_store,
                document_store=self._document_store,
                limits=limits,
                on_progress=report_progress,
            )
            report = await scheduler.run(configuration.url)
        finally:
            await fetcher.close()

        if report.page_count > 0:
            await self._state_store.mark_sync_succeeded(connector_id)
        report.raise_for_upsert_errors()
        return report

    def definitions(self) -> list[Callable]:
        """Bound activity methods to register on a worker."""
        return [self.save_start, self.save_failure, self.crawl_website]
