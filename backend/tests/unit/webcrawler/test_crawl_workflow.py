"""Tests for the webcrawler crawl workflow."""

import pytest
from temporalio.client import WorkflowFailureError
from temporalio.exceptions import ActivityError, ApplicationError

from connector_sync.core.errors import DocumentUpsertError
from connector_sync.documents.store import InMemoryDocumentStore
from connector_sync.orchestration.models import ConnectorProvider
from connector_sync.store.models import Connector, WebCrawlerConfiguration
from connector_sync.webcrawler.crawl_scheduler import CrawlLimits, FetchedPage, PageFetcher
from connector_sync.webcrawler.activities import WebCrawlerActivities, crawl_task_id
from connector_sync.workflows.crawl import CrawlInput, CrawlWorkflow, failure_type

SEED = "https://x.com"


class StaticFetcher(PageFetcher):
    closed = 0

    async def fetch(self, url: str) -> FetchedPage:
        links = [f"{SEED}/a"] if url == SEED else []
        return FetchedPage(url=url, html=f"<title>{url}</title><p>content</p>", links=links)

    async def close(self) -> None:
        StaticFetcher.closed += 1


class RejectingDocumentStore(InMemoryDocumentStore):
    async def upsert(self, data_source_id, document):
        raise DocumentUpsertError("rejected")


async def _create_webcrawler(store, with_configuration: bool = True) -> None:
    connector = Connector(
        id="7",
        provider=ConnectorProvider.WEBCRAWLER,
        workspace_id="ws",
        data_source_id="ds-7",
        connection_id=SEED,
    )
    if with_configuration:
        await store.create_connector_with_configuration(
            connector,
            WebCrawlerConfiguration(connector_id="7", url=SEED, max_depth=1, max_pages=10),
        )
    else:
        await store.create_connector(connector)


def test_crawl_task_id():
    assert crawl_task_id("7") == "webcrawler-crawl-7"


def test_failure_type_prefers_application_error_type():
    error = ActivityError(
        "activity failed",
        scheduled_event_id=1,
        started_event_id=2,
        identity="worker",
        activity_type="webcrawler.crawl_website",
        activity_id="1",
        retry_state=None,
    )
    error.__cause__ = ApplicationError("no configuration", type="ConfigurationError")

    assert failure_type(error) == "ConfigurationError"


class TestCrawlWorkflow:
    """Tests for the crawl workflow over the webcrawler activities."""

    async def _crawl(self, env, start_worker, activities, sync_options):
        async with start_worker(activities.definitions()) as task_queue:
            return await env.client.execute_workflow(
                CrawlWorkflow.run,
                CrawlInput(connector_id="7", options=sync_options),
                id=crawl_task_id("7"),
                task_queue=task_queue,
            )

    @pytest.mark.asyncio
    async def test_successful_crawl(self, env, start_worker, state_store, document_store, sync_options):
        """A crawl persists pages and marks the connector successful."""
        await _create_webcrawler(state_store)
        activities = WebCrawlerActivities(state_store, document_store, StaticFetcher, CrawlLimits())

        report = await self._crawl(env, start_worker, activities, sync_options)

        assert report.page_count == 2
        connector = await state_store.get_connector("7")
        assert connector.last_sync_status == "succeeded"
        assert connector.first_successful_sync_at is not None
        assert connector.sync_progress == "2 pages"
        assert len(document_store.document_ids("ds-7")) == 2

    @pytest.mark.asyncio
    async def test_configuration_limits_apply(self, env, start_worker, state_store, document_store, sync_options):
        """The stored configuration overrides the default crawl limits."""
        await state_store.create_connector_with_configuration(
            Connector(
                id="7",
                provider=ConnectorProvider.WEBCRAWLER,
                workspace_id="ws",
                data_source_id="ds-7",
                connection_id=SEED,
            ),
            WebCrawlerConfiguration(connector_id="7", url=SEED, max_depth=0, max_pages=10),
        )
        activities = WebCrawlerActivities(state_store, document_store, StaticFetcher)

        report = await self._crawl(env, start_worker, activities, sync_options)

        assert report.visited_urls == [SEED]

    @pytest.mark.asyncio
    async def test_missing_configuration_is_fatal(
        self, env, start_worker, state_store, document_store, sync_options
    ):
        """A connector without crawl configuration fails on the first attempt."""
        await _create_webcrawler(state_store, with_configuration=False)
        activities = WebCrawlerActivities(state_store, document_store, StaticFetcher)
        closed_before = StaticFetcher.closed

        with pytest.raises(WorkflowFailureError) as exc_info:
            await self._crawl(env, start_worker, activities, sync_options)

        assert isinstance(exc_info.value.cause, ActivityError)
        assert exc_info.value.cause.cause.type == "ConfigurationError"
        assert StaticFetcher.closed == closed_before
        connector = await state_store.get_connector("7")
        assert connector.last_sync_status == "failed"
        assert connector.error_type == "ConfigurationError"

    @pytest.mark.asyncio
    async def test_upsert_failure_after_partial_success(self, env, start_worker, state_store, sync_options):
        """Upsert failures fail the crawl after pages were persisted."""
        await _create_webcrawler(state_store)
        activities = WebCrawlerActivities(state_store, RejectingDocumentStore(), StaticFetcher)

        with pytest.raises(WorkflowFailureError):
            await self._crawl(env, start_worker, activities, sync_options)

        assert len(await state_store.list_pages("7")) == 2
        connector = await state_store.get_connector("7")
        assert connector.first_successful_sync_at is not None
        assert connector.last_sync_status == "failed"
        assert connector.error_type == "DocumentUpsertError"

    @pytest.mark.asyncio
    async def test_fetcher_closed(self, env, start_worker, state_store, document_store, sync_options):
        await _create_webcrawler(state_store)
        activities = WebCrawlerActivities(state_store, document_store, StaticFetcher)
        closed_before = StaticFetcher.closed

        await self._crawl(env, start_worker, activities, sync_options)

        assert StaticFetcher.closed == closed_before + 1
