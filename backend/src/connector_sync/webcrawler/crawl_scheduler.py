"""Bounded breadth-first crawl of one site into folders, pages and documents."""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from connector_sync.config import (
    DEFAULT_CRAWL_CONCURRENCY,
    DEFAULT_CRAWL_MAX_DEPTH,
    DEFAULT_CRAWL_MAX_PAGES,
    DEFAULT_CRAWL_USER_AGENT,
    DEFAULT_MAX_DOCUMENT_TXT_LEN,
)
from connector_sync.core.errors import CrawlError, DocumentUpsertError
from connector_sync.documents.store import DocumentStore
from connector_sync.observability.metrics import record_crawl_page
from connector_sync.store.base import StateStore
from connector_sync.store.models import CrawlFolder, CrawlPage
from connector_sync.workflows.retry import RETRYABLE_STATUS_CODES, should_retry_http
from connector_sync.workflows.heartbeat import heartbeat

from .extraction import build_page_document, extract_links, extract_title, html_to_markdown
from .url_hierarchy import (
    FILE,
    FOLDER,
    ancestor_folders,
    folder_for_url,
    normalize_url,
    stable_id,
)

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]


@dataclass(frozen=True)
class CrawlLimits:
    """Bounds of one crawl.

    Attributes:
        max_depth: Links deeper than this many hops from the seed are dropped
        max_pages: No new fetch starts once this many were issued
        concurrency: Pages processed at once
        max_document_len: Longest extracted text sent to the document store
    """

    max_depth: int = DEFAULT_CRAWL_MAX_DEPTH
    max_pages: int = DEFAULT_CRAWL_MAX_PAGES
    concurrency: int = DEFAULT_CRAWL_CONCURRENCY
    max_document_len: int = DEFAULT_MAX_DOCUMENT_TXT_LEN


@dataclass
class CrawlReport:
    """Counters of one crawl pass.

    Attributes:
        page_count: Pages persisted (document upsert attempted)
        crawling_errors: Pages that could not be fetched, parsed or stored
        upserting_errors: Pages whose document upsert failed
        skipped_pages: Pages with empty or oversized content
        fetched: Fetches issued
    """

    page_count: int = 0
    crawling_errors: int = 0
    upserting_errors: int = 0
    skipped_pages: int = 0
    fetched: int = 0
    visited_urls: list[str] = field(default_factory=list)

    def raise_for_upsert_errors(self) -> None:
        if self.upserting_errors > 0:
            raise DocumentUpsertError(
                f"{self.upserting_errors} crawled documents failed to upsert",
                details={
                    "page_count": self.page_count,
                    "crawling_errors": self.crawling_errors,
                    "upserting_errors": self.upserting_errors,
                },
            )


@dataclass
class FetchedPage:
    """HTML of a fetched page and the same-host links found in it."""

    url: str
    html: str
    links: list[str] = field(default_factory=list)


class PageFetcher(ABC):
    """Fetches one page."""

    @abstractmethod
    async def fetch(self, url: str) -> FetchedPage:
        """Fetch and parse a page.

        Raises:
            CrawlError: If the page cannot be fetched
        """

    async def close(self) -> None:
        """Release underlying resources."""


class HttpPageFetcher(PageFetcher):
    """Fetches pages over HTTP, retrying transient failures."""

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_CRAWL_USER_AGENT,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
    ) -> None:
        if http_client is None:
            self._client = httpx.AsyncClient(
                timeout=timeout,
                headers={"User-Agent": user_agent},
                follow_redirects=True,
            )
            self._owns_client = True
        else:
            self._client = http_client
            self._owns_client = False
        self._max_attempts = max(1, max_attempts)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, url: str) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential_jitter(initial=1, max=30),
            retry=retry_if_exception(should_retry_http),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._client.get(url)
                if response.status_code in RETRYABLE_STATUS_CODES:
                    response.raise_for_status()
                return response
        raise AssertionError("unreachable")

    async def fetch(self, url: str) -> FetchedPage:
        try:
            response = await self._get(url)
        except httpx.HTTPError as e:
            raise CrawlError(url, str(e)) from e

        if response.status_code != 200:
            raise CrawlError(url, f"status {response.status_code}")
        content_type = response.headers.get("content-type", "")
        if content_type and "html" not in content_type:
            raise CrawlError(url, f"unsupported content type {content_type}")

        html = response.text
        return FetchedPage(url=url, html=html, links=extract_links(html, str(response.url)))


def _failed(task: "asyncio.Task[None]") -> bool:
    return task.done() and (task.cancelled() or task.exception() is not None)


class CrawlScheduler:
    """Crawls one site from a seed URL.

    Pages are processed by ``concurrency`` workers pulling (url, depth)
    pairs from a FIFO frontier. Per-page failures are counted and never
    abort the crawl. Folders are created once per crawl, parents first.

    Example:
        scheduler = CrawlScheduler(
            connector_id="1",
            data_source_id="ds",
            fetcher=HttpPageFetcher(),
            state_store=store,
            document_store=documents,
        )
        report = await scheduler.run("https://example.com/docs")
    """

    def __init__(
        self,
        connector_id: str,
        data_source_id: str,
        fetcher: PageFetcher,
        state_store: StateStore,
        document_store: DocumentStore,
        limits: Optional[CrawlLimits] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._connector_id = connector_id
        self._data_source_id = data_source_id
        self._fetcher = fetcher
        self._state_store = state_store
        self._document_store = document_store
        self._limits = limits or CrawlLimits()
        self._on_progress = on_progress
        self._logger = logger.bind(connector_id=connector_id)

        self._frontier: asyncio.Queue[tuple[str, int]] = asyncio.Queue()
        self._seen: set[str] = set()
        self._folder_writes: dict[str, "asyncio.Task[None]"] = {}
        self._report = CrawlReport()

    async def run(self, seed_url: str) -> CrawlReport:
        """Crawl from the seed until the frontier is empty or the page budget is spent."""
        self._logger.info(
            "crawl_started",
            seed_url=seed_url,
            max_depth=self._limits.max_depth,
            max_pages=self._limits.max_pages,
        )
        self._enqueue(normalize_url(seed_url), 0)

        workers = [
            asyncio.ensure_future(self._worker())
            for _ in range(self._limits.concurrency)
        ]
        try:
            await self._frontier.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        report = self._report
        self._logger.info(
            "crawl_completed",
            page_count=report.page_count,
            crawling_errors=report.crawling_errors,
            upserting_errors=report.upserting_errors,
            skipped_pages=report.skipped_pages,
            fetched=report.fetched,
        )
        return report

    def _enqueue(self, url: str, depth: int) -> None:
        if url in self._seen:
            return
        self._seen.add(url)
        self._frontier.put_nowait((url, depth))

    async def _worker(self) -> None:
        while True:
            url, depth = await self._frontier.get()
            try:
                if self._report.fetched >= self._limits.max_pages:
                    continue
                self._report.fetched += 1
                await self._process(url, depth)
            except Exception as e:
                # A page failing outside its own guards must not take the worker down.
                self._report.crawling_errors += 1
                record_crawl_page("crawl_error")
                self._logger.warning(
                    "crawl_page_failed",
                    url=url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._frontier.task_done()

    async def _process(self, url: str, depth: int) -> None:
        heartbeat({"type": "http_request", "url": url})
        try:
            page = await self._fetcher.fetch(url)
            markdown = html_to_markdown(page.html)
            title = extract_title(page.html)
        except Exception as e:
            self._report.crawling_errors += 1
            record_crawl_page("crawl_error")
            self._logger.warning("crawl_page_failed", url=url, error=str(e))
            return

        self._report.visited_urls.append(url)
        self._enqueue_links(page, depth)

        document_id = stable_id(url, FILE)
        try:
            await self._persist_folders(url)
            await self._state_store.upsert_page(
                CrawlPage(
                    connector_id=self._connector_id,
                    url=url,
                    parent_url=folder_for_url(url),
                    document_id=document_id,
                    title=title,
                )
            )
        except Exception as e:
            self._report.crawling_errors += 1
            record_crawl_page("crawl_error")
            self._logger.warning("crawl_page_store_failed", url=url, error=str(e))
            return

        heartbeat({"type": "upserting", "url": url})

        if not 0 < len(markdown) <= self._limits.max_document_len:
            self._report.skipped_pages += 1
            record_crawl_page("skipped")
            self._logger.info(
                "crawl_page_skipped",
                url=url,
                document_id=document_id,
                document_len=len(markdown),
                title=title,
                reason="empty" if not markdown else "too_large",
            )
            return

        try:
            await self._document_store.upsert(
                self._data_source_id,
                build_page_document(
                    document_id=document_id,
                    url=url,
                    title=title,
                    content=markdown,
                    timestamp_ms=int(time.time() * 1000),
                ),
            )
        except Exception as e:
            self._report.upserting_errors += 1
            record_crawl_page("upsert_error")
            self._logger.error("crawl_document_upsert_failed", url=url, error=str(e))
        else:
            record_crawl_page("upserted")

        self._report.page_count += 1
        if self._on_progress is not None:
            await self._on_progress(self._report.page_count)

    def _enqueue_links(self, page: FetchedPage, depth: int) -> None:
        next_depth = depth + 1
        if next_depth > self._limits.max_depth:
            if page.links:
                self._logger.debug("crawl_max_depth_reached", url=page.url, depth=depth)
            return
        for link in page.links:
            self._enqueue(link, next_depth)

    async def _persist_folders(self, url: str) -> None:
        # Root first, so a folder's parent is always written before it.
        for folder_url in ancestor_folders(url):
            write = self._folder_writes.get(folder_url)
            if write is None or _failed(write):
                write = asyncio.ensure_future(self._write_folder(folder_url))
                self._folder_writes[folder_url] = write
            await asyncio.shield(write)

    async def _write_folder(self, folder_url: str) -> None:
        await self._state_store.upsert_folder(
            CrawlFolder(
                connector_id=self._connector_id,
                url=folder_url,
                parent_url=folder_for_url(folder_url),
                internal_id=stable_id(folder_url, FOLDER),
            )
        )
