"""Tests for the bounded crawl scheduler."""

import asyncio
from typing import Optional

import httpx
import pytest

from connector_sync.core.errors import CrawlError, DocumentUpsertError
from connector_sync.documents.store import InMemoryDocumentStore
from connector_sync.webcrawler.crawl_scheduler import (
    CrawlLimits,
    CrawlScheduler,
    FetchedPage,
    HttpPageFetcher,
    PageFetcher,
)
from connector_sync.webcrawler.url_hierarchy import FILE, FOLDER, stable_id

SEED = "https://x.com"


def _html(title: str, body: str = "Some content") -> str:
    return f"<html><head><title>{title}</title></head><body><p>{body}</p></body></html>"


class FakeFetcher(PageFetcher):
    """Serves a fixed site; unknown URLs fail."""

    def __init__(self, site: dict[str, tuple[str, list[str]]]) -> None:
        self.site = site
        self.fetched: list[str] = []

    async def fetch(self, url: str) -> FetchedPage:
        self.fetched.append(url)
        if url not in self.site:
            raise CrawlError(url, "status 404")
        html, links = self.site[url]
        return FetchedPage(url=url, html=html, links=links)


class FailingDocumentStore(InMemoryDocumentStore):
    async def upsert(self, data_source_id, document):
        raise DocumentUpsertError("store unavailable")


def _scheduler(fetcher, state_store, document_store, **limits) -> CrawlScheduler:
    return CrawlScheduler(
        connector_id="7",
        data_source_id="ds-7",
        fetcher=fetcher,
        state_store=state_store,
        document_store=document_store,
        limits=CrawlLimits(**limits),
    )


def _wide_site() -> dict[str, tuple[str, list[str]]]:
    """Seed with 5 links at depth 1, each linking to depth-2 pages."""
    depth_one = [f"{SEED}/p{i}" for i in range(5)]
    depth_two = [f"{SEED}/p0/d{i}" for i in range(3)]
    site = {SEED: (_html("Home"), depth_one)}
    for url in depth_one:
        site[url] = (_html(url), depth_two)
    for url in depth_two:
        site[url] = (_html(url), [])
    return site


class TestCrawlLimits:
    """Tests for depth and page budgets."""

    @pytest.mark.asyncio
    async def test_max_pages_and_depth(self, state_store, document_store):
        """maxDepth=1 and maxPages=2 visit two pages and never depth 2."""
        fetcher = FakeFetcher(_wide_site())
        scheduler = _scheduler(fetcher, state_store, document_store, max_depth=1, max_pages=2)

        report = await scheduler.run(SEED)

        assert report.fetched == 2
        assert len(fetcher.fetched) == 2
        assert fetcher.fetched[0] == SEED
        assert all("/d" not in url for url in fetcher.fetched)
        assert report.page_count == 2

    @pytest.mark.asyncio
    async def test_depth_limit_drops_links(self, state_store, document_store):
        """Links beyond maxDepth are dropped without error."""
        fetcher = FakeFetcher(_wide_site())
        scheduler = _scheduler(fetcher, state_store, document_store, max_depth=1, max_pages=100)

        report = await scheduler.run(SEED)

        assert sorted(fetcher.fetched) == sorted([SEED] + [f"{SEED}/p{i}" for i in range(5)])
        assert report.crawling_errors == 0
        assert report.page_count == 6

    @pytest.mark.asyncio
    async def test_each_url_fetched_once(self, state_store, document_store):
        """A URL linked from many pages is fetched once."""
        fetcher = FakeFetcher(_wide_site())
        scheduler = _scheduler(fetcher, state_store, document_store, max_depth=5, max_pages=100)

        await scheduler.run(SEED)

        assert len(fetcher.fetched) == len(set(fetcher.fetched)) == 9


class TestCrawlPipeline:
    """Tests for persisted records and documents."""

    @pytest.mark.asyncio
    async def test_folders_and_pages_persisted(self, state_store, document_store):
        """Every visited page gets its folder chain and a page record."""
        site = {
            SEED: (_html("Home"), [f"{SEED}/docs/guide/intro"]),
            f"{SEED}/docs/guide/intro": (_html("Intro"), []),
        }
        scheduler = _scheduler(FakeFetcher(site), state_store, document_store, max_depth=2)

        await scheduler.run(SEED)

        folders = {folder.url: folder for folder in await state_store.list_folders("7")}
        assert sorted(folders) == [SEED, f"{SEED}/docs", f"{SEED}/docs/guide"]
        assert folders[SEED].parent_url is None
        assert folders[f"{SEED}/docs/guide"].parent_url == f"{SEED}/docs"
        assert folders[f"{SEED}/docs"].internal_id == stable_id(f"{SEED}/docs", FOLDER)

        pages = {page.url: page for page in await state_store.list_pages("7")}
        intro = pages[f"{SEED}/docs/guide/intro"]
        assert intro.parent_url == f"{SEED}/docs/guide"
        assert intro.title == "Intro"
        assert intro.document_id == stable_id(intro.url, FILE)
        assert document_store.document_ids("ds-7") == sorted(
            [stable_id(SEED, FILE), intro.document_id]
        )

    @pytest.mark.asyncio
    async def test_empty_content_skipped(self, state_store, document_store):
        """Empty pages are recorded but never sent to the document store."""
        site = {SEED: ("<html><body><script>x()</script></body></html>", [])}
        scheduler = _scheduler(FakeFetcher(site), state_store, document_store)

        report = await scheduler.run(SEED)

        assert report.skipped_pages == 1
        assert report.upserting_errors == 0
        assert report.page_count == 0
        assert document_store.upsert_count == 0
        assert len(await state_store.list_pages("7")) == 1

    @pytest.mark.asyncio
    async def test_oversized_content_skipped(self, state_store, document_store):
        """Pages above the document size cap are skipped."""
        site = {SEED: (_html("Big", "x" * 500), [])}
        scheduler = _scheduler(FakeFetcher(site), state_store, document_store, max_document_len=100)

        report = await scheduler.run(SEED)

        assert report.skipped_pages == 1
        assert document_store.upsert_count == 0

    @pytest.mark.asyncio
    async def test_fetch_failure_counted_and_crawl_continues(self, state_store, document_store):
        """A failing page is counted; its siblings are still crawled."""
        site = {SEED: (_html("Home"), [f"{SEED}/broken", f"{SEED}/ok"]), f"{SEED}/ok": (_html("Ok"), [])}
        scheduler = _scheduler(FakeFetcher(site), state_store, document_store)

        report = await scheduler.run(SEED)

        assert report.crawling_errors == 1
        assert report.page_count == 2
        assert f"{SEED}/broken" not in report.visited_urls

    @pytest.mark.asyncio
    async def test_upsert_failures_raised_after_crawl(self, state_store):
        """Upsert failures are counted and surfaced once the crawl is over."""
        site = {SEED: (_html("Home"), [f"{SEED}/a"]), f"{SEED}/a": (_html("A"), [])}
        scheduler = _scheduler(FakeFetcher(site), state_store, FailingDocumentStore())

        report = await scheduler.run(SEED)

        assert report.upserting_errors == 2
        assert report.crawling_errors == 0
        assert len(await state_store.list_pages("7")) == 2
        with pytest.raises(DocumentUpsertError):
            report.raise_for_upsert_errors()

    @pytest.mark.asyncio
    async def test_progress_callback(self, state_store, document_store):
        """Progress is reported after every persisted page."""
        progress = []

        async def on_progress(count: int) -> None:
            progress.append(count)

        site = {SEED: (_html("Home"), [f"{SEED}/a"]), f"{SEED}/a": (_html("A"), [])}
        scheduler = CrawlScheduler(
            connector_id="7",
            data_source_id="ds-7",
            fetcher=FakeFetcher(site),
            state_store=state_store,
            document_store=document_store,
            on_progress=on_progress,
        )

        await scheduler.run(SEED)

        assert progress == [1, 2]

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_stall_crawl(self, state_store, document_store):
        """A raising progress callback is counted and the remaining pages are crawled."""

        async def on_progress(count: int) -> None:
            raise RuntimeError("progress store unavailable")

        links = [f"{SEED}/p{i}" for i in range(3)]
        site = {SEED: (_html("Home"), links)}
        for url in links:
            site[url] = (_html(url), [])
        fetcher = FakeFetcher(site)
        scheduler = CrawlScheduler(
            connector_id="7",
            data_source_id="ds-7",
            fetcher=fetcher,
            state_store=state_store,
            document_store=document_store,
            limits=CrawlLimits(concurrency=1),
            on_progress=on_progress,
        )

        report = await asyncio.wait_for(scheduler.run(SEED), timeout=3)

        assert sorted(fetcher.fetched) == sorted([SEED, *links])
        assert report.crawling_errors == 4
        assert len(document_store.document_ids("ds-7")) == 4


class TestHttpPageFetcher:
    """Tests for the HTTP fetcher."""

    def _fetcher(self, handler, max_attempts: int = 1) -> HttpPageFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpPageFetcher(http_client=client, max_attempts=max_attempts)

    @pytest.mark.asyncio
    async def test_fetch_html(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                text='<a href="/next">Next</a>',
                headers={"content-type": "text/html; charset=utf-8"},
            )

        page = await self._fetcher(handler).fetch("https://x.com/start")

        assert page.links == ["https://x.com/next"]
        assert "Next" in page.html

    @pytest.mark.asyncio
    async def test_not_found_raises_crawl_error(self):
        fetcher = self._fetcher(lambda request: httpx.Response(404, text="missing"))

        with pytest.raises(CrawlError):
            await fetcher.fetch("https://x.com/missing")

    @pytest.mark.asyncio
    async def test_non_html_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"%PDF", headers={"content-type": "application/pdf"})

        with pytest.raises(CrawlError):
            await self._fetcher(handler).fetch("https://x.com/file.pdf")

    @pytest.mark.asyncio
    async def test_server_error_raises_crawl_error(self):
        fetcher = self._fetcher(lambda request: httpx.Response(503))

        with pytest.raises(CrawlError):
            await fetcher.fetch("https://x.com/down")

    @pytest.mark.asyncio
    async def test_network_error_raises_crawl_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(CrawlError):
            await self._fetcher(handler).fetch("https://x.com/")
