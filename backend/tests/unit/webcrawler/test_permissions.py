"""Tests for the crawled resource tree."""

import pytest

from connector_sync.core.errors import ResourceNotFoundError
from connector_sync.store.models import CrawlFolder, CrawlPage
from connector_sync.webcrawler.permissions import list_resources, retrieve_parents, retrieve_titles
from connector_sync.webcrawler.url_hierarchy import FILE, FOLDER, folder_for_url, stable_id

ROOT = "https://x.com"
DOCS = "https://x.com/docs"
INTRO = "https://x.com/docs/intro"


async def _seed_site(store) -> None:
    """Root and /docs were crawled as pages and are also folders."""
    for url in (ROOT, DOCS):
        await store.upsert_folder(
            CrawlFolder(
                connector_id="7",
                url=url,
                parent_url=folder_for_url(url),
                internal_id=stable_id(url, FOLDER),
            )
        )
    for url, title in ((ROOT, "Home"), (DOCS, "Docs"), (INTRO, "Intro")):
        await store.upsert_page(
            CrawlPage(
                connector_id="7",
                url=url,
                parent_url=folder_for_url(url),
                document_id=stable_id(url, FILE),
                title=title,
            )
        )


class TestListResources:
    """Tests for folder and page listings."""

    @pytest.mark.asyncio
    async def test_roots_merge_page_and_folder(self, state_store):
        """A page that is also a folder is listed once, as an expandable file."""
        await _seed_site(state_store)

        resources = await list_resources(state_store, "7")

        assert len(resources) == 1
        root = resources[0]
        assert root.type == "file"
        assert root.expandable is True
        assert root.internal_id == stable_id(ROOT, FOLDER)
        assert root.document_id == stable_id(ROOT, FILE)
        assert root.title == "x.com"
        assert root.parent_internal_id is None

    @pytest.mark.asyncio
    async def test_children_of_folder(self, state_store):
        """Children are listed with the folder's id as parent."""
        await _seed_site(state_store)

        children = await list_resources(state_store, "7", stable_id(ROOT, FOLDER))

        assert [(r.title, r.expandable, r.internal_id) for r in children] == [
            ("docs", True, stable_id(DOCS, FOLDER)),
        ]
        assert children[0].parent_internal_id == stable_id(ROOT, FOLDER)

    @pytest.mark.asyncio
    async def test_query_variant_of_folder_page_stays_a_file(self, state_store):
        """Only the query-less page takes the folder's id when both were crawled."""
        query_url = f"{DOCS}?x=1"
        await state_store.upsert_page(
            CrawlPage(
                connector_id="7",
                url=query_url,
                parent_url=folder_for_url(query_url),
                document_id=stable_id(query_url, FILE),
                title="Docs filtered",
            )
        )
        await _seed_site(state_store)

        children = await list_resources(state_store, "7", stable_id(ROOT, FOLDER))

        internal_ids = [r.internal_id for r in children]
        assert len(internal_ids) == len(set(internal_ids)) == 2
        merged = next(r for r in children if r.expandable)
        assert merged.internal_id == stable_id(DOCS, FOLDER)
        assert merged.document_id == stable_id(DOCS, FILE)
        variant = next(r for r in children if not r.expandable)
        assert variant.internal_id == stable_id(query_url, FILE)
        assert variant.source_url == query_url

    @pytest.mark.asyncio
    async def test_leaf_pages(self, state_store):
        """Plain pages use their document id and are not expandable."""
        await _seed_site(state_store)

        leaves = await list_resources(state_store, "7", stable_id(DOCS, FOLDER))

        assert len(leaves) == 1
        assert leaves[0].internal_id == stable_id(INTRO, FILE)
        assert leaves[0].expandable is False
        assert leaves[0].source_url == INTRO

    @pytest.mark.asyncio
    async def test_folder_without_page_is_listed_as_folder(self, state_store):
        """A folder that was never crawled as a page stays a folder."""
        await state_store.upsert_folder(
            CrawlFolder(connector_id="7", url=ROOT, internal_id=stable_id(ROOT, FOLDER))
        )

        resources = await list_resources(state_store, "7")

        assert [(r.type, r.title) for r in resources] == [("folder", ROOT)]

    @pytest.mark.asyncio
    async def test_unknown_parent_raises(self, state_store):
        with pytest.raises(ResourceNotFoundError):
            await list_resources(state_store, "7", "missing")


class TestTitlesAndParents:
    """Tests for title and ancestry lookups."""

    @pytest.mark.asyncio
    async def test_titles_for_known_ids(self, state_store):
        await _seed_site(state_store)

        titles = await retrieve_titles(
            state_store, "7", [stable_id(DOCS, FOLDER), stable_id(INTRO, FILE), "unknown"]
        )

        assert titles == {stable_id(DOCS, FOLDER): "docs", stable_id(INTRO, FILE): "intro"}

    @pytest.mark.asyncio
    async def test_parents_up_to_root(self, state_store):
        await _seed_site(state_store)
        intro_id = stable_id(INTRO, FILE)

        parents = await retrieve_parents(state_store, "7", intro_id)

        assert parents == [intro_id, stable_id(DOCS, FOLDER), stable_id(ROOT, FOLDER)]

    @pytest.mark.asyncio
    async def test_cyclic_folders_terminate(self, state_store):
        """A corrupted A -> B -> A folder graph yields a bounded chain."""
        a_url, b_url = "https://x.com/a", "https://x.com/b"
        for url, parent in ((a_url, b_url), (b_url, a_url)):
            await state_store.upsert_folder(
                CrawlFolder(
                    connector_id="7",
                    url=url,
                    parent_url=parent,
                    internal_id=stable_id(url, FOLDER),
                )
            )

        parents = await retrieve_parents(state_store, "7", stable_id(a_url, FOLDER))

        assert parents == [stable_id(a_url, FOLDER), stable_id(b_url, FOLDER)]
