"""Browsable resource tree of a crawled site.

A URL that was crawled as a page and is also the prefix of deeper pages
exists twice in the store, once as a CrawlFolder and once as a CrawlPage.
Listings show it once: the folder is hidden and the page takes the
folder's internal id and becomes expandable. When several pages share the
folder URL (/a and /a?x=1) only one of them is merged, and the others
stay plain files.
"""

from typing import Literal, Optional, Union
from urllib.parse import urlsplit

from pydantic import BaseModel

from connector_sync.core.errors import ResourceNotFoundError
from connector_sync.store.base import StateStore
from connector_sync.store.models import CrawlFolder, CrawlPage

from .url_hierarchy import (
    FOLDER,
    display_name_for_folder,
    display_name_for_page,
    normalize_folder_url,
    stable_id,
    walk_parent_chain,
)


class ConnectorResource(BaseModel):
    """One node of the resource tree."""

    provider: Literal["webcrawler"] = "webcrawler"
    internal_id: str
    parent_internal_id: Optional[str] = None
    type: Literal["folder", "file"]
    title: str
    source_url: Optional[str] = None
    expandable: bool
    permission: Literal["read"] = "read"
    document_id: Optional[str] = None
    last_updated_at: int


def _folder_id(url: Optional[str]) -> Optional[str]:
    return stable_id(url, FOLDER) if url else None


def _timestamp_ms(record: Union[CrawlFolder, CrawlPage]) -> int:
    return int(record.updated_at.timestamp() * 1000)


def _merge_rank(page: CrawlPage) -> tuple[bool, str]:
    return bool(urlsplit(page.url).query), page.url


async def list_resources(
    store: StateStore,
    connector_id: str,
    parent_internal_id: Optional[str] = None,
) -> list[ConnectorResource]:
    """
    List the children of a folder, or the roots of the tree.

    Args:
        store: State store holding the crawl records
        connector_id: Webcrawler connector
        parent_internal_id: Internal id of the parent folder, None for roots

    Returns:
        Folders and pages sorted by title

    Raises:
        ResourceNotFoundError: If the parent folder does not exist
    """
    parent_url: Optional[str] = None
    if parent_internal_id is not None:
        parent = await store.find_folder(connector_id, parent_internal_id)
        if parent is None:
            raise ResourceNotFoundError("folder", parent_internal_id)
        parent_url = parent.url

    pages = await store.list_pages_by_parent(connector_id, parent_url)
    folders = await store.list_folders_by_parent(connector_id, parent_url)

    folder_urls = {folder.url for folder in folders}
    # One page stands in for each folder URL; the query-less URL wins.
    folder_pages: dict[str, CrawlPage] = {}
    for page in pages:
        folder_url = normalize_folder_url(page.url)
        if folder_url not in folder_urls:
            continue
        current = folder_pages.get(folder_url)
        if current is None or _merge_rank(page) < _merge_rank(current):
            folder_pages[folder_url] = page
    merged_folder_urls = set(folder_pages)

    resources = [
        ConnectorResource(
            internal_id=folder.internal_id,
            parent_internal_id=_folder_id(folder.parent_url),
            type="folder",
            title=display_name_for_folder(folder.url),
            expandable=True,
            last_updated_at=_timestamp_ms(folder),
        )
        for folder in folders
        if folder.url not in merged_folder_urls
    ]

    for page in pages:
        page_folder_url = normalize_folder_url(page.url)
        is_folder = folder_pages.get(page_folder_url) is page
        resources.append(
            ConnectorResource(
                internal_id=stable_id(page_folder_url, FOLDER) if is_folder else page.document_id,
                parent_internal_id=_folder_id(page.parent_url),
                type="file",
                title=display_name_for_page(page.url),
                source_url=page.url,
                expandable=is_folder,
                document_id=page.document_id,
                last_updated_at=_timestamp_ms(page),
            )
        )

    resources.sort(key=lambda resource: resource.title)
    return resources


async def retrieve_titles(
    store: StateStore,
    connector_id: str,
    internal_ids: list[str],
) -> dict[str, str]:
    """Titles of the requested folders and pages; unknown ids are omitted."""
    wanted = set(internal_ids)
    titles: dict[str, str] = {}
    for folder in await store.list_folders(connector_id):
        if folder.internal_id in wanted:
            titles[folder.internal_id] = display_name_for_folder(folder.url)
    for page in await store.list_pages(connector_id):
        if page.document_id in wanted:
            titles[page.document_id] = display_name_for_page(page.url)
    return titles


async def retrieve_parents(
    store: StateStore,
    connector_id: str,
    internal_id: str,
) -> list[str]:
    """
    Internal ids from a node up to its root folder, the node itself first.

    Parent links are followed with a visited set; a corrupted, cyclic graph
    yields the chain collected before the first repeat.
    """
    parent_of: dict[str, Optional[str]] = {}
    for folder in await store.list_folders(connector_id):
        parent_of[folder.internal_id] = _folder_id(folder.parent_url)
    for page in await store.list_pages(connector_id):
        parent_of.setdefault(page.document_id, _folder_id(page.parent_url))

    return [internal_id, *walk_parent_chain(internal_id, parent_of.get)]
