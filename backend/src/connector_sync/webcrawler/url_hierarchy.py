"""URL to folder hierarchy decomposition for crawled sites.

A page URL maps to a chain of synthetic folders, one per strict prefix of
its path, rooted at the site origin:

    https://x.com/a/b/c -> https://x.com, https://x.com/a, https://x.com/a/b

All functions are pure and deterministic.
"""

import hashlib
from typing import Callable, Optional
from urllib.parse import urlparse, urlunparse

import structlog

from connector_sync.core.errors import InvalidUrlError

logger = structlog.get_logger(__name__)

FOLDER = "folder"
FILE = "file"


def is_valid_url(url: str) -> bool:
    """Check that a URL is absolute http(s) with a host."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def _parse(url: str):
    if not is_valid_url(url):
        raise InvalidUrlError(url, "URL must be absolute http(s)")
    return urlparse(url)


def _segments(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def normalize_url(url: str) -> str:
    """Canonical form of a page URL.

    Lower-cases scheme and host, drops the fragment, the trailing slash and
    an empty query. The query string is otherwise kept as is.
    """
    parsed = _parse(url)
    path = "/" + "/".join(_segments(parsed.path)) if _segments(parsed.path) else ""
    return urlunparse(
        (parsed.scheme.lower(), parsed.netloc.lower(), path, "", parsed.query, "")
    )


def normalize_folder_url(url: str) -> str:
    """Folder form of a URL: origin plus path, no query, no trailing slash."""
    parsed = _parse(url)
    segments = _segments(parsed.path)
    origin = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"
    if not segments:
        return origin
    return f"{origin}/{'/'.join(segments)}"


def ancestor_folders(url: str) -> list[str]:
    """Every strict path prefix of the URL, from the site root down.

    Args:
        url: Page URL

    Returns:
        Folder URLs, root first; empty for a top-level URL
    """
    folder_url = normalize_folder_url(url)
    parsed = urlparse(folder_url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    segments = _segments(parsed.path)
    if not segments:
        return []
    folders = [origin]
    for depth in range(1, len(segments)):
        folders.append(f"{origin}/{'/'.join(segments[:depth])}")
    return folders


def is_top_level(url: str) -> bool:
    """True when the URL has no containing folder (the site root)."""
    return not ancestor_folders(url)


def folder_for_url(url: str) -> Optional[str]:
    """Immediate containing folder of a URL, or None at the site root."""
    folders = ancestor_folders(url)
    return folders[-1] if folders else None


def stable_id(url: str, kind: str) -> str:
    """Deterministic identifier for a (url, kind) pair.

    Args:
        url: Page or folder URL
        kind: "folder" or "file"

    Returns:
        64-character SHA-256 hex digest
    """
    return hashlib.sha256(f"{kind}:{url}".encode("utf-8")).hexdigest()


def display_name_for_page(url: str) -> str:
    """Human readable name of a page: last path segment, or the host.

    The query string is kept so pages differing only by query stay distinct.
    """
    parsed = _parse(url)
    segments = _segments(parsed.path)
    name = segments[-1] if segments else parsed.netloc
    if parsed.query:
        name = f"{name}?{parsed.query}"
    return name


def display_name_for_folder(url: str) -> str:
    parsed = _parse(url)
    segments = _segments(parsed.path)
    return segments[-1] if segments else url


def parents_for_page(url: str, page_is_folder: bool = False) -> list[str]:
    """Parent ids of a page document: the page itself, then its folders.

    Folder ids are nearest first. When the page is itself a folder, its own
    id is the folder id so both records share one identifier.
    """
    own_id = stable_id(normalize_folder_url(url), FOLDER) if page_is_folder else stable_id(url, FILE)
    parents = [own_id]
    for folder in reversed(ancestor_folders(url)):
        parents.append(stable_id(folder, FOLDER))
    return parents


def walk_parent_chain(
    start: str,
    parent_of: Callable[[str], Optional[str]],
) -> list[str]:
    """Follow parent links from a node, stopping at the root or on a cycle.

    Args:
        start: Starting node
        parent_of: Returns the parent of a node, or None at a root

    Returns:
        Ancestors of ``start``, nearest first, without repeats
    """
    visited = {start}
    chain: list[str] = []
    current = parent_of(start)
    while current is not None:
        if current in visited:
            logger.error("parent_cycle_detected", start=start, node=current, chain=chain)
            break
        visited.add(current)
        chain.append(current)
        current = parent_of(current)
    return chain
