"""HTML content extraction and document formatting for crawled pages."""

import re
from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from markdownify import markdownify

from connector_sync.core.errors import InvalidUrlError
from connector_sync.documents.models import Document, DocumentSection

from .url_hierarchy import normalize_url, parents_for_page

URL_MAX_LENGTH = 128
TITLE_MAX_LENGTH = 300

NON_CONTENT_TAGS = ["style", "script", "iframe"]


def resolve_link(href: str, base_url: str) -> Optional[str]:
    """
    Resolve a link relative to the page it appears on.

    Args:
        href: Link target (may be relative)
        base_url: URL of the page containing the link

    Returns:
        Normalized absolute URL without fragment, or None if not http(s)
    """
    try:
        url = urljoin(base_url, href.strip())
        parsed = urlparse(url)
    except ValueError:
        return None

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None

    # Remove fragments
    url = url.split("#")[0]
    try:
        return normalize_url(url)
    except InvalidUrlError:
        return None


def is_same_host(url1: str, url2: str) -> bool:
    return urlparse(url1).netloc.lower() == urlparse(url2).netloc.lower()


def extract_links(html: str, base_url: str) -> list[str]:
    """
    Extract same-host links from HTML content.

    Args:
        html: HTML content
        base_url: Base URL for resolving relative links

    Returns:
        Normalized absolute URLs in document order, without duplicates
    """
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor.get("href")
        if not href or not isinstance(href, str):
            continue
        resolved = resolve_link(href, base_url)
        if resolved and is_same_host(resolved, base_url) and resolved not in seen:
            seen.add(resolved)
            links.append(resolved)
    return links


def html_to_markdown(html: str) -> str:
    """
    Convert HTML to markdown, dropping style, script and iframe elements.

    Args:
        html: HTML content

    Returns:
        Markdown-formatted content, empty when the page has no text
    """
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(NON_CONTENT_TAGS):
        element.decompose()

    content = markdownify(
        str(soup),
        heading_style="ATX",
        bullets="-",
    )

    content = re.sub(r"\n{3,}", "\n\n", content)
    content = re.sub(r"[ \t]+", " ", content)
    return content.strip()


def extract_title(html: str) -> str:
    """Text of the page's <title>, or an empty string."""
    soup = BeautifulSoup(html, "html.parser")
    if soup.title is None:
        return ""
    return soup.title.get_text().strip()


def format_document_section(title: str, content: str, url: str) -> DocumentSection:
    """Document text of a crawled page: a URL prefix and a titled body."""
    parsed = urlparse(url)
    url_without_query = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
    truncated = url_without_query[:URL_MAX_LENGTH]
    if len(url_without_query) > URL_MAX_LENGTH:
        truncated += "..."

    return DocumentSection(
        prefix=f"URL: {truncated}\n",
        content=f"TITLE: {title[:TITLE_MAX_LENGTH]}\n{content}",
        sections=[],
    )


def build_page_document(
    document_id: str,
    url: str,
    title: str,
    content: str,
    timestamp_ms: int,
) -> Document:
    """Assemble the document upserted for a crawled page."""
    return Document(
        document_id=document_id,
        text=format_document_section(title, content, url),
        source_url=url,
        timestamp_ms=timestamp_ms,
        tags=[f"title:{title}"],
        parents=parents_for_page(url),
        upsert_context={"sync_type": "batch"},
    )
