"""Bounded enumeration of paginated upstream listings.

A listing function takes the cursor returned by the previous call (``None``
for the first call) and returns one page of items plus the next cursor.
Enumeration ends on a ``None`` cursor or on the first empty page, whichever
comes first. Cursors never outlive the enumeration that produced them.
"""

from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of an upstream listing.

    Attributes:
        items: Items in upstream order
        next_cursor: Opaque continuation token, None at end of enumeration
    """

    items: Sequence[T] = field(default_factory=tuple)
    next_cursor: Optional[str] = None


ListPage = Callable[[Optional[str]], Awaitable[Page[T]]]


async def iterate_pages(list_page: ListPage[T], name: str = "listing") -> AsyncIterator[Sequence[T]]:
    """Yield each non-empty page of a listing, in order.

    Args:
        list_page: Listing function called with the previous cursor
        name: Listing name for logs

    Yields:
        The items of each page

    Raises:
        Exception: Whatever list_page raises; the enumeration is abandoned
    """
    cursor: Optional[str] = None
    seen_cursors: set[str] = set()
    page_count = 0

    while True:
        page = await list_page(cursor)
        if not page.items:
            break
        page_count += 1
        yield page.items

        if page.next_cursor is None:
            break
        if page.next_cursor in seen_cursors:
            logger.warning(
                "pagination_cursor_repeated",
                listing=name,
                cursor=page.next_cursor,
                pages=page_count,
            )
            break
        seen_cursors.add(page.next_cursor)
        cursor = page.next_cursor

    logger.debug("pagination_exhausted", listing=name, pages=page_count)


async def iterate_items(list_page: ListPage[T], name: str = "listing") -> AsyncIterator[T]:
    """Yield every item of a listing exactly once, in upstream order."""
    async for items in iterate_pages(list_page, name=name):
        for item in items:
            yield item


async def collect_all(list_page: ListPage[T], name: str = "listing") -> list[T]:
    """Collect every item of a listing into a list."""
    return [item async for item in iterate_items(list_page, name=name)]


def page_number_listing(
    fetch_page: Callable[[int], Awaitable[Sequence[T]]],
    first_page: int = 1,
) -> ListPage[T]:
    """Adapt a page-number API to the cursor protocol.

    The cursor carries the next page number; an empty page ends the listing.

    Args:
        fetch_page: Fetches one page by number
        first_page: Number of the first page (upstream APIs are usually 1-indexed)

    Returns:
        A cursor-based listing function
    """

    async def list_page(cursor: Optional[str]) -> Page[T]:
        page_number = first_page if cursor is None else int(cursor)
        items = await fetch_page(page_number)
        return Page(items=items, next_cursor=str(page_number + 1) if items else None)

    return list_page
