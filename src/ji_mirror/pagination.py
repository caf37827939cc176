"""Lazy, prefetching stream over offset-paginated remote listings.

The first page is fetched on its own. Once it shows that more pages exist,
up to ``prefetch`` further page fetches are kept in flight while the
consumer works through the items in page order.

A stream ends at a page marked ``is_last`` or a page shorter than
``page_size``. When a page reports the listing's ``total``, no fetch is
scheduled at or beyond it. A failed page fetch ends the stream with that
error after the items of all earlier pages have been yielded. Re-iterating
starts again from offset 0.
"""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from .metrics import stream_pages_total

logger = logging.getLogger("ji_mirror.pagination")

__all__ = ["Page", "PageStream"]

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    is_last: bool = False
    offset: int = 0
    total: int | None = None


class PageStream(Generic[T]):
    """Async iterable over every item of a paginated listing.

    Args:
        fetch_page: Coroutine function taking an offset and returning a Page
        page_size: Items per page requested by ``fetch_page``
        prefetch: Maximum page fetches in flight after the first page
        label: Name used in log lines

    Example:
        >>> stream = PageStream(lambda offset: fetch(offset, 100), page_size=100)
        >>> async for issue in stream:
        ...     handle(issue)
    """

    def __init__(
        self,
        fetch_page: Callable[[int], Awaitable[Page[T]]],
        page_size: int,
        prefetch: int = 5,
        label: str = "stream",
    ) -> None:
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        if prefetch < 1:
            raise ValueError(f"prefetch must be >= 1, got {prefetch}")
        self.fetch_page = fetch_page
        self.page_size = page_size
        self.prefetch = prefetch
        self.label = label

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def collect(self) -> list[T]:
        """Drain the stream into a list. Meant for short listings."""
        return [item async for item in self]

    def _is_final(self, page: Page[T]) -> bool:
        return page.is_last or len(page.items) < self.page_size

    async def _fetch(self, offset: int) -> Page[T]:
        try:
            page = await self.fetch_page(offset)
        except asyncio.CancelledError:
            stream_pages_total.labels(status="cancelled").inc()
            raise
        except Exception:
            stream_pages_total.labels(status="failed").inc()
            raise
        stream_pages_total.labels(status="success").inc()
        logger.debug(
            "stream_page_fetched",
            extra={
                "stream": self.label,
                "offset": offset,
                "page_items": len(page.items),
                "is_last": page.is_last,
            },
        )
        return page

    async def _iterate(self) -> AsyncIterator[T]:
        first = await self._fetch(0)
        for item in first.items:
            yield item
        if self._is_final(first):
            return

        pending: deque[asyncio.Task[Page[T]]] = deque()
        next_offset = self.page_size
        total = first.total
        try:
            while True:
                while len(pending) < self.prefetch and (total is None or next_offset < total):
                    pending.append(asyncio.create_task(self._fetch(next_offset)))
                    next_offset += self.page_size
                if not pending:
                    return

                page = await pending.popleft()
                for item in page.items:
                    yield item
                if self._is_final(page):
                    return
                if page.total is not None:
                    total = page.total
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
