"""Concurrent, order-preserving page fetcher.

Workers share one claim cursor and write into a slot per page index, so
the flattened result is always in ascending offset order no matter which
fetch finishes first. A failed page becomes an empty slot.
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PageFetchError(Exception):
    """A single page could not be fetched or parsed."""

    def __init__(self, begin: int, cause: BaseException):
        self.begin = begin
        self.cause = cause
        super().__init__(f"page at begin={begin} failed: {cause}")


class _ClaimCursor:
    """Hands out page indexes 0..limit-1 exactly once across threads."""

    def __init__(self, limit: int):
        self._next = 0
        self._limit = limit
        self._lock = threading.Lock()

    def claim(self) -> Optional[int]:
        with self._lock:
            if self._next >= self._limit:
                return None
            index = self._next
            self._next += 1
            return index


def page_count(total_items: int, page_size: int) -> int:
    if total_items <= 0:
        return 0
    return math.ceil(total_items / page_size)


def fetch_pages(
    total_items: int,
    page_size: int,
    max_concurrency: int,
    fetch_page: Callable[[int], Any],
    parse_page: Callable[[Any], List[T]],
    on_page: Optional[Callable[[int, int, List[T]], None]] = None,
    on_error: Optional[Callable[[int, PageFetchError], None]] = None,
) -> List[List[T]]:
    """Fetch and parse every page, returning one slot per page index.

    Args:
        total_items: Number of items on the server
        page_size: Items per page; page i starts at ``i * page_size``
        max_concurrency: Upper bound on worker threads
        fetch_page: Called with the ``begin`` offset, returns a raw page
        parse_page: Turns a raw page into rows
        on_page: Called as (index, pages, rows) after each successful page
        on_error: Called as (index, PageFetchError) for each failed page

    Returns:
        List of per-page row lists, indexed by page number
    """
    pages = page_count(total_items, page_size)
    if pages == 0:
        return []

    slots: List[Optional[List[T]]] = [None] * pages
    cursor = _ClaimCursor(pages)

    def worker() -> None:
        while True:
            index = cursor.claim()
            if index is None:
                return
            begin = index * page_size
            try:
                rows = parse_page(fetch_page(begin))
            except Exception as e:
                err = PageFetchError(begin, e)
                logger.warning("Page %d/%d skipped: %s", index + 1, pages, err)
                slots[index] = []
                if on_error:
                    on_error(index, err)
                continue
            slots[index] = rows
            if on_page:
                on_page(index, pages, rows)

    workers = min(max_concurrency, pages)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="page-fetch") as ex:
        futures = [ex.submit(worker) for _ in range(workers)]
        for f in futures:
            # Surfaces only failures from the callbacks; page errors are absorbed above.
            f.result()

    return [slot if slot is not None else [] for slot in slots]
