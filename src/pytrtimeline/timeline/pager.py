"""Cursor-driven pagination of one timeline feed."""

from __future__ import annotations

import enum
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol

from pytrtimeline._api.timeline import build_feed_request, parse_page
from pytrtimeline.exceptions import TrConnectionClosedError, TrError, TrFeedError
from pytrtimeline.models.timeline import FeedStats, TimelineItem, TimelinePage

_logger = logging.getLogger(__name__)


class Requester(Protocol):
    """Anything that can run one exchange to completion."""

    async def request(self, payload: Mapping[str, Any]) -> Any:
        ...


class PagerState(enum.Enum):
    START = "start"
    AWAITING_PAGE = "awaiting_page"
    DONE = "done"
    FAILED = "failed"


class TimelinePager:
    """Fetch every page of *feed*, one page at a time.

    Page N+1 is only requested once page N has resolved, because its
    ``after`` parameter is page N's cursor. The first request carries
    *since* as ``after`` when given. Any failed page fails the whole
    feed with :class:`TrFeedError`; a closed connection propagates
    unchanged.
    """

    def __init__(
        self,
        requester: Requester,
        feed: str,
        *,
        since: str | int | None = None,
        max_pages: int | None = None,
    ) -> None:
        self._requester = requester
        self._feed = str(feed)
        self._since = since
        self._max_pages = max_pages
        self._state = PagerState.START
        self._pages = 0
        self._items = 0
        self._skipped = 0

    @property
    def feed(self) -> str:
        return self._feed

    @property
    def state(self) -> PagerState:
        return self._state

    @property
    def stats(self) -> FeedStats:
        return FeedStats(feed=self._feed, pages=self._pages, items=self._items, skipped=self._skipped)

    async def pages(self) -> AsyncIterator[TimelinePage]:
        """Yield pages in arrival order until the feed is exhausted."""
        if self._state is not PagerState.START:
            raise RuntimeError(f"Pager for {self._feed} already ran (state={self._state.value})")

        cursor: str | int | None = self._since
        while True:
            number = self._pages + 1
            self._state = PagerState.AWAITING_PAGE
            try:
                payload = await self._requester.request(build_feed_request(self._feed, cursor))
            except TrConnectionClosedError:
                self._state = PagerState.FAILED
                raise
            except TrError as exc:
                self._state = PagerState.FAILED
                raise TrFeedError(f"{self._feed} page {number} failed: {exc}", feed=self._feed, page=number) from exc

            page = parse_page(self._feed, number, payload)
            self._pages = number
            self._items += len(page.items)
            self._skipped += page.skipped
            _logger.debug("%s page %d: %d item(s), cursor=%s", self._feed, number, len(page.items), page.cursor)
            yield page

            if page.is_last:
                break
            if self._max_pages is not None and number >= self._max_pages:
                _logger.warning("%s: stopping after max_pages=%d with cursor %s", self._feed, number, page.cursor)
                break
            cursor = page.cursor

        self._state = PagerState.DONE
        _logger.info("%s complete: %d item(s) over %d page(s)", self._feed, self._items, self._pages)

    async def fetch_all(self) -> list[TimelineItem]:
        """Concatenate the items of every page in arrival order."""
        items: list[TimelineItem] = []
        async for page in self.pages():
            items.extend(page.items)
        return items
