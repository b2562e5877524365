"""Compose feed pagination and detail fan-out into one ordered timeline."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pytrtimeline._constants import TimelineFeed
from pytrtimeline.exceptions import TrConnectionClosedError, TrFeedError
from pytrtimeline.models.detail import DetailResult
from pytrtimeline.models.timeline import FeedStats, TimelineEvent, TimelineItem, TimelineResult
from pytrtimeline.timeline.details import DetailFanout
from pytrtimeline.timeline.pager import Requester, TimelinePager

_logger = logging.getLogger(__name__)

DEFAULT_FEEDS: tuple[str, ...] = (TimelineFeed.TRANSACTIONS, TimelineFeed.ACTIVITY_LOG)

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True)
class MergedEntry:
    feed: str
    item: TimelineItem


@dataclass
class MergedTimeline:
    """Items of all feeds after deduplication and the *since* guard."""

    entries: list[MergedEntry] = field(default_factory=list)
    duplicates_dropped: int = 0
    filtered_before_since: int = 0


def merge_feeds(
    feeds: Sequence[tuple[str, Sequence[TimelineItem]]],
    *,
    since: datetime | None = None,
) -> MergedTimeline:
    """Merge feed item lists, keeping the first occurrence of each id.

    Feeds are merged in the given order, so an id present in both the
    transaction list and the activity log is attributed to the feed
    listed first. Items with a timestamp older than *since* are dropped;
    items without a timestamp are kept.
    """
    merged = MergedTimeline()
    seen: set[str] = set()
    for feed, items in feeds:
        for item in items:
            if item.id in seen:
                merged.duplicates_dropped += 1
                continue
            seen.add(item.id)
            if since is not None and item.timestamp is not None and item.timestamp < since:
                merged.filtered_before_since += 1
                continue
            merged.entries.append(MergedEntry(feed, item))
    return merged


def _order_key(event: TimelineEvent) -> tuple[bool, datetime, str]:
    timestamp = event.item.timestamp
    return (timestamp is None, timestamp or _EPOCH, event.id)


def assemble_timeline(
    merged: MergedTimeline,
    details: Mapping[str, DetailResult],
    *,
    feed_stats: Sequence[FeedStats] = (),
) -> TimelineResult:
    """Join merged items with their details, oldest first.

    Items without a timestamp come last; ties are ordered by id. An item
    whose detail lookup failed is kept with ``detail_incomplete=True``.
    """
    events = [TimelineEvent.from_parts(entry.feed, entry.item, details.get(entry.item.id)) for entry in merged.entries]
    events.sort(key=_order_key)
    return TimelineResult(
        events=tuple(events),
        feeds=tuple(feed_stats),
        duplicates_dropped=merged.duplicates_dropped,
        filtered_before_since=merged.filtered_before_since,
        details_requested=len(details),
        detail_failures=sum(1 for event in events if event.detail_incomplete),
    )


def _fetch_every_item(_feed: str, _item: TimelineItem) -> bool:
    return True


class TimelineAssembler:
    """Run the feeds in parallel, fan out detail lookups, and join the results.

    Pages within a feed are fetched strictly in sequence; distinct feeds
    share nothing and run concurrently. A feed whose page fails is
    recorded as failed in the result stats and left out of the timeline;
    the other feeds are still assembled. Only a closed connection (or an
    unexpected error) fails the whole run.
    """

    def __init__(
        self,
        requester: Requester,
        *,
        feeds: Sequence[str] = DEFAULT_FEEDS,
        detail_concurrency: int = 10,
        max_pages: int | None = None,
        needs_detail: Callable[[str, TimelineItem], bool] = _fetch_every_item,
    ) -> None:
        self._requester = requester
        self._feeds = tuple(str(feed) for feed in feeds)
        self._detail_concurrency = detail_concurrency
        self._max_pages = max_pages
        self._needs_detail = needs_detail

    async def run(self, *, since: datetime | None = None) -> TimelineResult:
        after = int(since.timestamp()) if since is not None else None
        pagers = [TimelinePager(self._requester, feed, since=after, max_pages=self._max_pages) for feed in self._feeds]

        outcomes = await asyncio.gather(*(pager.fetch_all() for pager in pagers), return_exceptions=True)
        fatal = [outcome for outcome in outcomes if isinstance(outcome, BaseException) and not isinstance(outcome, TrFeedError)]
        if fatal:
            closed = next((exc for exc in fatal if isinstance(exc, TrConnectionClosedError)), None)
            raise closed or fatal[0]

        feed_items: list[tuple[str, list[TimelineItem]]] = []
        feed_stats: list[FeedStats] = []
        for pager, outcome in zip(pagers, outcomes, strict=True):
            if isinstance(outcome, TrFeedError):
                # Partial pages of a failed feed are dropped.
                _logger.warning("Feed %s failed, continuing without it: %s", pager.feed, outcome)
                feed_stats.append(pager.stats.model_copy(update={"error": str(outcome)}))
                continue
            feed_items.append((pager.feed, outcome))
            feed_stats.append(pager.stats)

        merged = merge_feeds(feed_items, since=since)
        if merged.duplicates_dropped:
            _logger.info("Dropped %d duplicate item(s) across feeds", merged.duplicates_dropped)

        wanted = [entry.item.id for entry in merged.entries if self._needs_detail(entry.feed, entry.item)]
        fanout = DetailFanout(self._requester, concurrency=self._detail_concurrency)
        details = await fanout.fetch_all(wanted)

        result = assemble_timeline(merged, details, feed_stats=feed_stats)
        _logger.info("Timeline assembled: %s", result.summary())
        return result
