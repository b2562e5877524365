"""Timeline feed models: items, pages and assembled events."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pytrtimeline.models._base import TrBaseModel, TrTimestamp
from pytrtimeline.models.detail import DetailResult


class TimelineItem(TrBaseModel):
    """A single entry of a timeline feed.

    Only the identifier, the ordering timestamp and the embedded
    continuation cursor are interpreted; everything else stays in
    ``raw`` for downstream consumers.
    """

    id: str
    timestamp: TrTimestamp = None
    after: str | None = None
    """Continuation cursor embedded in the item, if any."""

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str) and not value.strip():
            raise ValueError("id must be non-empty")
        return value

    @field_validator("after", mode="before")
    @classmethod
    def _coerce_after(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value or None


class TimelinePage(BaseModel):
    """One resolved page of a feed."""

    model_config = ConfigDict(frozen=True)

    feed: str
    number: int
    items: tuple[TimelineItem, ...] = ()
    cursor: str | None = None
    skipped: int = 0
    """Entries dropped because they carried no usable id."""

    @property
    def is_last(self) -> bool:
        return self.cursor is None or (not self.items and not self.skipped)


class TimelineEvent(BaseModel):
    """A deduplicated timeline item joined with its detail payload.

    ``detail_incomplete`` is set when the detail fetch failed; the item
    is still emitted so the consumer can decide how to treat it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    feed: str
    item: TimelineItem
    details: Any = None
    detail_incomplete: bool = False
    detail_error: str | None = None

    @property
    def timestamp(self) -> datetime | None:
        return self.item.timestamp

    @classmethod
    def from_parts(cls, feed: str, item: TimelineItem, detail: DetailResult | None) -> TimelineEvent:
        if detail is None:
            return cls(id=item.id, feed=feed, item=item)
        return cls(
            id=item.id,
            feed=feed,
            item=item,
            details=detail.payload,
            detail_incomplete=not detail.ok,
            detail_error=detail.error,
        )


class FeedStats(BaseModel):
    """Per-feed paging counters.

    ``error`` is set when a page of the feed failed; the items fetched
    before the failure are then not part of the result.
    """

    model_config = ConfigDict(frozen=True)

    feed: str
    pages: int = 0
    items: int = 0
    skipped: int = 0
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class TimelineResult(BaseModel):
    """Ordered, deduplicated timeline plus run statistics."""

    model_config = ConfigDict(frozen=True)

    events: tuple[TimelineEvent, ...] = ()
    feeds: tuple[FeedStats, ...] = ()
    duplicates_dropped: int = 0
    filtered_before_since: int = 0
    details_requested: int = 0
    detail_failures: int = Field(default=0, description="Events emitted with detail_incomplete=True")

    @property
    def incomplete_events(self) -> list[TimelineEvent]:
        return [event for event in self.events if event.detail_incomplete]

    @property
    def failed_feeds(self) -> list[FeedStats]:
        return [stats for stats in self.feeds if stats.failed]

    def summary(self) -> str:
        feeds = ", ".join(
            f"{stats.feed}=FAILED after {stats.pages} pages" if stats.failed else f"{stats.feed}={stats.items} items/{stats.pages} pages"
            for stats in self.feeds
        )
        text = (
            f"{len(self.events)} events ({feeds}); "
            f"{self.duplicates_dropped} duplicates dropped; "
            f"{self.detail_failures}/{self.details_requested} detail fetches failed"
        )
        if self.failed_feeds:
            text += f"; {len(self.failed_feeds)} feed(s) failed"
        return text
