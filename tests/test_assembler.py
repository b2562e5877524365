from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import pytest

from pytrtimeline.exceptions import TrConnectionClosedError, TrExchangeError
from pytrtimeline.models.detail import DetailResult
from pytrtimeline.models.timeline import TimelineItem
from pytrtimeline.timeline.assembler import TimelineAssembler, assemble_timeline, merge_feeds


def _item(item_id: str, timestamp: str | None = None) -> TimelineItem:
    payload: dict[str, Any] = {"id": item_id}
    if timestamp is not None:
        payload["timestamp"] = timestamp
    return TimelineItem.model_validate(payload)


def test_merge_keeps_first_occurrence() -> None:
    merged = merge_feeds(
        [
            ("timelineTransactions", [_item("a", "2024-01-02T00:00:00Z"), _item("b")]),
            ("timelineActivityLog", [_item("a", "2024-01-02T00:00:00Z"), _item("c")]),
        ]
    )
    assert [(entry.feed, entry.item.id) for entry in merged.entries] == [
        ("timelineTransactions", "a"),
        ("timelineTransactions", "b"),
        ("timelineActivityLog", "c"),
    ]
    assert merged.duplicates_dropped == 1


def test_merge_drops_items_older_than_since() -> None:
    since = datetime(2024, 1, 1, tzinfo=UTC)
    merged = merge_feeds(
        [("timelineTransactions", [_item("old", "2023-12-31T23:59:59Z"), _item("new", "2024-01-01T00:00:00Z"), _item("nots")])],
        since=since,
    )
    assert [entry.item.id for entry in merged.entries] == ["new", "nots"]
    assert merged.filtered_before_since == 1


def test_assemble_orders_chronologically_and_flags_failures() -> None:
    merged = merge_feeds(
        [
            (
                "timelineTransactions",
                [
                    _item("late", "2024-03-01T10:00:00.000+0000"),
                    _item("undated"),
                    _item("b-tie", "2024-01-01T00:00:00Z"),
                    _item("a-tie", "2024-01-01T00:00:00Z"),
                ],
            )
        ]
    )
    details = {
        "late": DetailResult.success("late", {"sections": []}),
        "a-tie": DetailResult.failure("a-tie", "not found"),
    }

    result = assemble_timeline(merged, details)

    assert [event.id for event in result.events] == ["a-tie", "b-tie", "late", "undated"]
    assert result.events[0].detail_incomplete is True
    assert result.events[0].detail_error == "not found"
    assert result.events[2].details == {"sections": []}
    assert result.events[3].timestamp is None
    assert result.detail_failures == 1
    assert [event.id for event in result.incomplete_events] == ["a-tie"]


class _FeedServer:
    """Serves two paged feeds and detail lookups from in-memory tables."""

    def __init__(self, feeds: dict[str, list[Any]], *, failing_details: set[str] | None = None) -> None:
        self.feeds = feeds
        self.failing_details = failing_details or set()
        self.requests: list[dict[str, Any]] = []

    async def request(self, payload: Mapping[str, Any]) -> Any:
        self.requests.append(dict(payload))
        kind = payload["type"]
        if kind == "timelineDetailV2":
            if payload["id"] in self.failing_details:
                raise TrExchangeError("not found", subscription_id=len(self.requests))
            return {"id": payload["id"], "sections": [{"title": "Overview"}]}
        pages = self.feeds[kind]
        after = str(payload.get("after", ""))
        index = int(after[1:]) if after.startswith("p") else 0
        if isinstance(pages[index], BaseException):
            raise pages[index]
        return pages[index]


@pytest.mark.asyncio
async def test_assembler_end_to_end() -> None:
    server = _FeedServer(
        {
            "timelineTransactions": [
                {"items": [{"id": "t1", "timestamp": "2024-02-01T00:00:00Z"}], "cursors": {"after": "p1"}},
                {"items": [{"id": "t2", "timestamp": "2024-01-01T00:00:00Z"}]},
            ],
            "timelineActivityLog": [
                {"items": [{"id": "t1", "timestamp": "2024-02-01T00:00:00Z"}, {"id": "l1", "timestamp": 1706918400}]},
            ],
        },
        failing_details={"l1"},
    )

    result = await TimelineAssembler(server, detail_concurrency=2).run()

    assert [event.id for event in result.events] == ["t2", "t1", "l1"]
    assert [event.feed for event in result.events] == [
        "timelineTransactions",
        "timelineTransactions",
        "timelineActivityLog",
    ]
    assert result.duplicates_dropped == 1
    assert result.details_requested == 3
    assert result.detail_failures == 1
    assert result.events[2].detail_incomplete
    assert result.events[0].details == {"id": "t2", "sections": [{"title": "Overview"}]}
    assert {stats.feed: stats.pages for stats in result.feeds} == {
        "timelineTransactions": 2,
        "timelineActivityLog": 1,
    }
    assert "3 events" in result.summary()


@pytest.mark.asyncio
async def test_assembler_sends_since_and_skips_unwanted_details() -> None:
    server = _FeedServer(
        {
            "timelineTransactions": [{"items": [{"id": "t1", "timestamp": "2024-02-01T00:00:00Z"}]}],
            "timelineActivityLog": [{"items": [{"id": "l1", "timestamp": "2024-02-02T00:00:00Z"}]}],
        }
    )
    since = datetime(2024, 1, 1, tzinfo=UTC)

    result = await TimelineAssembler(server, needs_detail=lambda feed, item: feed == "timelineTransactions").run(
        since=since
    )

    feed_requests = [req for req in server.requests if req["type"] != "timelineDetailV2"]
    assert all(req["after"] == int(since.timestamp()) for req in feed_requests)
    assert [req["id"] for req in server.requests if req["type"] == "timelineDetailV2"] == ["t1"]
    assert result.events[1].details is None
    assert not result.events[1].detail_incomplete


@pytest.mark.asyncio
async def test_failed_feed_leaves_sibling_feed_intact() -> None:
    server = _FeedServer(
        {
            "timelineTransactions": [
                {"items": [{"id": "t1"}], "cursors": {"after": "p1"}},
                TrExchangeError("boom"),
            ],
            "timelineActivityLog": [{"items": [{"id": "l1"}]}],
        }
    )

    result = await TimelineAssembler(server).run()

    assert [event.id for event in result.events] == ["l1"]
    assert [stats.feed for stats in result.failed_feeds] == ["timelineTransactions"]
    failed = result.failed_feeds[0]
    assert failed.pages == 1
    assert "boom" in (failed.error or "")
    assert not result.feeds[1].failed
    assert [req["id"] for req in server.requests if req["type"] == "timelineDetailV2"] == ["l1"]
    assert "timelineTransactions=FAILED" in result.summary()
    assert "1 feed(s) failed" in result.summary()


@pytest.mark.asyncio
async def test_connection_closed_preferred_over_feed_error() -> None:
    server = _FeedServer(
        {
            "timelineTransactions": [TrExchangeError("boom")],
            "timelineActivityLog": [TrConnectionClosedError("gone")],
        }
    )
    with pytest.raises(TrConnectionClosedError):
        await TimelineAssembler(server).run()
