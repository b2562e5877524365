"""Timeline subscription payloads and page parsing.

Feeds:
  - timelineTransactions
  - timelineActivityLog
Detail lookups:
  - timelineDetailV2
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from pytrtimeline._constants import DETAIL_SUBSCRIPTION_TYPE
from pytrtimeline.models.timeline import TimelineItem, TimelinePage

_logger = logging.getLogger(__name__)

# Item fields that may carry the continuation cursor, in priority order.
_ITEM_CURSOR_KEYS: tuple[str, ...] = ("after", "cursor")


def build_feed_request(feed: str, after: str | int | None = None) -> dict[str, Any]:
    """Payload for one page of *feed*, optionally continuing at *after*."""
    payload: dict[str, Any] = {"type": feed}
    if after is not None and after != "" and after != 0:
        payload["after"] = after
    return payload


def build_detail_request(item_id: str) -> dict[str, Any]:
    """Payload for the detail lookup of one timeline item."""
    return {"type": DETAIL_SUBSCRIPTION_TYPE, "id": item_id}


def _page_cursor(payload: Mapping[str, Any], items: list[Mapping[str, Any]]) -> str | None:
    cursors = payload.get("cursors")
    if isinstance(cursors, Mapping):
        after = cursors.get("after")
        if after not in (None, ""):
            return str(after)
    if not items:
        return None
    last = items[-1]
    for key in _ITEM_CURSOR_KEYS:
        value = last.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def parse_page(feed: str, number: int, payload: Any) -> TimelinePage:
    """Build a :class:`TimelinePage` from a resolved feed subscription.

    ``None`` (a ``C`` completion) is an empty, final page. Entries that
    are not objects or carry no usable ``id`` are skipped.
    """
    if payload is None:
        return TimelinePage(feed=feed, number=number)

    if isinstance(payload, list):
        raw_items: Any = payload
        payload = {}
    elif isinstance(payload, Mapping):
        raw_items = payload.get("items") or []
    else:
        _logger.warning("%s page %d: unexpected payload type %s", feed, number, type(payload).__name__)
        return TimelinePage(feed=feed, number=number)

    entries = [entry for entry in raw_items if isinstance(entry, Mapping)]
    items: list[TimelineItem] = []
    skipped = len(raw_items) - len(entries)
    for entry in entries:
        try:
            items.append(TimelineItem.model_validate(dict(entry)))
        except ValidationError:
            skipped += 1
            _logger.warning("%s page %d: skipping entry without usable id", feed, number)

    return TimelinePage(
        feed=feed,
        number=number,
        items=tuple(items),
        cursor=_page_cursor(payload, entries),
        skipped=skipped,
    )
