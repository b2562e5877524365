"""Data models for timeline payloads and results."""

from pytrtimeline.models._base import TrBaseModel, TrTimestamp, parse_tr_timestamp
from pytrtimeline.models.auth import AuthContext
from pytrtimeline.models.detail import DetailResult
from pytrtimeline.models.timeline import (
    FeedStats,
    TimelineEvent,
    TimelineItem,
    TimelinePage,
    TimelineResult,
)

__all__ = [
    "AuthContext",
    "DetailResult",
    "FeedStats",
    "TimelineEvent",
    "TimelineItem",
    "TimelinePage",
    "TimelineResult",
    "TrBaseModel",
    "TrTimestamp",
    "parse_tr_timestamp",
]
