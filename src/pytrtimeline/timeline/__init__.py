"""Timeline layer.

Pagination of the timeline feeds, bounded detail fan-out, and the
assembler that joins both into one ordered, deduplicated timeline.
"""

from pytrtimeline.timeline.assembler import DEFAULT_FEEDS, TimelineAssembler, assemble_timeline, merge_feeds
from pytrtimeline.timeline.details import DetailFanout
from pytrtimeline.timeline.pager import PagerState, Requester, TimelinePager

__all__ = [
    "DEFAULT_FEEDS",
    "DetailFanout",
    "PagerState",
    "Requester",
    "TimelineAssembler",
    "TimelinePager",
    "assemble_timeline",
    "merge_feeds",
]
