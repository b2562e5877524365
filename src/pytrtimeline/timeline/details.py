"""Bounded, failure-isolated fan-out of detail lookups."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable

from pytrtimeline._api.timeline import build_detail_request
from pytrtimeline.exceptions import TrConnectionClosedError, TrError
from pytrtimeline.models.detail import DetailResult
from pytrtimeline.timeline.pager import Requester

_logger = logging.getLogger(__name__)


class DetailFanout:
    """Issue one ``timelineDetailV2`` exchange per item, at most *concurrency* at a time.

    A failed lookup becomes a failure :class:`DetailResult` for that item
    only. A closed connection is not a per-item failure: it propagates
    and the remaining lookups are cancelled.
    """

    def __init__(self, requester: Requester, *, concurrency: int = 10) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._requester = requester
        self._concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self._in_flight = 0
        self._peak_in_flight = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def peak_in_flight(self) -> int:
        """Highest number of lookups that were pending at the same time."""
        return self._peak_in_flight

    async def _fetch_one(self, item_id: str) -> DetailResult:
        async with self._semaphore:
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                payload = await self._requester.request(build_detail_request(item_id))
            except TrConnectionClosedError:
                raise
            except TrError as exc:
                _logger.warning("Detail fetch for %s failed: %s", item_id, exc)
                return DetailResult.failure(item_id, str(exc), subscription_id=getattr(exc, "subscription_id", None))
            finally:
                self._in_flight -= 1
        return DetailResult.success(item_id, payload)

    async def results(self, item_ids: Iterable[str]) -> AsyncIterator[DetailResult]:
        """Yield one result per distinct id, in completion order."""
        unique_ids = list(dict.fromkeys(item_ids))
        tasks = [asyncio.create_task(self._fetch_one(item_id), name=f"tr-detail-{item_id}") for item_id in unique_ids]
        try:
            for next_done in asyncio.as_completed(tasks):
                yield await next_done
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Also retrieves exceptions of finished siblings.
            await asyncio.gather(*tasks, return_exceptions=True)

    async def fetch_all(self, item_ids: Iterable[str]) -> dict[str, DetailResult]:
        """Collect every result keyed by item id."""
        collected: dict[str, DetailResult] = {}
        async for result in self.results(item_ids):
            collected[result.item_id] = result
        failures = sum(1 for result in collected.values() if not result.ok)
        _logger.info(
            "Fetched details for %d item(s), %d failed (peak %d in flight)",
            len(collected),
            failures,
            self._peak_in_flight,
        )
        return collected
