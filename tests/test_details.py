from __future__ import annotations

import asyncio
import random
from collections.abc import Mapping
from typing import Any

import pytest

from pytrtimeline.exceptions import TrConnectionClosedError
from pytrtimeline.timeline.details import DetailFanout


@pytest.mark.asyncio
async def test_fanout_never_exceeds_bound(transport, connected_mux, make_frame) -> None:
    rng = random.Random(1234)
    observed: list[int] = []

    def responder(sub_id: int, payload: dict[str, Any]) -> None:
        observed.append(mux.pending_count)
        transport.push_later(rng.uniform(0.001, 0.02), make_frame(sub_id, "A", {"id": payload["id"]}))

    transport.responder = responder
    mux = await connected_mux(transport)

    fanout = DetailFanout(mux, concurrency=3)
    results = await fanout.fetch_all([f"x{i}" for i in range(10)])

    assert len(results) == 10
    assert all(result.ok for result in results.values())
    assert results["x4"].payload == {"id": "x4"}
    assert max(observed) <= 3
    assert 1 <= fanout.peak_in_flight <= 3
    assert mux.pending_count == 0
    await mux.close()


@pytest.mark.asyncio
async def test_error_isolated_to_one_item(transport, connected_mux, make_frame) -> None:
    def responder(sub_id: int, payload: dict[str, Any]) -> list[str]:
        if payload["id"] == "x1":
            return [make_frame(sub_id, "E", {"msg": "not found"})]
        return [make_frame(sub_id, "A", {"id": payload["id"], "sections": []})]

    transport.responder = responder
    mux = await connected_mux(transport, first_id=7)

    results = await DetailFanout(mux, concurrency=2).fetch_all(["x1", "x2"])

    assert transport.subscriptions[0] == (7, {"type": "timelineDetailV2", "id": "x1"})
    assert transport.subscriptions[1] == (8, {"type": "timelineDetailV2", "id": "x2"})
    assert not results["x1"].ok
    assert "not found" in (results["x1"].error or "")
    assert results["x1"].subscription_id == 7
    assert results["x2"].ok
    assert results["x2"].payload == {"id": "x2", "sections": []}
    await mux.close()


@pytest.mark.asyncio
async def test_duplicate_ids_fetched_once() -> None:
    calls: list[str] = []

    class _Requester:
        async def request(self, payload: Mapping[str, Any]) -> Any:
            calls.append(payload["id"])
            return {"id": payload["id"]}

    results = await DetailFanout(_Requester(), concurrency=4).fetch_all(["a", "b", "a", "c", "b"])
    assert sorted(calls) == ["a", "b", "c"]
    assert set(results) == {"a", "b", "c"}


@pytest.mark.asyncio
async def test_connection_closed_aborts_fanout() -> None:
    started = asyncio.Event()

    class _Requester:
        async def request(self, payload: Mapping[str, Any]) -> Any:
            if payload["id"] == "boom":
                await started.wait()
                raise TrConnectionClosedError("gone")
            started.set()
            await asyncio.sleep(10)
            return None

    with pytest.raises(TrConnectionClosedError):
        await DetailFanout(_Requester(), concurrency=5).fetch_all(["slow1", "boom", "slow2"])


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ValueError):
        DetailFanout(object(), concurrency=0)  # type: ignore[arg-type]
