from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from typing import Any

import pytest

from pytrtimeline._multiplexer import SubscriptionMultiplexer
from pytrtimeline.exceptions import TrSendError

Responder = Callable[[int, dict[str, Any]], Iterable[str] | None]


class FakeTransport:
    """In-memory stand-in for the websocket.

    Outbound frames are recorded in ``sent``. ``connect`` is acknowledged
    with ``connected`` unless ``auto_ack`` is off; every ``sub`` frame is
    handed to ``responder`` and the frames it returns are delivered back.
    """

    def __init__(self, responder: Responder | None = None, *, auto_ack: bool = True) -> None:
        self.sent: list[str] = []
        self.responder = responder
        self.auto_ack = auto_ack
        self.fail_sends = False
        self.send_errors: list[Exception] = []
        self._inbound: asyncio.Queue[str | None] = asyncio.Queue()
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    async def send(self, frame: str) -> None:
        if not self._open or self.fail_sends:
            raise TrSendError("fake transport refused the frame")
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append(frame)
        verb, raw_id, body = frame.split(" ", 2)
        if verb == "connect":
            if self.auto_ack:
                self.push("connected")
            return
        if self.responder is not None:
            for reply in self.responder(int(raw_id), json.loads(body)) or ():
                self.push(reply)

    def push(self, frame: str) -> None:
        self._inbound.put_nowait(frame)

    def push_later(self, delay: float, frame: str) -> None:
        asyncio.get_running_loop().call_later(delay, self.push, frame)

    def drop(self) -> None:
        """Simulate the peer closing the connection."""
        self._open = False
        self._inbound.put_nowait(None)

    async def receive(self) -> AsyncIterator[str]:
        while True:
            frame = await self._inbound.get()
            if frame is None:
                return
            yield frame

    async def close(self) -> None:
        if self._open:
            self._open = False
            self._inbound.put_nowait(None)

    @property
    def subscriptions(self) -> list[tuple[int, dict[str, Any]]]:
        subs = []
        for frame in self.sent:
            verb, raw_id, body = frame.split(" ", 2)
            if verb == "sub":
                subs.append((int(raw_id), json.loads(body)))
        return subs


def frame(subscription_id: int, code: str, payload: Any = None) -> str:
    if payload is None:
        return f"{subscription_id} {code}"
    return f"{subscription_id} {code} {json.dumps(payload)}"


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_frame() -> Callable[..., str]:
    return frame


@pytest.fixture
def connected_mux() -> Callable[..., Awaitable[SubscriptionMultiplexer]]:
    async def _connect(
        transport: FakeTransport,
        *,
        connect_id: int = 31,
        payload: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> SubscriptionMultiplexer:
        mux = SubscriptionMultiplexer(transport, **kwargs)
        mux.start()
        await mux.handshake(connect_id, payload or {"locale": "de"}, timeout=1.0)
        return mux

    return _connect
