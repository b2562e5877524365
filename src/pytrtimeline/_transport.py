"""Websocket transport carrying the timeline subscription protocol."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import AsyncIterator
from typing import Protocol

import aiohttp

from pytrtimeline._constants import USER_AGENT
from pytrtimeline._redact import redact_frame
from pytrtimeline.config import TrConfig
from pytrtimeline.exceptions import TrConnectError, TrSendError
from pytrtimeline.models.auth import AuthContext

_logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Transport(Protocol):
    """Structural transport interface used by the multiplexer.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`WebSocketTransport`)
    concrete.
    """

    @property
    def is_open(self) -> bool:
        ...

    async def send(self, frame: str) -> None:
        ...

    def receive(self) -> AsyncIterator[str]:
        ...

    async def close(self) -> None:
        ...


class WebSocketTransport:
    """aiohttp websocket owning the single persistent connection.

    Text frames are delivered one at a time, in the order the peer sent
    them. Binary and control frames are ignored.
    """

    def __init__(self, config: TrConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._state = ConnectionState.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN and self._ws is not None and not self._ws.closed

    async def open(self, auth: AuthContext | None = None) -> None:
        """Open the websocket, presenting the session cookies if any."""
        if self._state is not ConnectionState.DISCONNECTED:
            raise TrConnectError(f"Transport cannot be opened from state {self._state.value}")

        headers = {"User-Agent": USER_AGENT}
        if auth is not None and auth.cookies:
            headers["Cookie"] = auth.cookie_header()

        self._state = ConnectionState.CONNECTING
        _logger.debug("Connecting websocket %s", self._config.ws_url)
        try:
            self._ws = await asyncio.wait_for(
                self._http.ws_connect(
                    self._config.ws_url,
                    headers=headers,
                    heartbeat=self._config.heartbeat,
                    max_msg_size=0,
                ),
                timeout=self._config.connect_timeout,
            )
        except TimeoutError as exc:
            self._state = ConnectionState.CLOSED
            raise TrConnectError("Websocket connection timed out") from exc
        except aiohttp.WSServerHandshakeError as exc:
            self._state = ConnectionState.CLOSED
            raise TrConnectError(f"Websocket handshake rejected: HTTP {exc.status}") from exc
        except (aiohttp.ClientError, OSError) as exc:
            self._state = ConnectionState.CLOSED
            raise TrConnectError(f"Websocket connection failed: {exc}") from exc

        self._state = ConnectionState.OPEN
        _logger.info("Websocket connected to %s", self._config.ws_url)

    async def send(self, frame: str) -> None:
        """Write one text frame."""
        if not self.is_open or self._ws is None:
            raise TrSendError("Websocket is not open")
        _logger.debug("-> %s", redact_frame(frame))
        try:
            await self._ws.send_str(frame)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            raise TrSendError(f"Websocket send failed: {exc}") from exc

    async def receive(self) -> AsyncIterator[str]:
        """Yield inbound text frames until the connection closes."""
        if self._ws is None:
            raise TrConnectError("Websocket is not connected")

        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    _logger.debug("<- %s", redact_frame(msg.data))
                    yield msg.data
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    _logger.warning("Websocket error: %s", self._ws.exception())
                    break
                elif msg.type in {aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED}:
                    break
        finally:
            if self._state is ConnectionState.OPEN:
                _logger.info("Websocket closed by peer (code=%s)", self._ws.close_code)
                self._state = ConnectionState.CLOSED

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._state is ConnectionState.CLOSED and (self._ws is None or self._ws.closed):
            return
        self._state = ConnectionState.CLOSED
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
            _logger.info("Websocket closed")
