"""High-level async client for the Trade Republic timeline."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

import aiohttp

from pytrtimeline._api.handshake import build_handshake
from pytrtimeline._api.login import CodeProvider, WebLogin
from pytrtimeline._multiplexer import Subscription, SubscriptionMultiplexer
from pytrtimeline._transport import Transport, WebSocketTransport
from pytrtimeline.config import TrConfig
from pytrtimeline.exceptions import TrConfigError, TrConnectError, TrError
from pytrtimeline.models.auth import AuthContext
from pytrtimeline.models.timeline import TimelineItem, TimelineResult
from pytrtimeline.timeline.assembler import DEFAULT_FEEDS, TimelineAssembler

_logger = logging.getLogger(__name__)


class TradeRepublicClient:
    """Async client for the Trade Republic timeline.

    Usage::

        async with TradeRepublicClient(config) as client:
            auth = await client.login(phone_no, pin, code_provider=input)
            await client.connect(auth)
            result = await client.fetch_timeline()

    A pre-opened *transport* may be injected; the client then skips the
    websocket upgrade and only runs the handshake over it.
    """

    def __init__(
        self,
        config: TrConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config or TrConfig()
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._multiplexer: SubscriptionMultiplexer | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TradeRepublicClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    @property
    def config(self) -> TrConfig:
        return self._config

    @property
    def multiplexer(self) -> SubscriptionMultiplexer:
        if self._multiplexer is None:
            raise TrError("Client not connected. Call 'await client.connect(auth)' first")
        return self._multiplexer

    @property
    def is_connected(self) -> bool:
        return self._multiplexer is not None and self._multiplexer.is_open

    def _require_http(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            raise TrError("Client not initialized. Use 'async with TradeRepublicClient(...) as client:'")
        return self._http_session

    # ------------------------------------------------------------------
    # Authentication and connection
    # ------------------------------------------------------------------

    async def login(self, phone_no: str, pin: str, code_provider: CodeProvider) -> AuthContext:
        """Run the two-step web login and return the session context."""
        return await WebLogin(self._config, self._require_http()).login(phone_no, pin, code_provider)

    async def connect(self, auth: AuthContext | None = None) -> None:
        """Open the websocket and complete the ``connect`` handshake."""
        if self._multiplexer is not None:
            raise TrConnectError("Client is already connected")

        extras: dict[str, Any] = {}
        if not self._config.web_login:
            if auth is None or not auth.session_token:
                raise TrConfigError("App-login mode requires an AuthContext with a session_token")
            extras["token"] = auth.session_token

        if self._transport is None:
            transport = WebSocketTransport(self._config, self._require_http())
            await transport.open(auth)
            self._transport = transport

        self._multiplexer = SubscriptionMultiplexer(
            self._transport,
            subscription_timeout=self._config.subscription_timeout,
            payload_extras=extras,
        )
        self._multiplexer.start()
        connect_id, payload = build_handshake(self._config)
        try:
            await self._multiplexer.handshake(connect_id, payload, timeout=self._config.connect_timeout)
        except TrConnectError:
            await self.close()
            raise

    async def close(self) -> None:
        """Tear down the connection, failing anything still pending."""
        multiplexer, self._multiplexer = self._multiplexer, None
        if multiplexer is not None:
            await multiplexer.close()
        elif self._transport is not None:
            await self._transport.close()
        self._transport = None

    # ------------------------------------------------------------------
    # Exchanges
    # ------------------------------------------------------------------

    def subscribe(self, payload: Mapping[str, Any]) -> Subscription:
        """Open one subscription without waiting for its result."""
        return self.multiplexer.open(payload)

    async def request(self, payload: Mapping[str, Any]) -> Any:
        """Open one subscription and wait for its terminal frame."""
        return await self.multiplexer.request(payload)

    async def fetch_timeline(
        self,
        *,
        since: datetime | None = None,
        feeds: Sequence[str] = DEFAULT_FEEDS,
        needs_detail: Callable[[str, TimelineItem], bool] | None = None,
    ) -> TimelineResult:
        """Fetch all feeds and their details as one ordered timeline."""
        kwargs: dict[str, Any] = {}
        if needs_detail is not None:
            kwargs["needs_detail"] = needs_detail
        assembler = TimelineAssembler(
            self.multiplexer,
            feeds=feeds,
            detail_concurrency=self._config.detail_concurrency,
            max_pages=self._config.max_pages,
            **kwargs,
        )
        result = await assembler.run(since=since)
        _logger.debug("Multiplexer stats: %s", self.multiplexer.stats)
        return result
