"""Subscription multiplexer for the timeline websocket.

Turns the single shared connection into many independent request/
response exchanges:

- ``open()`` mints the next subscription id, registers a pending
  exchange and queues ``sub <id> <json>`` for the writer task; it
  returns a :class:`Subscription` handle without waiting.
- One reader task drains the transport, decodes every frame and routes
  each terminal frame (``A``/``C``/``E``) to exactly one pending
  exchange. Frames for ids that are not pending are logged and dropped.
- When the connection ends, every exchange still pending fails with
  :class:`~pytrtimeline.exceptions.TrConnectionClosedError`.

The registry is owned by one multiplexer instance and is only mutated
from synchronous sections running on the event loop that started it, so
``open()`` calls racing the reader never interleave inside an update.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Generator, Mapping
from dataclasses import dataclass, field
from typing import Any, assert_never

from pytrtimeline._codec import (
    CompleteMessage,
    DataMessage,
    ErrorMessage,
    Handshake,
    InboundMessage,
    Verb,
    decode_frame,
    encode_command,
)
from pytrtimeline._redact import redact_for_log
from pytrtimeline._transport import Transport
from pytrtimeline.exceptions import (
    TrConnectError,
    TrConnectionClosedError,
    TrError,
    TrExchangeError,
    TrExchangeTimeoutError,
    TrMalformedFrameError,
    TrSendError,
    TrUnknownSubscriptionError,
)

_logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _PendingExchange:
    """One registered exchange awaiting its terminal frame."""

    id: int
    payload: dict[str, Any]
    future: asyncio.Future[Any]
    created_at: float = field(default_factory=time.monotonic)


@dataclass(slots=True)
class MultiplexerStats:
    """Counters for one connection's lifetime."""

    sent: int = 0
    resolved: int = 0
    failed: int = 0
    discarded: int = 0
    malformed_frames: int = 0
    unknown_frames: int = 0


class Subscription:
    """Awaitable handle for one exchange.

    ``await subscription`` returns the decoded ``A`` payload, or ``None``
    for a ``C`` completion, and raises :class:`TrExchangeError` for an
    ``E`` frame. Cancelling the awaiting task removes the exchange from
    the registry; a late frame for it is then dropped as unknown.
    """

    __slots__ = ("_future", "_multiplexer", "_timeout", "id", "payload")

    def __init__(
        self,
        multiplexer: SubscriptionMultiplexer,
        subscription_id: int,
        payload: dict[str, Any],
        future: asyncio.Future[Any],
        timeout: float | None,
    ) -> None:
        self._multiplexer = multiplexer
        self._future = future
        self._timeout = timeout
        self.id = subscription_id
        self.payload = payload

    def __repr__(self) -> str:
        state = "done" if self._future.done() else "pending"
        return f"<Subscription id={self.id} type={self.payload.get('type')!r} {state}>"

    def done(self) -> bool:
        return self._future.done()

    async def result(self) -> Any:
        try:
            if self._timeout is None:
                return await self._future
            return await asyncio.wait_for(self._future, self._timeout)
        except TimeoutError as exc:
            self._multiplexer.discard(self.id)
            raise TrExchangeTimeoutError(
                f"Subscription {self.id} got no terminal frame within {self._timeout}s",
                subscription_id=self.id,
            ) from exc
        except asyncio.CancelledError:
            self._multiplexer.discard(self.id)
            raise

    def __await__(self) -> Generator[Any, None, Any]:
        return self.result().__await__()

    def cancel(self) -> bool:
        """Abandon the exchange locally; the remote side is left alone."""
        self._multiplexer.discard(self.id)
        return self._future.cancel()


class SubscriptionMultiplexer:
    """Correlates subscriptions and their terminal frames on one transport.

    Usage::

        async with SubscriptionMultiplexer(transport) as mux:
            await mux.handshake(31, {"locale": "de"})
            page = await mux.open({"type": "timelineTransactions"})
    """

    def __init__(
        self,
        transport: Transport,
        *,
        subscription_timeout: float | None = None,
        payload_extras: Mapping[str, Any] | None = None,
        first_id: int = 1,
    ) -> None:
        self._transport = transport
        self._subscription_timeout = subscription_timeout
        self._payload_extras = dict(payload_extras or {})
        self._next_id = first_id
        self._registry: dict[int, _PendingExchange] = {}
        self._outbox: asyncio.Queue[tuple[int | None, str]] = asyncio.Queue()
        self._handshake: asyncio.Future[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._closed = False
        self._close_reason: str | None = None
        self.stats = MultiplexerStats()

    async def __aenter__(self) -> SubscriptionMultiplexer:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return len(self._registry)

    @property
    def pending_ids(self) -> list[int]:
        return sorted(self._registry)

    @property
    def handshake_acknowledged(self) -> bool:
        return (
            self._handshake is not None
            and self._handshake.done()
            and not self._handshake.cancelled()
            and self._handshake.exception() is None
        )

    @property
    def is_open(self) -> bool:
        return not self._closed and self._transport.is_open

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the reader and writer tasks on the running loop."""
        if self._closed:
            raise TrConnectionClosedError("Multiplexer is closed")
        if self._reader_task is not None:
            return
        self._reader_task = asyncio.create_task(self._read_loop(), name="tr-mux-reader")
        self._writer_task = asyncio.create_task(self._write_loop(), name="tr-mux-writer")

    async def handshake(self, connect_id: int, payload: Mapping[str, Any], *, timeout: float | None = None) -> None:
        """Send ``connect <connect_id> <json>`` and wait for ``connected``.

        Raises
        ------
        TrConnectError
            The connection failed or closed before the acknowledgement.
        """
        if self.handshake_acknowledged:
            return
        if self._closed:
            raise TrConnectError("Connection closed before handshake")
        if self._handshake is None:
            self._handshake = asyncio.get_running_loop().create_future()
            self._outbox.put_nowait((None, encode_command(Verb.CONNECT, connect_id, payload)))
            _logger.debug("Handshake queued (connect id %d)", connect_id)

        try:
            await asyncio.wait_for(asyncio.shield(self._handshake), timeout)
        except TimeoutError as exc:
            raise TrConnectError(f"Handshake not acknowledged within {timeout}s") from exc
        except TrError as exc:
            raise TrConnectError(f"Handshake failed: {exc}") from exc
        _logger.info("Handshake acknowledged")

    def open(self, payload: Mapping[str, Any]) -> Subscription:
        """Register a new exchange and queue its ``sub`` command.

        Returns immediately; await the handle for the result.

        Raises
        ------
        TrConnectionClosedError
            The connection has already been torn down.
        TrSendError
            The handshake has not been acknowledged yet.
        """
        if self._closed:
            raise TrConnectionClosedError(f"Connection closed ({self._close_reason})")
        if not self.handshake_acknowledged:
            raise TrSendError("Handshake not acknowledged; cannot open a subscription")

        subscription_id = self._next_id
        self._next_id += 1
        body = {**payload, **self._payload_extras}
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        # Register before the frame can reach the wire so the reply can
        # never arrive ahead of its registry entry.
        self._registry[subscription_id] = _PendingExchange(subscription_id, body, future)
        self._outbox.put_nowait((subscription_id, encode_command(Verb.SUB, subscription_id, body)))
        return Subscription(self, subscription_id, body, future, self._subscription_timeout)

    async def request(self, payload: Mapping[str, Any]) -> Any:
        """Open one exchange and wait for its result."""
        return await self.open(payload)

    def discard(self, subscription_id: int) -> bool:
        """Drop a pending exchange without resolving it remotely."""
        pending = self._registry.pop(subscription_id, None)
        if pending is None:
            return False
        self.stats.discarded += 1
        if not pending.future.done():
            pending.future.cancel()
        _logger.debug("Subscription %d discarded locally", subscription_id)
        return True

    async def close(self) -> None:
        """Close the transport and fail every pending exchange. Idempotent."""
        if self._closed and self._reader_task is None:
            return
        for task in (self._writer_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reader_task = None
        self._writer_task = None
        await self._transport.close()
        self.on_close("closed locally")

    # ------------------------------------------------------------------
    # Inbound routing
    # ------------------------------------------------------------------

    def feed(self, frame: str) -> bool:
        """Decode and dispatch one raw frame. Returns ``False`` if dropped."""
        try:
            message = decode_frame(frame)
        except TrMalformedFrameError as exc:
            self.stats.malformed_frames += 1
            _logger.warning("Dropping malformed frame: %s (%s)", exc, redact_for_log(exc.frame, max_string=120))
            return False
        return self.dispatch(message)

    def dispatch(self, message: InboundMessage) -> bool:
        """Route one decoded message. Returns ``False`` if it was dropped."""
        if isinstance(message, Handshake):
            return self._acknowledge_handshake()
        try:
            self._resolve(message)
        except TrUnknownSubscriptionError as exc:
            self.stats.unknown_frames += 1
            _logger.warning("%s", exc)
            return False
        return True

    def _acknowledge_handshake(self) -> bool:
        if self._handshake is None or self._handshake.done():
            _logger.debug("Ignoring unsolicited handshake acknowledgement")
            return False
        self._handshake.set_result(None)
        return True

    def _resolve(self, message: DataMessage | CompleteMessage | ErrorMessage) -> None:
        pending = self._registry.pop(message.subscription_id, None)
        if pending is None:
            raise TrUnknownSubscriptionError(
                f"Dropping frame for subscription {message.subscription_id}: no pending exchange",
                subscription_id=message.subscription_id,
            )
        if pending.future.done():
            return

        if isinstance(message, DataMessage):
            pending.future.set_result(message.payload)
            self.stats.resolved += 1
        elif isinstance(message, CompleteMessage):
            _logger.debug("Subscription %d completed with no data", message.subscription_id)
            pending.future.set_result(None)
            self.stats.resolved += 1
        elif isinstance(message, ErrorMessage):
            _logger.error(
                "Subscription %d (%s) failed: %s",
                message.subscription_id,
                pending.payload.get("type"),
                redact_for_log(message.payload),
            )
            pending.future.set_exception(
                TrExchangeError(
                    f"Subscription {message.subscription_id} failed: {message.payload}",
                    subscription_id=message.subscription_id,
                    payload=message.payload,
                )
            )
            self.stats.failed += 1
        else:
            assert_never(message)

    def on_close(self, reason: str) -> None:
        """Fail every pending exchange and clear the registry."""
        if not self._closed:
            self._closed = True
            self._close_reason = reason
            _logger.info("Connection closed (%s); failing %d pending exchange(s)", reason, len(self._registry))

        pending = list(self._registry.values())
        self._registry.clear()
        for exchange in pending:
            if not exchange.future.done():
                exchange.future.set_exception(
                    TrConnectionClosedError(f"Connection closed ({reason}) before subscription {exchange.id} resolved")
                )
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(TrConnectionClosedError(f"Connection closed ({reason})"))

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        reason = "closed by peer"
        try:
            async for frame in self._transport.receive():
                self.feed(frame)
        except asyncio.CancelledError:
            reason = "closed locally"
            raise
        except Exception as exc:
            _logger.error("Websocket reader failed: %s", exc, exc_info=True)
            reason = f"transport error: {exc}"
        finally:
            self.on_close(reason)
            if self._writer_task is not None and not self._writer_task.done():
                self._writer_task.cancel()

    async def _write_loop(self) -> None:
        while True:
            subscription_id, frame = await self._outbox.get()
            try:
                await self._transport.send(frame)
            except TrSendError as exc:
                self._fail_send(subscription_id, exc)
            except Exception as exc:
                _logger.error("Transport send raised %s: %s", type(exc).__name__, exc, exc_info=True)
                error = TrSendError(f"Websocket send failed: {exc}")
                error.__cause__ = exc
                self._fail_send(subscription_id, error)
            else:
                if subscription_id is not None:
                    self.stats.sent += 1
            finally:
                self._outbox.task_done()

    def _fail_send(self, subscription_id: int | None, exc: TrSendError) -> None:
        if subscription_id is None:
            if self._handshake is not None and not self._handshake.done():
                self._handshake.set_exception(exc)
            return
        pending = self._registry.pop(subscription_id, None)
        if pending is None or pending.future.done():
            return
        exc.subscription_id = subscription_id
        _logger.warning("Sending subscription %d failed: %s", subscription_id, exc)
        pending.future.set_exception(exc)

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to the transport."""
        await self._outbox.join()
