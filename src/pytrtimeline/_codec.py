"""Wire codec for the timeline subscription protocol.

Outbound frames are ``"<verb> <id> <json>"``. Inbound frames are either
the literal ``connected`` acknowledgement or ``"<id> <code> [json]"``
where ``code`` is ``A`` (data), ``C`` (complete) or ``E`` (error).
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pytrtimeline._constants import HANDSHAKE_ACK
from pytrtimeline.exceptions import TrMalformedFrameError


class Verb(StrEnum):
    CONNECT = "connect"
    SUB = "sub"


@dataclass(frozen=True)
class OutboundCommand:
    """A command to be written to the connection."""

    verb: Verb
    id: int
    payload: Mapping[str, Any] = field(default_factory=dict)

    def encode(self) -> str:
        return f"{self.verb} {self.id} {json.dumps(dict(self.payload), separators=(',', ':'), ensure_ascii=False)}"


@dataclass(frozen=True)
class Handshake:
    """The ``connected`` acknowledgement of the ``connect`` command."""


@dataclass(frozen=True)
class DataMessage:
    """``<id> A <json>``: successful result of one exchange."""

    subscription_id: int
    payload: Any


@dataclass(frozen=True)
class CompleteMessage:
    """``<id> C``: the exchange finished without data."""

    subscription_id: int


@dataclass(frozen=True)
class ErrorMessage:
    """``<id> E <json>``: the exchange failed.

    ``payload`` is the decoded error description when it is JSON,
    otherwise the raw text (or ``None`` when absent).
    """

    subscription_id: int
    payload: Any = None
    undecodable_data: bool = False
    """``True`` when this error was derived from an ``A`` frame whose
    payload could not be parsed."""


InboundMessage = Handshake | DataMessage | CompleteMessage | ErrorMessage

_DATA_CODE = "A"
_COMPLETE_CODE = "C"
_ERROR_CODE = "E"


def encode_command(verb: Verb, subscription_id: int, payload: Mapping[str, Any]) -> str:
    """Serialize one outbound command."""
    return OutboundCommand(verb=verb, id=subscription_id, payload=payload).encode()


def decode_frame(frame: str) -> InboundMessage:
    """Parse one inbound text frame.

    Raises
    ------
    TrMalformedFrameError
        The frame has none of the known shapes. Callers log and drop it;
        it is never attributed to an exchange.
    """
    text = frame.strip()
    if text == HANDSHAKE_ACK:
        return Handshake()

    parts = text.split(maxsplit=2)
    if len(parts) < 2:
        raise TrMalformedFrameError(f"Expected '<id> <code> [payload]', got {len(parts)} token(s)", frame=frame)

    raw_id, code = parts[0], parts[1]
    body = parts[2] if len(parts) > 2 else ""
    if not (raw_id.isascii() and raw_id.isdigit()):
        raise TrMalformedFrameError(f"Subscription id {raw_id!r} is not numeric", frame=frame)
    subscription_id = int(raw_id)

    if code == _DATA_CODE:
        try:
            return DataMessage(subscription_id, json.loads(body))
        except ValueError:
            return ErrorMessage(
                subscription_id,
                {"message": "Undecodable data payload", "raw": body},
                undecodable_data=True,
            )
    if code == _COMPLETE_CODE:
        return CompleteMessage(subscription_id)
    if code == _ERROR_CODE:
        return ErrorMessage(subscription_id, _loads_lenient(body))

    raise TrMalformedFrameError(f"Unknown message code {code!r}", frame=frame)


def _loads_lenient(body: str) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return body
