"""Helpers for safe debug logging.

Frames on the timeline connection carry session tokens, and the login
flow carries phone numbers and PINs. Everything logged at DEBUG goes
through one of the two helpers below.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "pin",
        "phonenumber",
        "token",
        "sessiontoken",
        "refreshtoken",
        "authorization",
        "cookie",
        "cookies",
        "set-cookie",
    }
)

_MAX_DEPTH = 20


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* with secrets masked and long strings cut."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        return {
            str(key): "<redacted>"
            if str(key).lower() in _SENSITIVE_KEYS
            else redact_for_log(item, max_string=max_string, _depth=_depth + 1)
            for key, item in value.items()
        }

    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]

    return repr(value)


def redact_frame(frame: str, *, max_string: int = 512) -> str:
    """Redact the JSON tail of a wire frame such as ``sub 5 {...}``.

    Both outbound (``<verb> <id> <json>``) and inbound (``<id> <code>
    <json>``) frames carry two leading tokens, which are kept verbatim;
    a tail that is not valid JSON is only truncated.
    """
    parts = frame.split(maxsplit=2)
    if len(parts) < 3:
        return redact_for_log(frame, max_string=max_string)
    try:
        payload = json.loads(parts[2])
    except ValueError:
        return redact_for_log(frame, max_string=max_string)
    redacted = redact_for_log(payload, max_string=max_string)
    return f"{parts[0]} {parts[1]} {json.dumps(redacted, separators=(',', ':'), ensure_ascii=False)}"
