"""Base model for timeline payloads.

Every model built from a server payload inherits from
:class:`TrBaseModel`, which provides:

* ``alias_generator=to_camel`` so camelCase payload keys map
  automatically to snake_case fields.
* Tolerance for unknown keys (the payloads are opaque; only the
  fields needed for correlation and ordering are typed).
* A ``raw`` dict that captures the original payload.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_tr_timestamp(value: Any) -> datetime | None:
    """Convert a timeline timestamp to a timezone-aware datetime.

    Accepts ISO-8601 strings (``Z`` or ``+0000`` offsets) and epoch
    seconds **or** milliseconds. Returns ``None`` for values that cannot
    be interpreted; such items sort by id only.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return None


TrTimestamp = Annotated[datetime | None, BeforeValidator(parse_tr_timestamp)]
"""Annotated type that coerces timeline timestamps to UTC-aware datetimes."""


class TrBaseModel(BaseModel):
    """Base for models parsed from server payloads."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original payload dict."""

    @model_validator(mode="before")
    @classmethod
    def _stash_raw(cls, values: Any) -> Any:
        # Keep the caller's raw= when constructing from kwargs.
        if not isinstance(values, dict) or "raw" in values:
            return values
        return {**values, "raw": dict(values)}
