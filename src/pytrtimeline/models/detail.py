"""Detail fetch outcome for one timeline item."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class DetailResult(BaseModel):
    """Outcome of one ``timelineDetailV2`` exchange.

    Exactly one of ``payload`` (success) or ``error`` (failure) is
    meaningful; an empty ``C`` completion is a success with
    ``payload=None``.
    """

    model_config = ConfigDict(frozen=True)

    item_id: str
    payload: Any = None
    error: str | None = None
    subscription_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, item_id: str, payload: Any, *, subscription_id: int | None = None) -> DetailResult:
        return cls(item_id=item_id, payload=payload, subscription_id=subscription_id)

    @classmethod
    def failure(cls, item_id: str, error: str, *, subscription_id: int | None = None) -> DetailResult:
        return cls(item_id=item_id, error=error, subscription_id=subscription_id)
