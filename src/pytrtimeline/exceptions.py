"""Custom exception hierarchy for pytrtimeline."""

from __future__ import annotations

from typing import Any


class TrError(Exception):
    """Base exception for all pytrtimeline errors."""


class TrConfigError(TrError):
    """Invalid or missing configuration."""


class TrAuthenticationError(TrError):
    """Web login failed (HTTP error or rejected verification code)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_codes: tuple[str, ...] = (),
    ) -> None:
        self.status_code = status_code
        self.error_codes = error_codes
        super().__init__(message)


class TrConnectError(TrError):
    """The websocket never reached the open state.

    Fatal for the whole run.
    """


class TrSendError(TrError):
    """An outbound frame could not be written to the connection."""

    def __init__(self, message: str, *, subscription_id: int | None = None) -> None:
        self.subscription_id = subscription_id
        super().__init__(message)


class TrMalformedFrameError(TrError):
    """An inbound frame did not match any known shape."""

    def __init__(self, message: str, *, frame: str = "") -> None:
        self.frame = frame
        super().__init__(message)


class TrUnknownSubscriptionError(TrError):
    """A terminal frame arrived for an id with no pending exchange."""

    def __init__(self, message: str, *, subscription_id: int) -> None:
        self.subscription_id = subscription_id
        super().__init__(message)


class TrExchangeError(TrError):
    """The remote side failed one exchange (``E`` frame).

    Only the caller awaiting that subscription sees this error; sibling
    exchanges on the same connection are unaffected.
    """

    def __init__(
        self,
        message: str,
        *,
        subscription_id: int | None = None,
        payload: Any = None,
    ) -> None:
        self.subscription_id = subscription_id
        self.payload = payload
        super().__init__(message)


class TrExchangeTimeoutError(TrExchangeError):
    """No terminal frame arrived within ``TrConfig.subscription_timeout``."""


class TrConnectionClosedError(TrError):
    """The connection closed while exchanges were still pending."""


class TrFeedError(TrError):
    """A page of a paginated feed could not be fetched."""

    def __init__(self, message: str, *, feed: str, page: int) -> None:
        self.feed = feed
        self.page = page
        super().__init__(message)
