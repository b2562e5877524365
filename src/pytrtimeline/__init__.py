"""pytrtimeline - Async Python client for the Trade Republic timeline."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pytrtimeline")
except PackageNotFoundError:
    __version__ = "0+local"
from pytrtimeline._constants import TimelineFeed
from pytrtimeline._multiplexer import Subscription, SubscriptionMultiplexer
from pytrtimeline.client import TradeRepublicClient
from pytrtimeline.config import ClientProfile, TrConfig
from pytrtimeline.exceptions import (
    TrAuthenticationError,
    TrConfigError,
    TrConnectError,
    TrConnectionClosedError,
    TrError,
    TrExchangeError,
    TrExchangeTimeoutError,
    TrFeedError,
    TrMalformedFrameError,
    TrSendError,
    TrUnknownSubscriptionError,
)
from pytrtimeline.models import (
    AuthContext,
    DetailResult,
    FeedStats,
    TimelineEvent,
    TimelineItem,
    TimelinePage,
    TimelineResult,
)

__all__ = [
    "__version__",
    "AuthContext",
    "ClientProfile",
    "DetailResult",
    "FeedStats",
    "Subscription",
    "SubscriptionMultiplexer",
    "TimelineEvent",
    "TimelineFeed",
    "TimelineItem",
    "TimelinePage",
    "TimelineResult",
    "TradeRepublicClient",
    "TrAuthenticationError",
    "TrConfig",
    "TrConfigError",
    "TrConnectError",
    "TrConnectionClosedError",
    "TrError",
    "TrExchangeError",
    "TrExchangeTimeoutError",
    "TrFeedError",
    "TrMalformedFrameError",
    "TrSendError",
    "TrUnknownSubscriptionError",
]
