"""Internal constants shared across the library."""

from enum import StrEnum

WS_URL = "wss://api.traderepublic.com"
API_HOST = "https://api.traderepublic.com"
USER_AGENT = "TradeRepublic/Android 30/App Version 1.1.5534"
COOKIE_DOMAIN = "traderepublic.com"

# Handshake ids sent with the ``connect`` command.
WEB_LOGIN_CONNECT_ID = 31
APP_LOGIN_CONNECT_ID = 21

# Literal acknowledgement of the ``connect`` command.
HANDSHAKE_ACK = "connected"

DETAIL_SUBSCRIPTION_TYPE = "timelineDetailV2"


class TimelineFeed(StrEnum):
    """Paginated feeds that make up a user's timeline."""

    TRANSACTIONS = "timelineTransactions"
    ACTIVITY_LOG = "timelineActivityLog"
