"""Handshake (``connect``) payloads.

Two shapes exist, selected by the login mode:

- web login: connect id 31, locale plus the browser client profile
- app login: connect id 21, locale only
"""

from __future__ import annotations

from typing import Any

from pytrtimeline._constants import APP_LOGIN_CONNECT_ID, WEB_LOGIN_CONNECT_ID
from pytrtimeline.config import TrConfig


def build_handshake(config: TrConfig) -> tuple[int, dict[str, Any]]:
    """Return ``(connect_id, payload)`` for the configured login mode."""
    if not config.web_login:
        return APP_LOGIN_CONNECT_ID, {"locale": config.locale}
    profile = config.profile
    return WEB_LOGIN_CONNECT_ID, {
        "locale": config.locale,
        "platformId": profile.platform_id,
        "platformVersion": profile.platform_version,
        "clientId": profile.client_id,
        "clientVersion": profile.client_version,
    }
