"""Client configuration for pytrtimeline."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pytrtimeline._constants import API_HOST, WS_URL
from pytrtimeline.exceptions import TrConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_optional_float(value: str | None) -> float | None:
    if value is None or not value.strip() or value.strip().lower() == "none":
        return None
    return float(value)


def _env_optional_int(value: str | None) -> int | None:
    if value is None or not value.strip() or value.strip().lower() == "none":
        return None
    return int(value)


@dataclasses.dataclass(frozen=True)
class ClientProfile:
    """Client identity fields sent with the web-login handshake.

    These correspond to the ``connect`` payload fields that identify
    the browser client to the Trade Republic websocket.
    """

    platform_id: str = "webtrading"
    platform_version: str = "chrome - 94.0.4606"
    client_id: str = "app.traderepublic.com"
    client_version: str = "5582"


@dataclasses.dataclass(frozen=True)
class TrConfig:
    """Client configuration.

    Parameters
    ----------
    ws_url : str
        Websocket endpoint carrying the subscription protocol.
    api_host : str
        HTTPS base URL used by the web-login flow.
    locale : str
        Locale sent in the handshake payload (e.g. ``"de"``).
    web_login : bool
        Select the web-login handshake (id 31, full client profile).
        When ``False`` the minimal app-login handshake (id 21) is used
        and the session token is attached to every subscription.
    connect_timeout : float
        Seconds allowed for the websocket to reach the open state.
    heartbeat : float
        Websocket ping interval in seconds.
    detail_concurrency : int
        Maximum number of detail subscriptions pending at once.
    subscription_timeout : float or None
        Seconds to wait for the terminal frame of a single exchange.
        ``None`` waits indefinitely.
    max_pages : int or None
        Upper bound on pages requested per feed. ``None`` follows the
        cursor chain until the feed is exhausted.
    profile : ClientProfile
        Client identity fields.
    """

    ws_url: str = WS_URL
    api_host: str = API_HOST
    locale: str = "de"
    web_login: bool = True
    connect_timeout: float = 15.0
    heartbeat: float = 30.0
    detail_concurrency: int = 10
    subscription_timeout: float | None = None
    max_pages: int | None = None
    profile: ClientProfile = dataclasses.field(default_factory=ClientProfile)

    def __post_init__(self) -> None:
        if self.detail_concurrency < 1:
            raise TrConfigError(f"detail_concurrency must be >= 1, got {self.detail_concurrency}")
        if self.subscription_timeout is not None and self.subscription_timeout <= 0:
            raise TrConfigError(f"subscription_timeout must be positive, got {self.subscription_timeout}")
        if self.max_pages is not None and self.max_pages < 1:
            raise TrConfigError(f"max_pages must be >= 1, got {self.max_pages}")

    @classmethod
    def from_env(cls, **overrides: Any) -> TrConfig:
        """Create configuration from environment variables.

        Reads optional ``TR_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TrConfig
            Populated configuration.
        """
        env = os.environ

        profile_kwargs: dict[str, str] = {}
        _ENV_PROFILE_MAP = {
            "TR_PLATFORM_ID": "platform_id",
            "TR_PLATFORM_VERSION": "platform_version",
            "TR_CLIENT_ID": "client_id",
            "TR_CLIENT_VERSION": "client_version",
        }
        for env_key, field_name in _ENV_PROFILE_MAP.items():
            val = env.get(env_key)
            if val is not None:
                profile_kwargs[field_name] = val

        profile_overrides = overrides.pop("profile", None)
        if isinstance(profile_overrides, dict):
            profile_kwargs.update(profile_overrides)
        elif isinstance(profile_overrides, ClientProfile):
            profile_kwargs = dataclasses.asdict(profile_overrides)

        profile = ClientProfile(**profile_kwargs) if profile_kwargs else ClientProfile()

        config_kwargs: dict[str, Any] = {"profile": profile}
        for env_key, field_name in {"TR_WS_URL": "ws_url", "TR_API_HOST": "api_host", "TR_LOCALE": "locale"}.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        if "web_login" not in overrides:
            config_kwargs["web_login"] = _env_bool(env.get("TR_WEB_LOGIN"), True)

        try:
            connect_env = env.get("TR_CONNECT_TIMEOUT")
            if connect_env is not None and "connect_timeout" not in overrides:
                config_kwargs["connect_timeout"] = float(connect_env)

            concurrency_env = env.get("TR_DETAIL_CONCURRENCY")
            if concurrency_env is not None and "detail_concurrency" not in overrides:
                config_kwargs["detail_concurrency"] = int(concurrency_env)

            if "TR_SUBSCRIPTION_TIMEOUT" in env and "subscription_timeout" not in overrides:
                config_kwargs["subscription_timeout"] = _env_optional_float(env["TR_SUBSCRIPTION_TIMEOUT"])

            if "TR_MAX_PAGES" in env and "max_pages" not in overrides:
                config_kwargs["max_pages"] = _env_optional_int(env["TR_MAX_PAGES"])
        except ValueError as exc:
            raise TrConfigError(f"Invalid numeric TR_* environment value: {exc}") from exc

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
