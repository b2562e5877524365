"""Authenticated connection context produced by the login flow."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class AuthContext(BaseModel):
    """Credentials needed to open the timeline websocket.

    Parameters
    ----------
    cookies : dict
        Session cookies from the web login, sent as the ``Cookie``
        header of the websocket upgrade request.
    session_token : str or None
        App-login session token, merged into every subscription
        payload when the client runs in app-login mode.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    cookies: dict[str, str] = Field(default_factory=dict)
    session_token: str | None = None

    def cookie_header(self) -> str:
        """Render the cookies as a ``Cookie`` header value."""
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())

    def __repr__(self) -> str:
        names = ", ".join(sorted(self.cookies))
        return f"AuthContext(cookies=[{names}], session_token={'<set>' if self.session_token else None})"
