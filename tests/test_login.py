from __future__ import annotations

import json
from http.cookies import SimpleCookie
from typing import Any

import pytest

from pytrtimeline._api.login import LoginProcess, WebLogin, build_error_message, validate_credentials
from pytrtimeline.config import TrConfig
from pytrtimeline.exceptions import TrAuthenticationError, TrConfigError


class _FakeResponse:
    def __init__(self, status: int, body: Any) -> None:
        self.status = status
        self._body = body if isinstance(body, str) else json.dumps(body)

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def text(self) -> str:
        return self._body


class _FakeHttpSession:
    """Minimal aiohttp.ClientSession stand-in for the login endpoints."""

    def __init__(self, responses: list[_FakeResponse], cookies: dict[str, str] | None = None) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, Any]] = []
        jar: SimpleCookie = SimpleCookie()
        for name, value in (cookies or {}).items():
            jar[name] = value
            jar[name]["domain"] = ".traderepublic.com"
        jar["tracker"] = "1"
        jar["tracker"]["domain"] = ".example.com"
        self._jar = jar

    @property
    def cookie_jar(self) -> list[Any]:
        return list(self._jar.values())

    def post(self, url: str, *, json: Any = None, headers: Any = None) -> _FakeResponse:
        self.calls.append((url, json))
        return self.responses.pop(0)


def test_validate_credentials() -> None:
    validate_credentials("+4912345678", "1234")
    with pytest.raises(TrConfigError):
        validate_credentials("012345678", "1234")
    with pytest.raises(TrConfigError):
        validate_credentials("+4912345678", "12a4")
    with pytest.raises(TrConfigError):
        validate_credentials("+4912345678", "12345")


def test_error_message_lists_known_codes() -> None:
    body = json.dumps({"errors": [{"errorCode": "VALIDATION_CODE_INVALID"}, {"errorCode": "SOMETHING_NEW"}]})
    message, codes = build_error_message("Code verification failed", 400, body)
    assert message.startswith("Code verification failed (400) - VALIDATION_CODE_INVALID: Invalid verification code")
    assert "SOMETHING_NEW" in message
    assert codes == ("VALIDATION_CODE_INVALID", "SOMETHING_NEW")


def test_error_message_includes_next_attempt() -> None:
    body = json.dumps(
        {"errors": [{"errorCode": "TOO_MANY_REQUESTS", "meta": {"nextAttemptTimestamp": "2024-05-01T10:00:00Z"}}]}
    )
    message, codes = build_error_message("Web login failed", 429, body)
    assert "Too many login attempts. Please try again after" in message
    assert "2024" in message
    assert codes == ("TOO_MANY_REQUESTS",)


def test_error_message_with_plain_body() -> None:
    message, codes = build_error_message("Web login failed", 500, "Internal Server Error")
    assert message == "Web login failed (500) - Internal Server Error"
    assert codes == ()


@pytest.mark.asyncio
async def test_login_flow_collects_session_cookies() -> None:
    http = _FakeHttpSession(
        [_FakeResponse(200, {"processId": "proc-1", "countdownInSeconds": 30}), _FakeResponse(200, "")],
        cookies={"tr_session": "s3cr3t", "tr_refresh": "r3fr3sh"},
    )
    login = WebLogin(TrConfig(), http)  # type: ignore[arg-type]

    auth = await login.login("+4912345678", "1234", lambda: " 5678 ")

    assert http.calls[0] == (
        "https://api.traderepublic.com/api/v1/auth/web/login",
        {"phoneNumber": "+4912345678", "pin": "1234"},
    )
    assert http.calls[1][0] == "https://api.traderepublic.com/api/v1/auth/web/login/proc-1/5678"
    assert auth.cookies == {"tr_session": "s3cr3t", "tr_refresh": "r3fr3sh"}
    assert "s3cr3t" not in repr(auth)
    assert auth.cookie_header() == "tr_session=s3cr3t; tr_refresh=r3fr3sh"


@pytest.mark.asyncio
async def test_login_accepts_async_code_provider() -> None:
    http = _FakeHttpSession([_FakeResponse(200, {"processId": "p"}), _FakeResponse(200, "{}")], cookies={"a": "b"})

    async def provide() -> str:
        return "0000"

    auth = await WebLogin(TrConfig(), http).login("+4912345678", "1234", provide)  # type: ignore[arg-type]
    assert http.calls[1][0].endswith("/p/0000")
    assert auth.cookies == {"a": "b"}


@pytest.mark.asyncio
async def test_initiate_maps_http_error() -> None:
    http = _FakeHttpSession([_FakeResponse(401, {"errors": [{"errorCode": "LOGIN_ATTEMPTS_EXCEEDED"}]})])
    with pytest.raises(TrAuthenticationError) as exc_info:
        await WebLogin(TrConfig(), http).initiate("+4912345678", "1234")  # type: ignore[arg-type]
    assert exc_info.value.status_code == 401
    assert exc_info.value.error_codes == ("LOGIN_ATTEMPTS_EXCEEDED",)


@pytest.mark.asyncio
async def test_initiate_requires_process_id() -> None:
    http = _FakeHttpSession([_FakeResponse(200, {"countdownInSeconds": 30})])
    with pytest.raises(TrAuthenticationError):
        await WebLogin(TrConfig(), http).initiate("+4912345678", "1234")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_complete_without_cookies_fails() -> None:
    http = _FakeHttpSession([_FakeResponse(200, "")])
    with pytest.raises(TrAuthenticationError):
        await WebLogin(TrConfig(), http).complete(LoginProcess("p"), "1234")  # type: ignore[arg-type]
