"""Web login endpoints.

Endpoints:
  - POST /api/v1/auth/web/login                         -> processId
  - POST /api/v1/auth/web/login/{processId}/{code}      -> session cookies

The resulting :class:`AuthContext` is what the websocket transport
needs; the rest of the library never sees the phone number or PIN.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import aiohttp

from pytrtimeline._constants import COOKIE_DOMAIN, USER_AGENT
from pytrtimeline._redact import redact_for_log
from pytrtimeline.config import TrConfig
from pytrtimeline.exceptions import TrAuthenticationError, TrConfigError
from pytrtimeline.models.auth import AuthContext

_logger = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^\+[1-9]\d{1,14}$")
_PIN_RE = re.compile(r"^\d{4}$")

CodeProvider = Callable[[], Awaitable[str] | str]

_ERROR_HINTS: dict[str, str] = {
    "TOO_MANY_REQUESTS": "Too many login attempts",
    "VALIDATION_CODE_INVALID": "Invalid verification code. Please check the 4-digit code from your app",
    "VALIDATION_CODE_EXPIRED": "Verification code has expired. Please request a new code",
    "LOGIN_ATTEMPTS_EXCEEDED": "Maximum login attempts exceeded",
}
_RETRY_PREFIX: dict[str, str] = {
    "TOO_MANY_REQUESTS": "Please try again after",
    "LOGIN_ATTEMPTS_EXCEEDED": "Account locked until",
}


@dataclass(frozen=True)
class LoginProcess:
    process_id: str
    countdown_seconds: int | None = None


def validate_credentials(phone_no: str, pin: str) -> None:
    """Reject credentials that cannot possibly be valid."""
    if not _PHONE_RE.match(phone_no or ""):
        raise TrConfigError("Invalid phone number format. Use international format like +4912345678")
    if not _PIN_RE.match(pin or ""):
        raise TrConfigError("Invalid PIN format. PIN must be exactly 4 digits")


def _format_timestamp(value: str) -> str:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.astimezone().strftime("%d.%m.%Y %H:%M:%S %Z")


def build_error_message(base: str, status: int, body: str) -> tuple[str, tuple[str, ...]]:
    """Turn an error response into ``(message, error_codes)``."""
    message = f"{base} ({status})"
    try:
        parsed = json.loads(body)
    except ValueError:
        return f"{message} - {body[:200]}" if body else message, ()

    errors = parsed.get("errors") if isinstance(parsed, dict) else None
    if not isinstance(errors, list):
        return message, ()

    codes: list[str] = []
    for error in errors:
        if not isinstance(error, dict) or "errorCode" not in error:
            continue
        code = str(error["errorCode"])
        codes.append(code)
        message += f" - {code}"
        hint = _ERROR_HINTS.get(code)
        if hint:
            message += f": {hint}"
        meta = error.get("meta")
        next_attempt = meta.get("nextAttemptTimestamp") if isinstance(meta, dict) else None
        if code in _RETRY_PREFIX and isinstance(next_attempt, str):
            message += f". {_RETRY_PREFIX[code]} {_format_timestamp(next_attempt)}"
    return message, tuple(codes)


class WebLogin:
    """Two-step web login yielding session cookies."""

    def __init__(self, config: TrConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    async def _post(self, path: str, body: dict[str, Any] | None, *, failure: str) -> str:
        url = f"{self._config.api_host}{path}"
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        _logger.debug("POST %s %s", url, redact_for_log(body))
        try:
            async with self._http.post(url, json=body or {}, headers=headers) as resp:
                text = await resp.text()
                _logger.debug("Login response %s: %s", resp.status, redact_for_log(text, max_string=200))
                if resp.status >= 400:
                    message, codes = build_error_message(failure, resp.status, text)
                    raise TrAuthenticationError(message, status_code=resp.status, error_codes=codes)
                return text
        except aiohttp.ClientError as exc:
            raise TrAuthenticationError(f"{failure}: {exc}") from exc

    async def initiate(self, phone_no: str, pin: str) -> LoginProcess:
        """Start the login; the server then sends a 4-digit code to the user."""
        validate_credentials(phone_no, pin)
        text = await self._post(
            "/api/v1/auth/web/login",
            {"phoneNumber": phone_no, "pin": pin},
            failure="Web login failed",
        )
        try:
            parsed = json.loads(text)
        except ValueError as exc:
            raise TrAuthenticationError(f"Login response is not JSON: {text[:200]}") from exc
        process_id = parsed.get("processId") if isinstance(parsed, dict) else None
        if not process_id:
            raise TrAuthenticationError(f"No processId in login response: {text[:200]}")
        countdown = parsed.get("countdownInSeconds")
        return LoginProcess(str(process_id), countdown if isinstance(countdown, int) else None)

    async def complete(self, process: LoginProcess, code: str) -> AuthContext:
        """Confirm the login with the code and collect session cookies."""
        code = code.strip()
        text = await self._post(
            f"/api/v1/auth/web/login/{process.process_id}/{code}",
            None,
            failure="Code verification failed",
        )
        if text.strip():
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict) and parsed.get("error"):
                raise TrAuthenticationError(f"Code verification error: {parsed['error']}")

        cookies = {
            morsel.key: morsel.value
            for morsel in self._http.cookie_jar
            if str(morsel["domain"]).lstrip(".").endswith(COOKIE_DOMAIN)
        }
        if not cookies:
            raise TrAuthenticationError("Login succeeded but no session cookies were set")
        _logger.info("Web login successful (%d cookie(s))", len(cookies))
        return AuthContext(cookies=cookies)

    async def login(self, phone_no: str, pin: str, code_provider: CodeProvider) -> AuthContext:
        """Run both steps, asking *code_provider* for the verification code."""
        process = await self.initiate(phone_no, pin)
        _logger.info("Login initiated, waiting for verification code")
        code = code_provider()
        if inspect.isawaitable(code):
            code = await code
        return await self.complete(process, str(code))
