"""Authentication token storage with dual-write persistence.

Access token, refresh token and expiry are written to two backends on
every store() call:

1. A cookie jar. Cookies travel with requests, so the route guard can see
   that a session exists before any page renders. Lifetime is fixed at
   5 days, independent of the token's own expiry.
2. A durable fallback store readable only by client code (a JSON file or
   memory). Reads fall back to it when the cookie is gone, e.g. cleared by
   privacy settings.

Expiry is kept as epoch seconds in both backends and surfaced as an aware
UTC datetime.
"""

import json
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from http.cookiejar import Cookie
from pathlib import Path
from typing import Protocol
from urllib.parse import urlsplit

import httpx
from starlette.responses import Response

from app.core.config import settings
from app.schemas.gateway import SessionPayload

logger = logging.getLogger(__name__)

_DEFAULT_EXPIRY_THRESHOLD = timedelta(seconds=settings.token_refresh_threshold_seconds)


class TokenBackend(Protocol):
    """Key/value storage used by TokenStore."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


def cookie_policy(origin: str) -> tuple[bool, str]:
    """Decide cookie security flags for an origin.

    Security: SameSite=Strict + Secure over HTTPS (or in production),
    SameSite=Lax otherwise so local http:// development still works.

    Args:
        origin: Browser-facing origin, e.g. "https://app.example.com".

    Returns:
        Tuple of (secure, samesite).
    """
    secure = urlsplit(origin).scheme == "https" or settings.is_production
    return (True, "Strict") if secure else (False, "Lax")


class CookieJarBackend:
    """Token cookies kept in an httpx cookie jar.

    The jar is the one the HTTP client sends with page requests, so the
    route guard sees exactly what this backend writes.
    """

    def __init__(
        self,
        cookies: httpx.Cookies,
        *,
        origin: str = settings.frontend_url,
        max_age: int = settings.auth_cookie_max_age,
    ) -> None:
        self._cookies = cookies
        self._max_age = max_age
        self.secure, self.samesite = cookie_policy(origin)

    def get(self, key: str) -> str | None:
        for cookie in self._cookies.jar:
            if cookie.name == key and not cookie.is_expired() and cookie.value:
                return cookie.value
        return None

    def set(self, key: str, value: str) -> None:
        cookie = Cookie(
            version=0,
            name=key,
            value=value,
            port=None,
            port_specified=False,
            domain="",
            domain_specified=False,
            domain_initial_dot=False,
            path="/",
            path_specified=True,
            secure=self.secure,
            expires=int(time.time()) + self._max_age,
            discard=False,
            comment=None,
            comment_url=None,
            rest={"SameSite": self.samesite},
            rfc2109=False,
        )
        self._cookies.jar.set_cookie(cookie)

    def delete(self, key: str) -> None:
        self._cookies.delete(key)


class MemoryBackend:
    """Process-local fallback store (for tests and short-lived clients)."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileBackend:
    """Durable fallback store backed by a small JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def _load(self) -> dict[str, str]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError):
            logger.warning("Token fallback file unreadable, ignoring: %s", self._path)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _save(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data), encoding="utf-8")
        self._path.chmod(0o600)

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


def _parse_epoch(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromtimestamp(int(raw), UTC)
    except (ValueError, OverflowError, OSError):
        return None


class TokenStore:
    """Persist and read the session's tokens across two backends.

    Invariant: both backends are written together on store() and cleared
    together on clear(); reads prefer the cookie backend.
    """

    def __init__(
        self,
        primary: TokenBackend,
        fallback: TokenBackend,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Initialize the token store.

        Args:
            primary: Cookie backend (visible to the route guard).
            fallback: Durable client-only backend.
            now: Clock, injectable for tests.
        """
        self._primary = primary
        self._fallback = fallback
        self._now = now

    def store(
        self,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
    ) -> None:
        """Write tokens to both backends.

        Refresh token and expiry are only written when provided; existing
        values are kept otherwise.
        """
        values = {settings.auth_cookie_name: access_token}
        if refresh_token:
            values[settings.refresh_cookie_name] = refresh_token
        if expires_at is not None:
            values[settings.expiry_cookie_name] = str(int(expires_at.timestamp()))

        for backend in (self._primary, self._fallback):
            for key, value in values.items():
                backend.set(key, value)

    def _read(self, key: str) -> str | None:
        return self._primary.get(key) or self._fallback.get(key)

    def get_access(self) -> str | None:
        """Get the access token (cookie first, then fallback)."""
        return self._read(settings.auth_cookie_name)

    def get_refresh(self) -> str | None:
        """Get the refresh token (cookie first, then fallback)."""
        return self._read(settings.refresh_cookie_name)

    def get_expires_at(self) -> datetime | None:
        """Get the token expiry.

        An unparseable cookie value falls through to the fallback store.
        """
        key = settings.expiry_cookie_name
        return _parse_epoch(self._primary.get(key)) or _parse_epoch(
            self._fallback.get(key)
        )

    def is_expired(self, threshold: timedelta = _DEFAULT_EXPIRY_THRESHOLD) -> bool:
        """Check whether the access token expires within ``threshold``.

        Missing expiry metadata is treated as valid to avoid spurious
        logouts.

        Args:
            threshold: How far ahead to look (default 5 minutes).

        Returns:
            True iff expires_at < now + threshold.
        """
        expires_at = self.get_expires_at()
        if expires_at is None:
            return False
        return expires_at < self._now() + threshold

    def clear(self) -> None:
        """Remove all tokens from both backends."""
        for backend in (self._primary, self._fallback):
            for key in (
                settings.auth_cookie_name,
                settings.refresh_cookie_name,
                settings.expiry_cookie_name,
            ):
                backend.delete(key)


def create_token_store(cookies: httpx.Cookies) -> TokenStore:
    """Build a TokenStore from settings.

    Args:
        cookies: Cookie jar shared with the HTTP client that loads pages.

    Returns:
        TokenStore writing to the jar and to the configured fallback.
    """
    fallback: TokenBackend
    if settings.token_fallback_path is not None:
        fallback = FileBackend(settings.token_fallback_path)
    else:
        fallback = MemoryBackend()
    return TokenStore(CookieJarBackend(cookies), fallback)


def set_session_cookies(response: Response, session: SessionPayload) -> None:
    """Write a session's token cookies onto a server response.

    Same names, lifetime and flags as CookieJarBackend, so the route guard
    sees the session on the very next request and the client store can
    read it back.

    Args:
        response: Response about to be sent to the browser.
        session: Session returned by the gateway.
    """
    secure, samesite = cookie_policy(settings.frontend_url)
    values = {settings.auth_cookie_name: session.access_token}
    if session.refresh_token:
        values[settings.refresh_cookie_name] = session.refresh_token
    expires_at = session.expiry()
    if expires_at is not None:
        values[settings.expiry_cookie_name] = str(int(expires_at.timestamp()))

    for key, value in values.items():
        response.set_cookie(
            key=key,
            value=value,
            max_age=settings.auth_cookie_max_age,
            path="/",
            secure=secure,
            samesite=samesite.lower(),
        )
