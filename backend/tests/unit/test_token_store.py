"""Tests for the dual-write token store.

Covers round trips through both backends, cookie loss fallback, the
expiry rule, and the cookie security policy.
"""

import json
import stat
import string
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import httpx
from hypothesis import given
from hypothesis import strategies as st
from starlette.responses import Response

from app.core.config import settings
from app.core.token_store import (
    CookieJarBackend,
    FileBackend,
    MemoryBackend,
    TokenStore,
    cookie_policy,
    create_token_store,
    set_session_cookies,
)
from app.schemas.gateway import SessionPayload
from tests.conftest import FIXED_NOW

# =============================================================================
# Strategies
# =============================================================================

tokens = st.text(
    alphabet=string.ascii_letters + string.digits + "-._~",
    min_size=1,
    max_size=200,
)

expiries = st.datetimes(
    min_value=datetime(2000, 1, 1),
    max_value=datetime(2100, 1, 1),
    timezones=st.just(UTC),
).map(lambda value: value.replace(microsecond=0))


def _cookie_store(cookies: httpx.Cookies) -> tuple[TokenStore, MemoryBackend]:
    fallback = MemoryBackend()
    store = TokenStore(
        CookieJarBackend(cookies, origin="http://localhost:3000"),
        fallback,
        now=lambda: FIXED_NOW,
    )
    return store, fallback


# =============================================================================
# Round trip
# =============================================================================


class TestRoundTrip:
    """Values stored are the values read back."""

    @given(access=tokens, refresh=tokens, expires_at=expiries)
    def test_getters_return_stored_values(self, access, refresh, expires_at):
        """Every getter returns exactly what store() wrote."""
        store, _ = _cookie_store(httpx.Cookies())

        store.store(access, refresh, expires_at)

        assert store.get_access() == access
        assert store.get_refresh() == refresh
        assert store.get_expires_at() == expires_at

    @given(access=tokens, refresh=tokens, expires_at=expiries)
    def test_fallback_serves_values_after_cookie_loss(self, access, refresh, expires_at):
        """Clearing the cookie jar leaves the fallback store answering."""
        cookies = httpx.Cookies()
        store, _ = _cookie_store(cookies)
        store.store(access, refresh, expires_at)

        cookies.clear()

        assert store.get_access() == access
        assert store.get_refresh() == refresh
        assert store.get_expires_at() == expires_at

    @given(access=tokens, refresh=tokens, expires_at=expiries)
    def test_clear_empties_every_field(self, access, refresh, expires_at):
        """clear() removes tokens from both backends."""
        store, fallback = _cookie_store(httpx.Cookies())
        store.store(access, refresh, expires_at)

        store.clear()

        assert store.get_access() is None
        assert store.get_refresh() is None
        assert store.get_expires_at() is None
        assert fallback.get(settings.auth_cookie_name) is None

    def test_store_without_refresh_keeps_existing_refresh(self, token_store):
        """A refresh token omitted by the gateway is not erased."""
        token_store.store("access-1", "refresh-1")
        token_store.store("access-2")

        assert token_store.get_access() == "access-2"
        assert token_store.get_refresh() == "refresh-1"

    def test_writes_both_backends(self):
        """store() writes the cookie and the fallback together."""
        primary, fallback = MemoryBackend(), MemoryBackend()
        store = TokenStore(primary, fallback)

        store.store("access-1", "refresh-1")

        for backend in (primary, fallback):
            assert backend.get(settings.auth_cookie_name) == "access-1"
            assert backend.get(settings.refresh_cookie_name) == "refresh-1"

    def test_reads_prefer_cookie(self):
        """When both backends disagree, the cookie wins."""
        primary, fallback = MemoryBackend(), MemoryBackend()
        primary.set(settings.auth_cookie_name, "from-cookie")
        fallback.set(settings.auth_cookie_name, "from-fallback")

        assert TokenStore(primary, fallback).get_access() == "from-cookie"

    def test_unparseable_cookie_expiry_falls_back(self):
        """A corrupt expiry cookie is ignored in favor of the fallback."""
        primary, fallback = MemoryBackend(), MemoryBackend()
        primary.set(settings.expiry_cookie_name, "not-a-number")
        fallback.set(settings.expiry_cookie_name, str(int(FIXED_NOW.timestamp())))

        assert TokenStore(primary, fallback).get_expires_at() == FIXED_NOW


# =============================================================================
# Expiry
# =============================================================================


class TestIsExpired:
    """Expiry is judged against now + threshold."""

    def test_missing_expiry_is_not_expired(self, token_store):
        """No expiry metadata means assume valid."""
        token_store.store("access-1")

        assert token_store.is_expired() is False

    @given(offset=st.integers(min_value=-86_400, max_value=86_400))
    def test_expired_iff_before_now_plus_five_minutes(self, offset):
        """is_expired() is exactly expires_at < now + 5 minutes."""
        store = TokenStore(MemoryBackend(), MemoryBackend(), now=lambda: FIXED_NOW)
        expires_at = FIXED_NOW + timedelta(seconds=offset)
        store.store("access-1", expires_at=expires_at)

        assert store.is_expired() == (expires_at < FIXED_NOW + timedelta(minutes=5))

    def test_custom_threshold(self, token_store):
        """A zero threshold only reports tokens already past expiry."""
        token_store.store("access-1", expires_at=FIXED_NOW + timedelta(minutes=1))

        assert token_store.is_expired() is True
        assert token_store.is_expired(threshold=timedelta(0)) is False


# =============================================================================
# Cookie policy
# =============================================================================


class TestCookiePolicy:
    """Cookie flags follow the serving scheme."""

    def test_https_origin_is_strict_and_secure(self):
        assert cookie_policy("https://app.example.com") == (True, "Strict")

    def test_http_origin_is_lax(self):
        assert cookie_policy("http://localhost:3000") == (False, "Lax")

    def test_production_is_always_secure(self):
        """Production forces Secure even if the origin is misconfigured."""
        with patch.object(settings, "environment", "production"):
            assert cookie_policy("http://internal") == (True, "Strict")

    def test_cookie_carries_flags_and_fixed_lifetime(self):
        """Cookies get the policy flags and a 5 day lifetime."""
        cookies = httpx.Cookies()
        backend = CookieJarBackend(cookies, origin="https://app.example.com")

        with patch("app.core.token_store.time.time", return_value=1_000_000):
            backend.set("auth_token", "abc")

        cookie = next(iter(cookies.jar))
        assert cookie.secure is True
        assert cookie.get_nonstandard_attr("SameSite") == "Strict"
        assert cookie.expires == 1_000_000 + 5 * 24 * 60 * 60
        assert cookie.path == "/"


# =============================================================================
# File fallback
# =============================================================================


class TestFileBackend:
    """JSON file fallback store."""

    def test_round_trip_and_permissions(self, tmp_path):
        """Values persist to a file readable only by the owner."""
        path = tmp_path / "tokens.json"
        backend = FileBackend(path)

        backend.set("auth_token", "abc")

        assert FileBackend(path).get("auth_token") == "abc"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_missing_file_reads_as_empty(self, tmp_path):
        assert FileBackend(tmp_path / "absent.json").get("auth_token") is None

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "tokens.json"
        path.write_text("{not json", encoding="utf-8")

        assert FileBackend(path).get("auth_token") is None

    def test_delete_removes_key(self, tmp_path):
        path = tmp_path / "tokens.json"
        backend = FileBackend(path)
        backend.set("auth_token", "abc")
        backend.set("refresh_token", "def")

        backend.delete("auth_token")

        assert json.loads(path.read_text(encoding="utf-8")) == {"refresh_token": "def"}


class TestCreateTokenStore:
    """Factory wiring from settings."""

    def test_uses_file_fallback_when_configured(self, tmp_path):
        path = tmp_path / "tokens.json"
        cookies = httpx.Cookies()

        with patch.object(settings, "token_fallback_path", path):
            store = create_token_store(cookies)
        store.store("access-1")
        cookies.clear()

        assert store.get_access() == "access-1"
        assert path.exists()


class TestSetSessionCookies:
    """Server-side cookies match what the client store writes."""

    def test_writes_all_three_cookies(self):
        response = Response()
        session = SessionPayload(
            access_token="access-1", refresh_token="refresh-1", expires_at=1_800_000_000
        )

        set_session_cookies(response, session)

        cookies = response.headers.getlist("set-cookie")
        assert len(cookies) == 3
        assert cookies[0].startswith(f"{settings.auth_cookie_name}=access-1;")
        assert cookies[1].startswith(f"{settings.refresh_cookie_name}=refresh-1;")
        assert cookies[2].startswith(f"{settings.expiry_cookie_name}=1800000000;")
        assert all(f"Max-Age={settings.auth_cookie_max_age}" in c for c in cookies)
        assert all("SameSite=lax" in c for c in cookies)

    def test_https_origin_sets_strict_secure_cookies(self):
        response = Response()

        with patch.object(settings, "frontend_url", "https://app.example.com"):
            set_session_cookies(response, SessionPayload(access_token="access-1"))

        (cookie,) = response.headers.getlist("set-cookie")
        assert "Secure" in cookie
        assert "SameSite=strict" in cookie
