"""Auth session manager: sign-in, sign-up, sign-out, OAuth and refresh.

Owns the client's authentication state and exposes it as a read-only
snapshot (``state``) plus change notifications (``subscribe``). Nothing
else mutates it.

Session resolution on load:

    NO_TOKEN -> CHECKING_SESSION -> AUTHENTICATED
                                 -> REFRESHING_TOKEN -> AUTHENTICATED
                                                     -> UNAUTHENTICATED
    NO_TOKEN -> UNAUTHENTICATED (no token stored, no network call)

``loading`` stays True until a terminal state (AUTHENTICATED or
UNAUTHENTICATED) is reached.

Invariants:
- A stored access token that cannot be resolved to a user is cleared.
- A failed refresh clears the session; there is no retry loop.
- sign_in/sign_up never raise for gateway failures; they return
  AuthResult(error=...).
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from app.core.config import settings
from app.core.errors import APIError, HttpError, OAuthFailure
from app.core.token_store import TokenStore
from app.schemas.gateway import GatewayUser, ProfileUpdate, SessionPayload, UserProfile
from app.services.gateway_api import GatewayApi
from app.services.navigation import Navigator

logger = logging.getLogger(__name__)

T = TypeVar("T")

OAUTH_PROVIDERS = frozenset({"google", "apple"})

LOGIN_PATH = "/login"

# Query parameters carrying the post-OAuth credential handoff
_HANDOFF_PARAMS = ("token", "refresh_token", "user_id")


# =============================================================================
# State
# =============================================================================


class SessionPhase(Enum):
    """Session resolution states."""

    NO_TOKEN = "no_token"
    CHECKING_SESSION = "checking_session"
    REFRESHING_TOKEN = "refreshing_token"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class Session:
    """Tokens representing an authenticated client."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class AuthState:
    """Read-only snapshot of the client's authentication state."""

    user: GatewayUser | None = None
    profile: UserProfile | None = None
    session: Session | None = None
    loading: bool = True
    email_verified: bool | None = None
    phase: SessionPhase = SessionPhase.NO_TOKEN

    @property
    def is_authenticated(self) -> bool:
        return self.phase is SessionPhase.AUTHENTICATED and self.session is not None


@dataclass(frozen=True)
class AuthError:
    """User-presentable auth failure."""

    message: str


@dataclass(frozen=True)
class AuthResult:
    """Outcome of sign_in / sign_up."""

    error: AuthError | None = None
    email_verified: bool | None = None


# =============================================================================
# Credential handoff adapter
# =============================================================================


@dataclass(frozen=True)
class PendingCredential:
    """A one-time credential handed over by the OAuth callback redirect."""

    access_token: str
    refresh_token: str | None = None
    user_id: str | None = None


def read_pending_credential(url: str) -> tuple[PendingCredential | None, str]:
    """Extract the OAuth handoff credential from a page URL.

    The callback endpoint redirects with ``token``, ``refresh_token`` and
    ``user_id`` query parameters. This is the only place that knows about
    that transport.

    Args:
        url: Current page URL.

    Returns:
        Tuple of (credential or None, URL with handoff parameters removed).
    """
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    values = dict(query)
    token = values.get("token")
    if not token:
        return None, url

    remaining = [(k, v) for k, v in query if k not in _HANDOFF_PARAMS]
    cleaned = urlunsplit(parts._replace(query=urlencode(remaining)))
    credential = PendingCredential(
        access_token=token,
        refresh_token=values.get("refresh_token") or None,
        user_id=values.get("user_id") or None,
    )
    return credential, cleaned


# =============================================================================
# Manager
# =============================================================================


class AuthSessionManager:
    """Single owner of the client's session state.

    Usage:
        manager = AuthSessionManager(api, token_store, navigator)
        await manager.initialize()
        result = await manager.sign_in("a@b.com", "secret1")
        if result.error:
            show_toast(result.error.message)
    """

    def __init__(
        self,
        api: GatewayApi,
        token_store: TokenStore,
        navigator: Navigator,
        *,
        origin: str = settings.frontend_url,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Initialize the manager.

        Args:
            api: Typed gateway endpoints.
            token_store: Token persistence.
            navigator: Browser navigation.
            origin: Browser-facing origin for redirect_to targets.
            now: Clock, injectable for tests.
        """
        self._api = api
        self._token_store = token_store
        self._navigator = navigator
        self._origin = origin.rstrip("/")
        self._now = now
        self._state = AuthState()
        self._listeners: list[Callable[[AuthState], None]] = []

    # -------------------------------------------------------------------------
    # Observable state
    # -------------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    def subscribe(self, listener: Callable[[AuthState], None]) -> Callable[[], None]:
        """Register a listener called with every new state.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, **changes: object) -> None:
        self._state = replace(self._state, **changes)  # type: ignore[arg-type]
        for listener in list(self._listeners):
            listener(self._state)

    # -------------------------------------------------------------------------
    # Session bookkeeping
    # -------------------------------------------------------------------------

    def _store_session(self, payload: SessionPayload, user: GatewayUser | None) -> None:
        expires_at = payload.expiry(self._now())
        self._token_store.store(payload.access_token, payload.refresh_token, expires_at)
        session = Session(
            access_token=payload.access_token,
            refresh_token=payload.refresh_token or self._token_store.get_refresh(),
            expires_at=expires_at,
        )
        if user is None:
            self._set(session=session)
        else:
            self._set(session=session, user=user, email_verified=user.email_verified)

    def _current_session(self) -> Session | None:
        token = self._token_store.get_access()
        if not token:
            return None
        return Session(
            access_token=token,
            refresh_token=self._token_store.get_refresh(),
            expires_at=self._token_store.get_expires_at(),
        )

    def _clear_session(self) -> None:
        self._token_store.clear()
        self._set(
            session=None,
            user=None,
            profile=None,
            email_verified=None,
            phase=SessionPhase.UNAUTHENTICATED,
        )

    def _finish(self, phase: SessionPhase) -> AuthState:
        self._set(phase=phase, loading=False)
        return self._state

    # -------------------------------------------------------------------------
    # Initial load
    # -------------------------------------------------------------------------

    async def initialize(self) -> AuthState:
        """Resolve the session when a page loads.

        Consumes an OAuth handoff credential from the URL if present
        (storing it and stripping it from the address bar via history
        replace), otherwise uses the token store. With no token at all the
        state becomes UNAUTHENTICATED without any network call.

        Returns:
            The terminal state.
        """
        pending, cleaned_url = read_pending_credential(self._navigator.current_url)
        if pending is not None:
            handoff = SessionPayload(
                access_token=pending.access_token,
                refresh_token=pending.refresh_token,
            )
            self._token_store.store(
                handoff.access_token,
                handoff.refresh_token,
                handoff.expiry(self._now()),
            )
            self._navigator.replace(cleaned_url)

        if not self._token_store.get_access():
            return self._finish(SessionPhase.UNAUTHENTICATED)

        if self._token_store.is_expired() and self._token_store.get_refresh():
            if not await self.refresh_access_token():
                return self._finish(SessionPhase.UNAUTHENTICATED)

        return await self._resolve_session()

    async def _resolve_session(self) -> AuthState:
        self._set(phase=SessionPhase.CHECKING_SESSION, loading=True)
        try:
            lookup = await self.call_with_refresh(self._api.get_session)
        except APIError as exc:
            logger.warning("Session check failed, clearing tokens: %s", exc.message)
            self._clear_session()
            return self._finish(SessionPhase.UNAUTHENTICATED)

        self._set(
            user=lookup.user,
            session=self._current_session(),
            email_verified=lookup.user.email_verified,
        )
        await self.refresh_profile()
        await self.check_email_verification()
        if self._state.session is None:
            return self._finish(SessionPhase.UNAUTHENTICATED)
        return self._finish(SessionPhase.AUTHENTICATED)

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def refresh_access_token(self) -> bool:
        """Exchange the refresh token for a new session.

        On failure the session is cleared (no retry). If the user was
        signed in at the time, they are sent to the login page.

        Note: two clients sharing one refresh token can race here; many
        providers invalidate a refresh token after first use. No
        cross-client lock exists.

        Returns:
            True if a new session was stored.
        """
        previous_phase = self._state.phase
        refresh_token = self._token_store.get_refresh()
        if not refresh_token:
            self._handle_session_loss(previous_phase)
            return False

        self._set(phase=SessionPhase.REFRESHING_TOKEN)
        try:
            result = await self._api.refresh_token(refresh_token)
        except APIError as exc:
            logger.warning("Token refresh failed: %s", exc.message)
            self._handle_session_loss(previous_phase)
            return False

        self._store_session(result.session, result.user)
        self._set(phase=previous_phase)
        return True

    def _handle_session_loss(self, previous_phase: SessionPhase) -> None:
        self._clear_session()
        if previous_phase is SessionPhase.AUTHENTICATED:
            self._set(loading=False)
            self._navigator.assign(LOGIN_PATH)

    async def call_with_refresh(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a gateway call, refreshing and retrying once on 401.

        call -> on 401 refresh -> retry once -> else fail. A 401 on the
        retry propagates.

        Args:
            operation: Zero-argument coroutine function performing the call.

        Returns:
            The operation's result.

        Raises:
            HttpError: The original 401 if refresh failed, or any error
                from the retry.
        """
        try:
            return await operation()
        except HttpError as exc:
            if exc.status != 401:
                raise
            if not await self.refresh_access_token():
                raise
        return await operation()

    # -------------------------------------------------------------------------
    # Sign in / up / out
    # -------------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Sign in with email and password.

        The token store is only written after the gateway accepts the
        credentials. Verification status is re-checked through its own
        endpoint because the flag embedded in the sign-in response can be
        stale.

        Returns:
            AuthResult with error None and the verification status, or an
            error message. Never raises for gateway failures.
        """
        try:
            result = await self._api.sign_in(email, password)
        except APIError as exc:
            return AuthResult(error=AuthError(message=exc.message or "Failed to sign in"))

        self._store_session(result.session, result.user)
        self._finish(SessionPhase.AUTHENTICATED)
        await self.refresh_profile()
        verified = await self.check_email_verification()
        return AuthResult(error=None, email_verified=verified)

    async def sign_up(self, email: str, password: str) -> AuthResult:
        """Create an account.

        Some gateway flows require email verification before issuing a
        session; then only the user is kept and no token is stored.
        """
        try:
            result = await self._api.sign_up(
                email, password, redirect_to=f"{self._origin}/verify-email"
            )
        except APIError as exc:
            return AuthResult(
                error=AuthError(message=exc.message or "Failed to create account")
            )

        if result.session is not None:
            self._store_session(result.session, result.user)
            self._finish(SessionPhase.AUTHENTICATED)
        else:
            self._set(
                user=result.user,
                email_verified=result.user.email_verified if result.user else False,
                loading=False,
            )
        return AuthResult(error=None, email_verified=self._state.email_verified)

    async def sign_out(self) -> None:
        """Sign out.

        The server-side invalidation is best effort: failures are logged and
        local state is cleared regardless.
        """
        if self._token_store.get_access():
            try:
                await self._api.sign_out()
            except APIError as exc:
                logger.warning("Error signing out: %s", exc.message)
        self._clear_session()
        self._finish(SessionPhase.UNAUTHENTICATED)

    async def sign_in_with_oauth(self, provider: str) -> None:
        """Start an OAuth sign-in with a full-page redirect to the provider.

        Raises:
            OAuthFailure: Unsupported provider, or the gateway could not
                produce an authorization URL.
        """
        if provider not in OAUTH_PROVIDERS:
            raise OAuthFailure(f"Unsupported OAuth provider: {provider}")
        try:
            result = await self._api.oauth_url(
                provider, redirect_to=f"{self._origin}/auth/callback"
            )
        except APIError as exc:
            logger.error("OAuth initiation failed for %s: %s", provider, exc.message)
            raise OAuthFailure("Failed to initiate OAuth") from exc
        self._navigator.assign(result.url)

    # -------------------------------------------------------------------------
    # Profile and verification
    # -------------------------------------------------------------------------

    async def refresh_profile(self) -> None:
        """Fetch the profile for the current user.

        No user means no profile. Gateway failures are logged and leave the
        profile empty.
        """
        if self._state.user is None:
            self._set(profile=None)
            return
        try:
            profile = await self.call_with_refresh(self._api.get_profile)
        except APIError as exc:
            logger.error("Error fetching profile: %s", exc.message)
            profile = None
        self._set(profile=profile)

    async def update_profile(self, update: ProfileUpdate) -> UserProfile:
        """Update the current user's profile.

        Raises:
            APIError: Gateway failure (after one refresh attempt on 401).
        """
        profile = await self.call_with_refresh(lambda: self._api.update_profile(update))
        self._set(profile=profile)
        return profile

    async def check_email_verification(self) -> bool:
        """Re-check verification through the dedicated endpoint.

        Returns:
            True if verified. No token or a gateway failure gives False.
        """
        if not self._token_store.get_access():
            self._set(email_verified=False)
            return False
        try:
            status = await self._api.check_verification()
        except APIError as exc:
            logger.error("Error checking email verification: %s", exc.message)
            self._set(email_verified=False)
            return False
        self._set(email_verified=status.email_verified)
        return status.email_verified
