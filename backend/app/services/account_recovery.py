"""Email verification and password recovery flows.

These pages run without an established session: the user arrives from a
link in an email. Each flow talks to the gateway unauthenticated and, when
the gateway hands back a session, stores it so the user lands signed in.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime

from app.core.config import settings
from app.core.errors import APIError, ValidationFailure
from app.core.token_store import TokenStore
from app.schemas.gateway import SessionPayload
from app.services.gateway_api import GatewayApi

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

PASSWORD_MISMATCH = "Passwords do not match"
PASSWORD_TOO_SHORT = f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
INVALID_RESET_LINK = (
    "Password reset link is invalid or expired. Please request a new one."
)
VERIFICATION_FAILED = "Email verification failed. The link may have expired."


def read_reset_token(query: Mapping[str, str]) -> str | None:
    """Pick the reset credential out of the reset-password page's query.

    Recovery links carry ``access_token`` with ``type=recovery``; older
    links carry ``token``.

    Args:
        query: Query parameters of the reset-password page.

    Returns:
        The token, or None when the link carries none.
    """
    if query.get("type") == "recovery" and query.get("access_token"):
        return query["access_token"]
    return query.get("token") or query.get("access_token") or None


class AccountRecovery:
    """Resend verification, verify email, forgot and reset password."""

    def __init__(
        self,
        api: GatewayApi,
        token_store: TokenStore,
        *,
        origin: str = settings.frontend_url,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._api = api
        self._token_store = token_store
        self._origin = origin.rstrip("/")
        self._now = now

    def _store(self, session: SessionPayload | None) -> bool:
        if session is None:
            return False
        self._token_store.store(
            session.access_token,
            session.refresh_token,
            session.expiry(self._now()),
        )
        return True

    async def resend_verification(self, email: str) -> None:
        """Ask the gateway to send a new verification email.

        Raises:
            APIError: Gateway failure.
        """
        await self._api.resend_verification(
            email, redirect_to=f"{self._origin}/verify-email"
        )

    async def verify_email(
        self,
        token: str,
        token_hash: str | None = None,
        verification_type: str = "email",
    ) -> bool:
        """Confirm an email address from a verification link.

        Links issued at sign-up may be typed ``signup`` even when the page
        was opened with ``type=email``, so an ``email`` attempt that fails
        is retried once as ``signup``.

        Args:
            token: Token from the link.
            token_hash: Optional token hash from the link.
            verification_type: Link type ("email", "signup", ...).

        Returns:
            True if the gateway returned a session that is now stored.

        Raises:
            ValidationFailure: Verification failed (expired or invalid link).
        """
        try:
            result = await self._api.verify_email(token, token_hash, verification_type)
        except APIError as exc:
            if verification_type != "email":
                logger.warning("Email verification failed: %s", exc.message)
                raise ValidationFailure(VERIFICATION_FAILED) from exc
            logger.info("Verification as 'email' failed, retrying as 'signup'")
            try:
                result = await self._api.verify_email(token, token_hash, "signup")
            except APIError as retry_exc:
                logger.warning("Email verification failed: %s", retry_exc.message)
                raise ValidationFailure(VERIFICATION_FAILED) from retry_exc
        return self._store(result.session)

    async def forgot_password(self, email: str) -> None:
        """Request a password reset email.

        Raises:
            APIError: Gateway failure.
        """
        await self._api.forgot_password(
            email, redirect_to=f"{self._origin}/reset-password"
        )

    async def reset_password(
        self,
        new_password: str,
        confirm_password: str,
        reset_token: str | None,
    ) -> bool:
        """Set a new password from a reset link.

        Local checks run before any network call.

        Returns:
            True if the gateway returned a session that is now stored.

        Raises:
            ValidationFailure: Passwords differ, are too short, or the link
                carried no token.
            APIError: Gateway failure.
        """
        if new_password != confirm_password:
            raise ValidationFailure(PASSWORD_MISMATCH)
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailure(PASSWORD_TOO_SHORT)
        if not reset_token:
            raise ValidationFailure(INVALID_RESET_LINK)

        result = await self._api.reset_password(new_password, access_token=reset_token)
        return self._store(result.session)
