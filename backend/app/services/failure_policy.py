"""Failure policy for gateway-backed pages.

Validation-type failures are shown inline. Infrastructure failures
(HTTP 500+, no status code, unexpected exceptions) are logged with full
technical detail and the user is sent to the generic /error page.

The /error redirect is guarded by a one-shot flag that clears itself
after a few seconds, so an error page that fails again cannot bounce the
user in a loop.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum

import structlog

from app.core.config import settings
from app.core.errors import APIError, HttpError, is_infrastructure_failure
from app.services.navigation import Navigator

logger = structlog.get_logger()

ERROR_PAGE_PATH = "/error"


class FailureKind(Enum):
    """How a failure is surfaced to the user."""

    VALIDATION = "validation"
    INFRASTRUCTURE = "infrastructure"


def classify_failure(exc: BaseException) -> FailureKind:
    """Classify an exception raised by a gateway-backed operation."""
    if is_infrastructure_failure(exc):
        return FailureKind.INFRASTRUCTURE
    return FailureKind.VALIDATION


class ErrorRedirectGuard:
    """One-shot flag preventing repeated redirects to the error page.

    The first acquire() within a window succeeds and arms the flag; later
    calls fail until ``window`` has elapsed, after which the flag is clear
    again.
    """

    def __init__(
        self,
        window: timedelta = timedelta(seconds=settings.error_redirect_guard_seconds),
        *,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._window = window
        self._now = now
        self._armed_at: datetime | None = None

    @property
    def is_armed(self) -> bool:
        """Whether a redirect happened within the current window."""
        if self._armed_at is None:
            return False
        if self._now() - self._armed_at >= self._window:
            self._armed_at = None
            return False
        return True

    def acquire(self) -> bool:
        """Try to take the one-shot redirect.

        Returns:
            True if the caller may redirect now, False if one is in flight.
        """
        if self.is_armed:
            return False
        self._armed_at = self._now()
        return True


def report_infrastructure_failure(
    exc: BaseException,
    *,
    operation: str,
    navigator: Navigator,
    guard: ErrorRedirectGuard,
    **context: object,
) -> bool:
    """Log an infrastructure failure and send the user to the error page.

    Args:
        exc: The failure.
        operation: Name of the operation that failed (log context).
        navigator: Browser navigation.
        guard: Redirect-loop guard.
        **context: Extra structured log context.

    Returns:
        True if a redirect was issued, False if the guard suppressed it.
    """
    status = exc.status if isinstance(exc, HttpError) else None
    logger.error(
        "Infrastructure failure",
        operation=operation,
        error_type=type(exc).__name__,
        error_code=exc.code if isinstance(exc, APIError) else None,
        status=status,
        detail=str(exc),
        exc_info=exc,
        **context,
    )
    if not guard.acquire():
        logger.warning(
            "Error page redirect suppressed (already redirected recently)",
            operation=operation,
        )
        return False
    navigator.assign(ERROR_PAGE_PATH)
    return True
