"""User-facing messages for technical errors.

Converts gateway and transport failures into a short message plus what the
user should do next. The technical error is logged here and never returned.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from app.core.errors import APIError, GatewayUnavailableError, HttpError

logger = logging.getLogger(__name__)

ErrorContext = Literal["login", "signup", "oauth"]


@dataclass(frozen=True)
class ErrorInfo:
    """Message shown in a toast, with an optional follow-up toast."""

    user_message: str
    action_message: str | None = None


NETWORK = ErrorInfo(
    "Unable to connect to our servers",
    "Please check your internet connection and try again in a moment.",
)
INVALID_CREDENTIALS = ErrorInfo(
    "Invalid email or password",
    "Please check your credentials and try again. "
    'If you forgot your password, use the "Forgot Password" link.',
)
ACCOUNT_NOT_FOUND = ErrorInfo(
    "Account not found",
    "No account exists with this email. Please sign up to create a new account.",
)
EMAIL_NOT_VERIFIED = ErrorInfo(
    "Please verify your email first",
    "Check your inbox for a verification email and click the link to verify "
    "your account.",
)
RATE_LIMITED = ErrorInfo(
    "Too many login attempts",
    "Please wait a few minutes before trying again.",
)
ALREADY_REGISTERED = ErrorInfo(
    "An account with this email already exists",
    "Please log in instead, or use a different email address to create a new "
    "account.",
)
WEAK_PASSWORD = ErrorInfo(
    "Password is too weak",
    "Please use a password that is at least 6 characters long.",
)
INVALID_EMAIL = ErrorInfo(
    "Invalid email address",
    "Please enter a valid email address.",
)
OAUTH_CANCELLED = ErrorInfo(
    "Sign in was cancelled",
    "You can try again or use email and password to sign in.",
)
POPUP_BLOCKED = ErrorInfo(
    "Popup was blocked",
    "Please allow popups for this site and try again.",
)
TIMEOUT = ErrorInfo(
    "Request timed out",
    "The request took too long. Please try again.",
)
SERVER_ERROR = ErrorInfo(
    "Something went wrong on our end",
    "We're working to fix this. Please try again in a few minutes.",
)
BAD_REQUEST = ErrorInfo(
    "Invalid request",
    "Please check your information and try again.",
)
SESSION_EXPIRED = ErrorInfo(
    "Session expired",
    "Please log in again to continue.",
)
ACCESS_DENIED = ErrorInfo(
    "Access denied",
    "You don't have permission to perform this action.",
)
GENERIC = ErrorInfo(
    "Something went wrong",
    "Please try again. If the problem persists, contact support.",
)

Matcher = Callable[[str, int | None], bool]


def _mentions(*keywords: str) -> Matcher:
    def match(message: str, status: int | None) -> bool:
        return any(keyword in message for keyword in keywords)

    return match


def _mentions_or_status(keywords: tuple[str, ...], statuses: Callable[[int], bool]) -> Matcher:
    def match(message: str, status: int | None) -> bool:
        if any(keyword in message for keyword in keywords):
            return True
        return status is not None and statuses(status)

    return match


def _weak_password(message: str, status: int | None) -> bool:
    return "password" in message and any(
        word in message for word in ("weak", "short", "minimum")
    )


# (context or None for any context, matcher, message); first match wins
_RULES: list[tuple[ErrorContext | None, Matcher, ErrorInfo]] = [
    (None, _mentions("network", "fetch", "connection"), NETWORK),
    (
        "login",
        _mentions("invalid", "incorrect", "wrong password", "email or password"),
        INVALID_CREDENTIALS,
    ),
    ("login", _mentions("user not found", "does not exist"), ACCOUNT_NOT_FOUND),
    ("login", _mentions("email not verified", "email verification"), EMAIL_NOT_VERIFIED),
    ("login", _mentions("too many requests", "rate limit"), RATE_LIMITED),
    (
        "signup",
        _mentions("already exists", "already registered", "user already", "email already"),
        ALREADY_REGISTERED,
    ),
    ("signup", _weak_password, WEAK_PASSWORD),
    ("signup", _mentions("invalid email", "email format"), INVALID_EMAIL),
    ("oauth", _mentions("cancelled", "denied"), OAUTH_CANCELLED),
    ("oauth", _mentions("popup", "blocked"), POPUP_BLOCKED),
    (None, _mentions("timeout", "timed out"), TIMEOUT),
    (
        None,
        _mentions_or_status(("server error", "500", "502", "503"), lambda s: s >= 500),
        SERVER_ERROR,
    ),
    (None, _mentions_or_status(("bad request",), lambda s: s == 400), BAD_REQUEST),
    (None, _mentions_or_status(("unauthorized",), lambda s: s == 401), SESSION_EXPIRED),
    (None, _mentions_or_status(("forbidden",), lambda s: s == 403), ACCESS_DENIED),
]


def _technical_message(error: BaseException | str | None) -> str:
    if error is None:
        return "An unexpected error occurred"
    if isinstance(error, APIError):
        return error.message
    return str(error) or "An unexpected error occurred"


def describe_error(
    error: BaseException | str | None,
    context: ErrorContext = "login",
) -> ErrorInfo:
    """Map a technical error to a user-facing message.

    Args:
        error: Exception or raw message from a failed operation.
        context: Which flow failed; some messages only apply to one.

    Returns:
        ErrorInfo with a user-safe message and a suggested next step.
    """
    message = _technical_message(error)
    status = error.status if isinstance(error, HttpError) else None
    logger.error(
        "[%s] Technical error: %s (type=%s, status=%s)",
        context.upper(),
        message,
        type(error).__name__,
        status,
    )

    if isinstance(error, GatewayUnavailableError):
        return NETWORK

    lowered = message.lower()
    for rule_context, matches, info in _RULES:
        if rule_context is not None and rule_context != context:
            continue
        if matches(lowered, status):
            return info
    return GENERIC
