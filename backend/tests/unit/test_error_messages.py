"""Tests for technical error to user message mapping."""

import pytest

from app.core import error_messages as em
from app.core.errors import GatewayUnavailableError, HttpError


class TestDescribeError:
    """First matching rule wins; anything else is generic."""

    @pytest.mark.parametrize(
        ("error", "context", "expected"),
        [
            ("Invalid login credentials", "login", em.INVALID_CREDENTIALS),
            ("User not found", "login", em.ACCOUNT_NOT_FOUND),
            ("Email not verified", "login", em.EMAIL_NOT_VERIFIED),
            ("Too many requests", "login", em.RATE_LIMITED),
            ("User already registered", "signup", em.ALREADY_REGISTERED),
            ("Password should be at least 6 characters (too short)", "signup", em.WEAK_PASSWORD),
            ("Invalid email format", "signup", em.INVALID_EMAIL),
            ("access_denied", "oauth", em.OAUTH_CANCELLED),
            ("Popup closed by browser", "oauth", em.POPUP_BLOCKED),
            ("Request timed out", "login", em.TIMEOUT),
            ("Failed to fetch", "signup", em.NETWORK),
            ("Something odd", "login", em.GENERIC),
            (None, "login", em.GENERIC),
        ],
    )
    def test_message_rules(self, error, context, expected):
        assert em.describe_error(error, context) == expected

    def test_context_specific_rules_do_not_leak(self):
        """Login-only wording is not applied to sign-up failures."""
        assert em.describe_error("User not found", "signup") == em.GENERIC

    def test_weak_password_checked_before_invalid_email(self):
        message = "Invalid password: too weak"

        assert em.describe_error(message, "signup") == em.WEAK_PASSWORD

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (500, em.SERVER_ERROR),
            (503, em.SERVER_ERROR),
            (400, em.BAD_REQUEST),
            (401, em.SESSION_EXPIRED),
            (403, em.ACCESS_DENIED),
            (404, em.GENERIC),
        ],
    )
    def test_status_rules(self, status, expected):
        assert em.describe_error(HttpError(status, "opaque"), "oauth") == expected

    def test_unreachable_gateway_is_network(self):
        error = GatewayUnavailableError("All connection attempts failed")

        assert em.describe_error(error, "oauth") == em.NETWORK

    def test_technical_detail_is_logged_not_returned(self, caplog):
        info = em.describe_error(HttpError(500, "psycopg: relation users missing"), "login")

        assert "psycopg" not in info.user_message
        assert "psycopg" in caplog.text
