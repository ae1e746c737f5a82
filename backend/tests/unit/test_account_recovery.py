"""Tests for email verification, password recovery and the contact form."""

import pytest

from app.core.errors import HttpError, ValidationFailure
from app.services.account_recovery import (
    INVALID_RESET_LINK,
    PASSWORD_MISMATCH,
    PASSWORD_TOO_SHORT,
    VERIFICATION_FAILED,
    AccountRecovery,
    read_reset_token,
)
from app.services.contact import submit_contact_form
from tests.conftest import FIXED_NOW, FRONTEND_ORIGIN, gateway_session

_VERIFY = "/api/v1/auth/verify-email"
_RESET = "/api/v1/auth/reset-password"
_CONTACT = "/api/v1/contact"


@pytest.fixture
def recovery(gateway_api, token_store) -> AccountRecovery:
    return AccountRecovery(
        gateway_api, token_store, origin=FRONTEND_ORIGIN, now=lambda: FIXED_NOW
    )


class TestEmailLinks:
    """Links sent by email point back at this origin."""

    async def test_resend_verification(self, recovery, fake_gateway):
        fake_gateway.add("POST", "/api/v1/auth/resend-verification", json={"success": True})

        await recovery.resend_verification("a@b.com")

        sent = fake_gateway.requests[0]
        assert fake_gateway.body(sent) == {
            "email": "a@b.com",
            "redirect_to": f"{FRONTEND_ORIGIN}/verify-email",
        }
        assert "Authorization" not in sent.headers

    async def test_forgot_password(self, recovery, fake_gateway):
        fake_gateway.add("POST", "/api/v1/auth/forgot-password", json={"success": True})

        await recovery.forgot_password("a@b.com")

        body = fake_gateway.body(fake_gateway.requests[0])
        assert body["redirect_to"] == f"{FRONTEND_ORIGIN}/reset-password"

    async def test_forgot_password_failure_propagates(self, recovery, fake_gateway):
        fake_gateway.add("POST", "/api/v1/auth/forgot-password", status=500, json={})

        with pytest.raises(HttpError):
            await recovery.forgot_password("a@b.com")


class TestVerifyEmail:
    """Verification with the email to signup type fallback."""

    async def test_session_is_stored(self, recovery, token_store, fake_gateway):
        fake_gateway.add("POST", _VERIFY, json={"session": gateway_session()})

        assert await recovery.verify_email("tok") is True
        assert token_store.get_access() == "access-1"

    async def test_without_session_stores_nothing(self, recovery, token_store, fake_gateway):
        fake_gateway.add("POST", _VERIFY, json={"user": {"id": "user-1"}})

        assert await recovery.verify_email("tok") is False
        assert token_store.get_access() is None

    async def test_email_type_retried_as_signup(self, recovery, fake_gateway):
        fake_gateway.add("POST", _VERIFY, status=400, json={"detail": "Token type mismatch"})
        fake_gateway.add("POST", _VERIFY, json={"session": gateway_session()})

        assert await recovery.verify_email("tok", token_hash="hash") is True

        types = [fake_gateway.body(r)["type"] for r in fake_gateway.calls("POST", _VERIFY)]
        assert types == ["email", "signup"]
        assert fake_gateway.body(fake_gateway.requests[1])["token_hash"] == "hash"

    async def test_other_types_are_not_retried(self, recovery, fake_gateway):
        fake_gateway.add("POST", _VERIFY, status=400, json={"detail": "expired"})

        with pytest.raises(ValidationFailure, match=VERIFICATION_FAILED):
            await recovery.verify_email("tok", verification_type="recovery")

        assert len(fake_gateway.requests) == 1

    async def test_both_attempts_failing(self, recovery, fake_gateway):
        fake_gateway.add("POST", _VERIFY, status=400, json={"detail": "expired"})

        with pytest.raises(ValidationFailure):
            await recovery.verify_email("tok")

        assert len(fake_gateway.requests) == 2


class TestResetPassword:
    """Local checks first, then the gateway."""

    @pytest.mark.parametrize(
        ("new", "confirm", "token", "message"),
        [
            ("secret1", "secret2", "tok", PASSWORD_MISMATCH),
            ("short", "short", "tok", PASSWORD_TOO_SHORT),
            ("secret1", "secret1", None, INVALID_RESET_LINK),
        ],
    )
    async def test_local_checks_make_no_request(
        self, recovery, fake_gateway, new, confirm, token, message
    ):
        with pytest.raises(ValidationFailure) as exc_info:
            await recovery.reset_password(new, confirm, token)

        assert exc_info.value.message == message
        assert fake_gateway.requests == []

    async def test_reset_stores_returned_session(self, recovery, token_store, fake_gateway):
        fake_gateway.add(
            "POST", _RESET, json={"session": gateway_session(), "message": "Password updated"}
        )

        assert await recovery.reset_password("secret1", "secret1", "reset-tok") is True
        assert fake_gateway.body(fake_gateway.requests[0]) == {
            "new_password": "secret1",
            "access_token": "reset-tok",
        }
        assert token_store.get_access() == "access-1"

    @pytest.mark.parametrize(
        ("query", "expected"),
        [
            ({"type": "recovery", "access_token": "a1"}, "a1"),
            ({"token": "t1"}, "t1"),
            ({"access_token": "a2"}, "a2"),
            ({}, None),
        ],
    )
    def test_read_reset_token(self, query, expected):
        assert read_reset_token(query) == expected


class TestContactForm:
    """Contact form validation and submission."""

    async def test_valid_form_is_sent(self, gateway_api, fake_gateway):
        fake_gateway.add("POST", _CONTACT, json={"success": True})

        contact = await submit_contact_form(
            gateway_api,
            name="Ada",
            email="ada@example.com",
            subject="Question",
            message="How do roadmaps work?",
        )

        assert contact.subject == "Question"
        assert fake_gateway.body(fake_gateway.requests[0])["message"] == (
            "How do roadmaps work?"
        )

    async def test_invalid_form_sends_nothing(self, gateway_api, fake_gateway):
        with pytest.raises(ValidationFailure) as exc_info:
            await submit_contact_form(
                gateway_api, name=" ", email="nope", subject="Hi", message="Hello"
            )

        fields = {d["field"] for d in exc_info.value.details}
        assert fields == {"name", "email"}
        assert fake_gateway.requests == []
