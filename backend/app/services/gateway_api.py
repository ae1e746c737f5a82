"""Typed wrappers for every gateway endpoint the client uses.

Each method calls GatewayClient.request() and validates the body into a
schema from app.schemas.gateway. A 2xx body that fails validation raises
GatewayContractError, so callers never handle raw dicts.
"""

from typing import Any, TypeVar
from urllib.parse import quote

import pydantic

from app.core.errors import GatewayContractError
from app.core.gateway_client import GatewayClient
from app.schemas.gateway import (
    CompleteDiagnosticResponse,
    ContactRequest,
    GenerateRoadmapResponse,
    OAuthCallbackResponse,
    OAuthUrlResponse,
    ProfileUpdate,
    RefreshResponse,
    ResetPasswordResponse,
    Roadmap,
    RoadmapList,
    SessionLookupResponse,
    SignInResponse,
    SignUpResponse,
    StartDiagnosticResponse,
    SubmitResponseResponse,
    UserProfile,
    VerificationStatus,
    VerifyEmailResponse,
)

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)

_AUTH = "/api/v1/auth"
_USERS = "/api/v1/users"
_DIAGNOSTICS = "/api/v1/diagnostics"
_ROADMAPS = "/api/v1/roadmaps"


def parse_gateway_body(model: type[ModelT], body: Any, endpoint: str) -> ModelT:
    """Validate a gateway body against its schema.

    Args:
        model: Expected schema.
        body: Decoded JSON body.
        endpoint: Endpoint path (for the error message).

    Returns:
        Validated model instance.

    Raises:
        GatewayContractError: If the body does not match the schema.
    """
    try:
        return model.model_validate(body if body is not None else {})
    except pydantic.ValidationError as exc:
        details = [
            {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
            for e in exc.errors()
        ]
        raise GatewayContractError(endpoint, details) from exc


def _segment(value: str) -> str:
    return quote(value, safe="")


class GatewayApi:
    """Gateway endpoints grouped by area (auth, users, diagnostics, roadmaps)."""

    def __init__(self, client: GatewayClient) -> None:
        self._client = client

    async def _call(
        self,
        model: type[ModelT],
        endpoint: str,
        **kwargs: Any,
    ) -> ModelT:
        body = await self._client.request(endpoint, **kwargs)
        return parse_gateway_body(model, body, endpoint)

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> SignInResponse:
        return await self._call(
            SignInResponse,
            f"{_AUTH}/signin",
            method="POST",
            json={"email": email, "password": password},
            authenticated=False,
        )

    async def sign_up(
        self, email: str, password: str, redirect_to: str
    ) -> SignUpResponse:
        return await self._call(
            SignUpResponse,
            f"{_AUTH}/signup",
            method="POST",
            json={"email": email, "password": password, "redirect_to": redirect_to},
            authenticated=False,
        )

    async def sign_out(self) -> None:
        await self._client.request(f"{_AUTH}/signout", method="POST")

    async def oauth_url(self, provider: str, redirect_to: str) -> OAuthUrlResponse:
        return await self._call(
            OAuthUrlResponse,
            f"{_AUTH}/oauth/{_segment(provider)}",
            params={"redirect_to": redirect_to},
            authenticated=False,
        )

    async def exchange_code(self, code: str) -> OAuthCallbackResponse:
        return await self._call(
            OAuthCallbackResponse,
            f"{_AUTH}/callback",
            params={"code": code},
            authenticated=False,
        )

    async def get_session(self, token: str | None = None) -> SessionLookupResponse:
        """Look up the user behind a token (the stored one by default)."""
        return await self._call(SessionLookupResponse, f"{_AUTH}/session", token=token)

    async def refresh_token(self, refresh_token: str) -> RefreshResponse:
        return await self._call(
            RefreshResponse,
            f"{_AUTH}/refresh-token",
            method="POST",
            json={"refresh_token": refresh_token},
            authenticated=False,
        )

    async def check_verification(self) -> VerificationStatus:
        return await self._call(VerificationStatus, f"{_AUTH}/check-verification")

    async def resend_verification(self, email: str, redirect_to: str) -> None:
        await self._client.request(
            f"{_AUTH}/resend-verification",
            method="POST",
            json={"email": email, "redirect_to": redirect_to},
            authenticated=False,
        )

    async def verify_email(
        self, token: str, token_hash: str | None, verification_type: str
    ) -> VerifyEmailResponse:
        body: dict[str, str] = {"token": token, "type": verification_type}
        if token_hash:
            body["token_hash"] = token_hash
        return await self._call(
            VerifyEmailResponse,
            f"{_AUTH}/verify-email",
            method="POST",
            json=body,
            authenticated=False,
        )

    async def forgot_password(self, email: str, redirect_to: str) -> None:
        await self._client.request(
            f"{_AUTH}/forgot-password",
            method="POST",
            json={"email": email, "redirect_to": redirect_to},
            authenticated=False,
        )

    async def reset_password(
        self, new_password: str, access_token: str | None = None
    ) -> ResetPasswordResponse:
        body: dict[str, str] = {"new_password": new_password}
        if access_token:
            body["access_token"] = access_token
        return await self._call(
            ResetPasswordResponse,
            f"{_AUTH}/reset-password",
            method="POST",
            json=body,
            authenticated=False,
        )

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def get_profile(self) -> UserProfile:
        return await self._call(UserProfile, f"{_USERS}/me")

    async def update_profile(self, update: ProfileUpdate) -> UserProfile:
        return await self._call(
            UserProfile,
            f"{_USERS}/me",
            method="PUT",
            json=update.model_dump(exclude_unset=True),
        )

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    async def start_diagnostic(self) -> StartDiagnosticResponse:
        return await self._call(
            StartDiagnosticResponse, f"{_DIAGNOSTICS}/start", method="POST"
        )

    async def submit_responses(
        self, session_id: str, responses: dict[str, str]
    ) -> SubmitResponseResponse:
        return await self._call(
            SubmitResponseResponse,
            f"{_DIAGNOSTICS}/{_segment(session_id)}/respond",
            method="POST",
            json={"responses": responses},
        )

    async def complete_diagnostic(self, session_id: str) -> CompleteDiagnosticResponse:
        return await self._call(
            CompleteDiagnosticResponse,
            f"{_DIAGNOSTICS}/{_segment(session_id)}/complete",
            method="POST",
        )

    # -------------------------------------------------------------------------
    # Roadmaps
    # -------------------------------------------------------------------------

    async def generate_roadmap(self, session_id: str) -> GenerateRoadmapResponse:
        return await self._call(
            GenerateRoadmapResponse,
            f"{_ROADMAPS}/generate",
            method="POST",
            json={"session_id": session_id},
        )

    async def get_roadmap(self, roadmap_id: str) -> Roadmap:
        return await self._call(Roadmap, f"{_ROADMAPS}/{_segment(roadmap_id)}")

    async def list_roadmaps(self) -> RoadmapList:
        return await self._call(RoadmapList, _ROADMAPS)

    # -------------------------------------------------------------------------
    # Contact
    # -------------------------------------------------------------------------

    async def submit_contact(self, contact: ContactRequest) -> None:
        await self._client.request(
            "/api/v1/contact",
            method="POST",
            json=contact.model_dump(mode="json"),
            authenticated=False,
        )
