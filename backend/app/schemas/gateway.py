"""API gateway request/response schemas.

Gateway JSON is validated here, at the boundary, so the session manager,
diagnostic controller and roadmap viewer only ever see typed values.
Unknown response fields are ignored; request bodies forbid extras.
"""

from datetime import UTC, datetime, timedelta
from typing import Any, Literal

import jwt
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

# =============================================================================
# Auth
# =============================================================================


class SessionPayload(BaseModel):
    """Session tokens returned by sign-in, sign-up, refresh and OAuth exchange.

    Attributes:
        access_token: Bearer token for gateway calls.
        refresh_token: Token used to obtain a new access token.
        expires_at: Absolute expiry in epoch seconds.
        expires_in: Relative expiry in seconds.
    """

    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    expires_at: int | None = None
    expires_in: int | None = None
    token_type: str | None = None

    def expiry(self, now: datetime | None = None) -> datetime | None:
        """Work out when the access token expires.

        Order of preference: ``expires_at``, then ``expires_in`` from now,
        then the ``exp`` claim of the access token. The claim is read
        without signature verification; the gateway stays the authority on
        validity, this value only schedules proactive refresh.

        Args:
            now: Current time (defaults to utcnow).

        Returns:
            Aware UTC datetime, or None when no expiry is known.
        """
        if self.expires_at is not None:
            return datetime.fromtimestamp(self.expires_at, UTC)
        now = now or datetime.now(UTC)
        if self.expires_in is not None:
            return now + timedelta(seconds=self.expires_in)
        try:
            claims = jwt.decode(
                self.access_token,
                options={"verify_signature": False, "verify_exp": False},
            )
        except jwt.InvalidTokenError:
            return None
        exp = claims.get("exp")
        if isinstance(exp, int | float):
            return datetime.fromtimestamp(exp, UTC)
        return None


class GatewayUser(BaseModel):
    """User returned by the gateway's session lookup and auth endpoints."""

    id: str
    email: str | None = None
    phone: str | None = None
    email_verified: bool = False
    email_confirmed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    app_metadata: dict[str, Any] = Field(default_factory=dict)
    user_metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("email_verified", mode="before")
    @classmethod
    def _null_means_unverified(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("app_metadata", "user_metadata", mode="before")
    @classmethod
    def _null_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


class SignInResponse(BaseModel):
    """Body of POST /auth/signin."""

    session: SessionPayload
    user: GatewayUser


class SignUpResponse(BaseModel):
    """Body of POST /auth/signup.

    Session is absent when the gateway requires email verification first.
    """

    session: SessionPayload | None = None
    user: GatewayUser | None = None


class RefreshResponse(BaseModel):
    """Body of POST /auth/refresh-token."""

    session: SessionPayload
    user: GatewayUser | None = None


class SessionLookupResponse(BaseModel):
    """Body of GET /auth/session."""

    user: GatewayUser


class OAuthCallbackResponse(BaseModel):
    """Body of GET /auth/callback (code exchange).

    Both parts are optional here; the callback handler decides what a
    missing access token means.
    """

    session: SessionPayload | None = None
    user: GatewayUser | None = None


class OAuthUrlResponse(BaseModel):
    """Body of GET /auth/oauth/{provider}."""

    url: str = Field(..., min_length=1)


class VerificationStatus(BaseModel):
    """Body of GET /auth/check-verification."""

    email_verified: bool = False

    @field_validator("email_verified", mode="before")
    @classmethod
    def _null_means_unverified(cls, value: Any) -> Any:
        return False if value is None else value


class VerifyEmailResponse(BaseModel):
    """Body of POST /auth/verify-email."""

    session: SessionPayload | None = None
    user: GatewayUser | None = None


class ResetPasswordResponse(BaseModel):
    """Body of POST /auth/reset-password."""

    session: SessionPayload | None = None
    message: str | None = None


# =============================================================================
# Users
# =============================================================================


class UserProfile(BaseModel):
    """Body of GET/PUT /users/me."""

    id: str
    full_name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    location: str | None = None
    linkedin_url: str | None = None
    github_url: str | None = None
    website_url: str | None = None
    onboarding_completed: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProfileUpdate(BaseModel):
    """Request body for PUT /users/me. Only set fields are sent."""

    model_config = ConfigDict(extra="forbid")

    full_name: str | None = Field(None, max_length=200)
    avatar_url: str | None = Field(None, max_length=2048)
    bio: str | None = Field(None, max_length=2000)
    location: str | None = Field(None, max_length=200)
    linkedin_url: str | None = Field(None, max_length=2048)
    github_url: str | None = Field(None, max_length=2048)
    website_url: str | None = Field(None, max_length=2048)
    onboarding_completed: bool | None = None


# =============================================================================
# Contact
# =============================================================================


class ContactRequest(BaseModel):
    """Request body for POST /contact (unauthenticated)."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    subject: str = Field(..., min_length=1, max_length=300)
    message: str = Field(..., min_length=1, max_length=5000)


# =============================================================================
# Diagnostics
# =============================================================================


class DiagnosticQuestion(BaseModel):
    """A diagnostic question as served by the gateway."""

    question_id: str = Field(..., min_length=1)
    question_text: str
    category: str = ""
    order: int = 0

    @field_validator("category", mode="before")
    @classmethod
    def _null_category(cls, value: Any) -> Any:
        return "" if value is None else value


def _empty_if_null(value: Any, empty: Any) -> Any:
    return empty if value is None else value


class StartDiagnosticResponse(BaseModel):
    """Body of POST /diagnostics/start (new or resumed session)."""

    session_id: str = Field(..., min_length=1)
    status: str | None = None
    questions: list[DiagnosticQuestion] = Field(default_factory=list)
    existing_responses: dict[str, str] = Field(default_factory=dict)
    followup_questions: list[DiagnosticQuestion] = Field(default_factory=list)
    is_complete: bool = False
    ready_to_complete: bool = False

    @field_validator("questions", "followup_questions", mode="before")
    @classmethod
    def _null_lists(cls, value: Any) -> Any:
        return _empty_if_null(value, [])

    @field_validator("existing_responses", mode="before")
    @classmethod
    def _null_responses(cls, value: Any) -> Any:
        return _empty_if_null(value, {})

    @field_validator("is_complete", "ready_to_complete", mode="before")
    @classmethod
    def _null_flags(cls, value: Any) -> Any:
        return _empty_if_null(value, False)


class SubmitResponseResponse(BaseModel):
    """Body of POST /diagnostics/{session_id}/respond."""

    success: bool = True
    status: str = ""
    complete_items: list[Any] = Field(default_factory=list)
    missing_items: list[Any] = Field(default_factory=list)
    needs_clarification: list[Any] = Field(default_factory=list)
    followup_questions: list[DiagnosticQuestion] = Field(default_factory=list)

    @field_validator(
        "complete_items",
        "missing_items",
        "needs_clarification",
        "followup_questions",
        mode="before",
    )
    @classmethod
    def _null_lists(cls, value: Any) -> Any:
        return _empty_if_null(value, [])

    @field_validator("status", mode="before")
    @classmethod
    def _null_status(cls, value: Any) -> Any:
        return _empty_if_null(value, "")

    @property
    def is_complete(self) -> bool:
        """Completion signal: status complete, or nothing missing."""
        return self.status.lower() == "complete" or not self.missing_items


class CompleteDiagnosticResponse(BaseModel):
    """Body of POST /diagnostics/{session_id}/complete."""

    success: bool = True
    session_id: str | None = None
    diagnostic_id: str | None = None
    checklist_complete: bool = False


# =============================================================================
# Roadmaps
# =============================================================================

MilestoneStatus = Literal["not-started", "in-progress", "completed"]

_STATUS_ALIASES: dict[str, MilestoneStatus] = {
    "not-started": "not-started",
    "not started": "not-started",
    "start": "not-started",
    "pending": "not-started",
    "todo": "not-started",
    "in-progress": "in-progress",
    "in progress": "in-progress",
    "continue": "in-progress",
    "started": "in-progress",
    "active": "in-progress",
    "completed": "completed",
    "complete": "completed",
    "done": "completed",
}


def normalize_milestone_status(raw: Any) -> MilestoneStatus:
    """Map gateway status variants onto the three canonical values.

    Args:
        raw: Status as sent by the gateway (any casing, "_" or "-").

    Returns:
        Canonical status; unknown or missing values are "not-started".
    """
    if not isinstance(raw, str):
        return "not-started"
    key = raw.strip().lower().replace("_", "-")
    return _STATUS_ALIASES.get(key, "not-started")


class Milestone(BaseModel):
    """One roadmap milestone."""

    milestone_index: int | None = None
    title: str
    description: str = ""
    skill_area: str = ""
    tasks: list[str] = Field(default_factory=list)
    estimated_weeks: int | None = None
    resources: list[str] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)
    status: MilestoneStatus = "not-started"

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> MilestoneStatus:
        return normalize_milestone_status(value)

    @field_validator("tasks", "resources", "success_criteria", mode="before")
    @classmethod
    def _null_lists(cls, value: Any) -> Any:
        return _empty_if_null(value, [])

    @field_validator("description", "skill_area", mode="before")
    @classmethod
    def _null_text(cls, value: Any) -> Any:
        return _empty_if_null(value, "")


class Roadmap(BaseModel):
    """Body of GET /roadmaps/{id}."""

    id: str
    user_id: str | None = None
    diagnostic_session_id: str | None = None
    target_company: str | None = None
    target_role: str | None = None
    title: str = ""
    description: str = ""
    milestones: list[Milestone] = Field(default_factory=list)
    status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("milestones", mode="before")
    @classmethod
    def _null_milestones(cls, value: Any) -> Any:
        return _empty_if_null(value, [])


class RoadmapList(BaseModel):
    """Body of GET /roadmaps."""

    roadmaps: list[Roadmap] = Field(default_factory=list)

    @field_validator("roadmaps", mode="before")
    @classmethod
    def _null_roadmaps(cls, value: Any) -> Any:
        return _empty_if_null(value, [])


class GenerateRoadmapResponse(BaseModel):
    """Body of POST /roadmaps/generate."""

    status: str | None = None
    roadmap_id: str = Field(..., min_length=1)
    message: str | None = None
