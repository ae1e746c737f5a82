"""Pydantic schemas for gateway payloads and server responses."""

from app.schemas.gateway import (
    CompleteDiagnosticResponse,
    ContactRequest,
    DiagnosticQuestion,
    GatewayUser,
    GenerateRoadmapResponse,
    Milestone,
    ProfileUpdate,
    Roadmap,
    RoadmapList,
    SessionPayload,
    StartDiagnosticResponse,
    SubmitResponseResponse,
    UserProfile,
)

__all__ = [
    # Auth
    "GatewayUser",
    "SessionPayload",
    # Users
    "ProfileUpdate",
    "UserProfile",
    # Contact
    "ContactRequest",
    # Diagnostics
    "CompleteDiagnosticResponse",
    "DiagnosticQuestion",
    "StartDiagnosticResponse",
    "SubmitResponseResponse",
    # Roadmaps
    "GenerateRoadmapResponse",
    "Milestone",
    "Roadmap",
    "RoadmapList",
]
