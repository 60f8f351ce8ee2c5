"""Pydantic models for identity verification."""

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class VerificationMethod(StrEnum):
    DOCUMENT = "document"
    FACIAL = "facial"
    TWO_FACTOR = "two_factor"


class VerificationStatus(StrEnum):
    VERIFIED = "verified"
    REJECTED = "rejected"


class VerificationEvidence(BaseModel):
    document_image_url: str | None = None
    selfie_image_url: str | None = None
    otp_code: str | None = None


# Evidence field each method cannot run without.
REQUIRED_EVIDENCE: dict[VerificationMethod, str] = {
    VerificationMethod.DOCUMENT: "document_image_url",
    VerificationMethod.FACIAL: "selfie_image_url",
    VerificationMethod.TWO_FACTOR: "otp_code",
}


class VerificationAttempt(BaseModel):
    verification_id: str = Field(default_factory=lambda: f"ver_{uuid.uuid4().hex[:16]}")
    method: VerificationMethod
    verified: bool
    confidence_score: float = Field(ge=0.0, le=1.0)
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def status(self) -> VerificationStatus:
        return VerificationStatus.VERIFIED if self.verified else VerificationStatus.REJECTED


class SecurityTokenClaims(BaseModel):
    reference: str
    method: VerificationMethod
    expires_at: datetime
    token_id: str
