"""Identity verification clients.

A verifier makes exactly one check per call. Retrying, with the same or a
different method, is the caller's decision.
"""

from abc import ABC, abstractmethod

import httpx
import structlog

from src.domains.risk.models import UserProfile

from .config import VerificationConfig, default_config
from .models import (
    REQUIRED_EVIDENCE,
    VerificationAttempt,
    VerificationEvidence,
    VerificationMethod,
)

logger = structlog.get_logger()


class IdentityVerifier(ABC):
    @abstractmethod
    async def verify(
        self,
        user: UserProfile,
        method: VerificationMethod,
        evidence: VerificationEvidence | None = None,
    ) -> VerificationAttempt:
        """Run one verification check. Failures come back as ``verified=False``."""
        ...


def missing_evidence(
    method: VerificationMethod, evidence: VerificationEvidence | None
) -> str | None:
    """Name of the evidence field ``method`` needs but did not get, if any."""
    field_name = REQUIRED_EVIDENCE[method]
    if evidence is None or not getattr(evidence, field_name):
        return field_name
    return None


class HttpIdentityVerifier(IdentityVerifier):
    """Calls an out-of-process verification provider over HTTP."""

    def __init__(
        self,
        config: VerificationConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or default_config
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout_seconds)
        )
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def verify(
        self,
        user: UserProfile,
        method: VerificationMethod,
        evidence: VerificationEvidence | None = None,
    ) -> VerificationAttempt:
        if missing := missing_evidence(method, evidence):
            return VerificationAttempt(
                method=method,
                verified=False,
                confidence_score=0.0,
                failure_reason=f"Missing {missing.replace('_', ' ')}",
            )

        payload = {
            "userId": user.id,
            "method": method.value,
            "evidence": evidence.model_dump(exclude_none=True) if evidence else {},
        }

        try:
            response = await self._client.post(self._config.service_url, json=payload)
            response.raise_for_status()
            data = response.json()
            verified = bool(data["verified"])
            confidence = float(data.get("confidenceScore", 0.0))
            failure_reason = data.get("failureReason")
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "identity_verification_unavailable",
                user_id=user.id,
                method=method.value,
                error=str(exc),
            )
            return VerificationAttempt(
                method=method,
                verified=False,
                confidence_score=0.0,
                failure_reason="Verification service unavailable",
            )

        confidence = max(0.0, min(confidence, 1.0))
        if verified and confidence < self._config.min_confidence:
            verified = False
            failure_reason = "Verification confidence too low"
        if not verified and not failure_reason:
            failure_reason = "Identity could not be verified"

        attempt = VerificationAttempt(
            method=method,
            verified=verified,
            confidence_score=confidence,
            failure_reason=None if verified else failure_reason,
        )
        logger.info(
            "identity_verification_completed",
            user_id=user.id,
            method=method.value,
            verified=attempt.verified,
            confidence_score=attempt.confidence_score,
        )
        return attempt
