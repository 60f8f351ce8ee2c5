"""Payment attempt endpoints: submit, verify, operator actions and lookups."""

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.api.dependencies import Services, get_services
from src.domains.payments.models import ClientContext, PaymentIntent
from src.domains.risk.models import PropertyFacts, UserProfile
from src.domains.verification.models import VerificationEvidence, VerificationMethod

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/payments", tags=["payments"])

# Internal bookkeeping never leaves the service
_PRIVATE_FIELDS = {"metadata", "gateway_call_started_at"}


class SubmitPaymentRequest(BaseModel):
    intent: PaymentIntent
    user: UserProfile
    context: ClientContext
    property: PropertyFacts | None = None


class VerifyPaymentRequest(BaseModel):
    user: UserProfile
    method: VerificationMethod
    evidence: VerificationEvidence | None = None
    # False returns the minted token so the client resubmits itself
    auto_resubmit: bool = True


class CancelPaymentRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class FlagPaymentRequest(BaseModel):
    notes: str = Field(min_length=1, max_length=2000)


@router.post("")
async def submit_payment(
    request: SubmitPaymentRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    outcome = await services.orchestrator.submit(
        request.intent, request.user, request.context, request.property
    )
    return outcome.model_dump(mode="json")


@router.get("/high-risk")
async def list_high_risk_payments(
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    transactions = await services.orchestrator.high_risk()
    return {
        "transactions": [
            t.model_dump(mode="json", exclude=_PRIVATE_FIELDS) for t in transactions
        ],
        "total": len(transactions),
    }


@router.get("/{reference}")
async def get_payment(
    reference: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    transaction, assessments, verifications = await services.orchestrator.history(reference)
    return {
        "transaction": transaction.model_dump(mode="json", exclude=_PRIVATE_FIELDS),
        "assessments": [
            {
                **record.assessment.to_contract(),
                "source": record.assessment.source.value,
                "actionTaken": record.action_taken.value,
                "detectedAt": record.detected_at.isoformat(),
                "reviewNotes": record.review_notes,
            }
            for record in assessments
        ],
        "verifications": [
            {
                "verification_id": v.verification_id,
                "method": v.method.value,
                "status": v.status.value,
                "confidence_score": v.confidence_score,
                "failure_reason": v.failure_reason,
                "created_at": v.created_at.isoformat(),
            }
            for v in verifications
        ],
    }


@router.post("/{reference}/verify")
async def verify_payment(
    reference: str,
    request: VerifyPaymentRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    outcome = await services.orchestrator.verify(
        reference,
        request.user,
        request.method,
        request.evidence,
        auto_resubmit=request.auto_resubmit,
    )
    return outcome.model_dump(mode="json")


@router.post("/{reference}/cancel")
async def cancel_payment(
    reference: str,
    request: CancelPaymentRequest | None = None,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    reason = request.reason if request else None
    outcome = await services.orchestrator.cancel(reference, reason)
    logger.info("payment_cancelled_by_operator", reference=reference)
    return outcome.model_dump(mode="json")


@router.post("/{reference}/flag")
async def flag_payment(
    reference: str,
    request: FlagPaymentRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    outcome = await services.orchestrator.flag_as_fraudulent(reference, request.notes)
    logger.info("payment_flagged_by_operator", reference=reference)
    return outcome.model_dump(mode="json")
