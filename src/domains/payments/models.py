"""Pydantic models and lifecycle tables for payment attempts."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from src.domains.risk.models import ActionTaken, RiskAssessment, RiskLevel


class PaymentProvider(StrEnum):
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"
    PAYSTACK = "PAYSTACK"
    FLUTTERWAVE = "FLUTTERWAVE"


class PaymentMethod(StrEnum):
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_MONEY = "MOBILE_MONEY"
    WALLET = "WALLET"


class TransactionType(StrEnum):
    FULL_PAYMENT = "FULL_PAYMENT"
    RENTAL_DEPOSIT = "RENTAL_DEPOSIT"
    BOOKING_FEE = "BOOKING_FEE"
    SUBSCRIPTION = "SUBSCRIPTION"


class TransactionStatus(StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"
    FLAGGED = "FLAGGED"
    UNDER_REVIEW = "UNDER_REVIEW"


class AttemptState(StrEnum):
    INITIATED = "INITIATED"
    RISK_EVALUATED = "RISK_EVALUATED"
    PROCEEDING = "PROCEEDING"
    VERIFYING = "VERIFYING"
    BLOCKED = "BLOCKED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATES: frozenset[AttemptState] = frozenset(
    {
        AttemptState.BLOCKED,
        AttemptState.VERIFICATION_FAILED,
        AttemptState.COMPLETED,
        AttemptState.FAILED,
        AttemptState.CANCELLED,
    }
)

# Operator cancellation is only possible before the gateway is involved.
CANCELLABLE_STATES: frozenset[AttemptState] = frozenset(
    {AttemptState.RISK_EVALUATED, AttemptState.VERIFYING}
)

ALLOWED_TRANSITIONS: dict[AttemptState, frozenset[AttemptState]] = {
    AttemptState.INITIATED: frozenset({AttemptState.RISK_EVALUATED}),
    AttemptState.RISK_EVALUATED: frozenset(
        {
            AttemptState.PROCEEDING,
            AttemptState.VERIFYING,
            AttemptState.BLOCKED,
            AttemptState.CANCELLED,
        }
    ),
    AttemptState.VERIFYING: frozenset(
        {AttemptState.PROCEEDING, AttemptState.VERIFICATION_FAILED, AttemptState.CANCELLED}
    ),
    AttemptState.PROCEEDING: frozenset({AttemptState.COMPLETED, AttemptState.FAILED}),
}

STATE_STATUS: dict[AttemptState, TransactionStatus] = {
    AttemptState.INITIATED: TransactionStatus.PENDING,
    AttemptState.RISK_EVALUATED: TransactionStatus.PENDING,
    AttemptState.PROCEEDING: TransactionStatus.PENDING,
    AttemptState.VERIFYING: TransactionStatus.UNDER_REVIEW,
    AttemptState.BLOCKED: TransactionStatus.FLAGGED,
    AttemptState.VERIFICATION_FAILED: TransactionStatus.FAILED,
    AttemptState.COMPLETED: TransactionStatus.COMPLETED,
    AttemptState.FAILED: TransactionStatus.FAILED,
    AttemptState.CANCELLED: TransactionStatus.CANCELLED,
}


def is_transition_allowed(current: AttemptState, new: AttemptState) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


class GeoLocation(BaseModel):
    city: str | None = None
    country: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class ClientContext(BaseModel):
    """Device and network facts the gateway requires on every request."""

    device_id: str = Field(min_length=1)
    ip_address: str = Field(min_length=1)
    user_agent: str = Field(min_length=1)
    location: GeoLocation | None = None


class PaymentIntent(BaseModel):
    """A validated request to pay. Malformed intents never reach the orchestrator."""

    reference: str = Field(min_length=6, max_length=128, pattern=r"^[A-Za-z0-9_\-.:]+$")
    user_id: str = Field(min_length=1)
    property_id: str | None = None
    amount: float = Field(gt=0)
    currency: str = Field(default="USD", pattern=r"^[A-Z]{3}$")
    type: TransactionType
    method: PaymentMethod
    provider: PaymentProvider
    description: str = Field(default="Property payment", max_length=500)
    email: str | None = None
    full_name: str | None = None
    phone_number: str | None = None
    security_token: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SecurityChecks(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    passed: bool
    verification_required: bool | None = Field(default=None, alias="verificationRequired")
    risk_level: str | None = Field(default=None, alias="riskLevel")
    fraud_detected: bool | None = Field(default=None, alias="fraudDetected")
    risk_factors: list[str] | None = Field(default=None, alias="riskFactors")


class Transaction(BaseModel):
    """The stored record for one payment attempt, keyed by ``reference``."""

    id: str
    user_id: str
    property_id: str | None = None
    amount: float
    currency: str = "USD"
    type: TransactionType
    status: TransactionStatus = TransactionStatus.PENDING
    provider: PaymentProvider
    method: PaymentMethod
    reference: str
    description: str = ""
    date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    receipt_url: str | None = None
    risk_level: RiskLevel | None = None
    risk_score: int | None = None
    risk_factors: list[str] | None = None
    attempt_state: AttemptState = AttemptState.INITIATED
    security_verified: bool = False
    verification_method: str | None = None
    verified_at: datetime | None = None
    security_checks: SecurityChecks | None = None
    gateway_call_started_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.attempt_state in TERMINAL_STATES

    @classmethod
    def from_intent(cls, transaction_id: str, intent: PaymentIntent) -> "Transaction":
        return cls(
            id=transaction_id,
            user_id=intent.user_id,
            property_id=intent.property_id,
            amount=intent.amount,
            currency=intent.currency,
            type=intent.type,
            provider=intent.provider,
            method=intent.method,
            reference=intent.reference,
            description=intent.description,
            metadata=dict(intent.metadata),
        )


class AssessmentRecord(BaseModel):
    """Audit entry: one per risk assessment, never overwritten."""

    transaction_id: str
    reference: str
    assessment: RiskAssessment
    action_taken: ActionTaken
    detected_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    review_notes: str | None = None


class GatewayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: float
    currency: str
    email: str | None = None
    full_name: str | None = Field(default=None, alias="fullName")
    phone_number: str | None = Field(default=None, alias="phoneNumber")
    description: str
    provider: PaymentProvider
    method: PaymentMethod
    transaction_type: TransactionType = Field(alias="transactionType")
    property_id: str | None = Field(default=None, alias="propertyId")
    reference: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    device_id: str = Field(alias="deviceId")
    ip_address: str = Field(alias="ipAddress")
    user_agent: str = Field(alias="userAgent")
    location: GeoLocation | None = None
    security_token: str | None = Field(default=None, alias="securityToken")
    verification_method: str | None = Field(default=None, alias="verificationMethod")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class GatewayResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    status: TransactionStatus
    transaction_id: str | None = Field(default=None, alias="transactionId")
    reference: str | None = None
    message: str | None = None
    error: str | None = None
    receipt_url: str | None = Field(default=None, alias="receiptUrl")
    security_checks: SecurityChecks | None = Field(default=None, alias="securityChecks")


class OutcomeCode(StrEnum):
    FRAUD_BLOCKED = "fraud_blocked"
    VERIFICATION_REQUIRED = "verification_required"
    VERIFICATION_REJECTED = "verification_rejected"
    VERIFICATION_FAILED = "verification_failed"
    GATEWAY_DECLINED = "gateway_declined"
    CANCELLED = "cancelled"


# Shown to users instead of any raw oracle, verifier or gateway text.
USER_MESSAGES: dict[OutcomeCode, str] = {
    OutcomeCode.FRAUD_BLOCKED: (
        "This payment was blocked for security reasons. Please contact support."
    ),
    OutcomeCode.VERIFICATION_REQUIRED: (
        "Additional verification is required to complete this payment."
    ),
    OutcomeCode.VERIFICATION_REJECTED: (
        "We could not verify your identity. Please try again or choose another method."
    ),
    OutcomeCode.VERIFICATION_FAILED: (
        "Identity verification failed. Please start a new payment to try again."
    ),
    OutcomeCode.GATEWAY_DECLINED: (
        "Your payment was declined. Please try a different payment method or provider."
    ),
    OutcomeCode.CANCELLED: "This payment was cancelled.",
}


class AttemptOutcome(BaseModel):
    """What the caller of the orchestrator gets back for one call."""

    reference: str
    transaction_id: str
    state: AttemptState
    status: TransactionStatus
    risk_assessment: RiskAssessment | None = None
    requires_verification: bool = False
    verification_attempts_remaining: int | None = None
    verification_failure_reason: str | None = None
    security_token: str | None = None
    receipt_url: str | None = None
    error_code: OutcomeCode | None = None
    user_message: str | None = None

    @field_serializer("risk_assessment")
    def _assessment_contract(self, assessment: RiskAssessment | None) -> dict | None:
        # Always the camelCase oracle contract, whatever the dump settings
        return assessment.to_contract() if assessment is not None else None

    @classmethod
    def for_transaction(
        cls,
        transaction: Transaction,
        assessment: RiskAssessment | None = None,
        error_code: OutcomeCode | None = None,
        **extra: Any,
    ) -> "AttemptOutcome":
        return cls(
            reference=transaction.reference,
            transaction_id=transaction.id,
            state=transaction.attempt_state,
            status=transaction.status,
            risk_assessment=assessment,
            requires_verification=transaction.attempt_state == AttemptState.VERIFYING,
            receipt_url=transaction.receipt_url,
            error_code=error_code,
            user_message=USER_MESSAGES[error_code] if error_code else None,
            **extra,
        )
