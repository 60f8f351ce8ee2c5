"""Transaction orchestrator: drives one payment attempt through its lifecycle.

    INITIATED -> RISK_EVALUATED -> PROCEEDING | VERIFYING | BLOCKED
    VERIFYING -> PROCEEDING | VERIFICATION_FAILED
    PROCEEDING -> COMPLETED | FAILED
    RISK_EVALUATED | VERIFYING -> CANCELLED (operator)

Every transition is a compare-and-swap in the store, so a concurrent writer
for the same reference is rejected rather than overwritten. Within one
process, concurrent submissions of a reference share a single run. A gateway
call is claimed through the store first, so at most one per reference is
outstanding across all workers.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from src.domains.alerts.emitter import SecurityAlertEmitter
from src.domains.alerts.models import AlertType
from src.domains.risk.analyst import FraudAnalyst
from src.domains.risk.models import (
    PropertyFacts,
    RecommendedAction,
    RiskAssessment,
    RiskLevel,
    UserProfile,
    action_taken_for,
)
from src.domains.verification.models import (
    SecurityTokenClaims,
    VerificationAttempt,
    VerificationEvidence,
    VerificationMethod,
)
from src.domains.verification.tokens import InvalidSecurityTokenError, SecurityTokenIssuer
from src.domains.verification.verifier import IdentityVerifier

from .config import PaymentsConfig, default_config
from .errors import (
    InvalidTransitionError,
    SecurityTokenError,
    TransactionNotFoundError,
    TransitionConflictError,
    VerificationInProgressError,
)
from .gateway import PaymentGateway, charge_with_retry
from .models import (
    CANCELLABLE_STATES,
    AssessmentRecord,
    AttemptOutcome,
    AttemptState,
    ClientContext,
    GatewayRequest,
    GatewayResponse,
    OutcomeCode,
    PaymentIntent,
    Transaction,
    TransactionStatus,
)
from .store import TransactionStore

logger = structlog.get_logger()

_STORED_OUTCOME_CODES: dict[AttemptState, OutcomeCode] = {
    AttemptState.BLOCKED: OutcomeCode.FRAUD_BLOCKED,
    AttemptState.VERIFICATION_FAILED: OutcomeCode.VERIFICATION_FAILED,
    AttemptState.FAILED: OutcomeCode.GATEWAY_DECLINED,
    AttemptState.CANCELLED: OutcomeCode.CANCELLED,
    AttemptState.VERIFYING: OutcomeCode.VERIFICATION_REQUIRED,
}


def _new_transaction_id() -> str:
    return f"tx_{uuid.uuid4().hex}"


class TransactionOrchestrator:
    def __init__(
        self,
        store: TransactionStore,
        analyst: FraudAnalyst,
        verifier: IdentityVerifier,
        gateway: PaymentGateway,
        alerts: SecurityAlertEmitter,
        tokens: SecurityTokenIssuer,
        config: PaymentsConfig | None = None,
        id_factory: Callable[[], str] = _new_transaction_id,
    ) -> None:
        self._store = store
        self._analyst = analyst
        self._verifier = verifier
        self._gateway = gateway
        self._alerts = alerts
        self._tokens = tokens
        self._config = config or default_config
        self._id_factory = id_factory
        self._inflight: dict[str, asyncio.Future[AttemptOutcome]] = {}
        self._verifying: set[str] = set()

    # --- Submission ---

    async def submit(
        self,
        intent: PaymentIntent,
        user: UserProfile,
        context: ClientContext,
        property: PropertyFacts | None = None,
    ) -> AttemptOutcome:
        """Submit (or resubmit) the attempt identified by ``intent.reference``.

        A resubmission after a terminal state returns the stored result. A
        resubmission while VERIFYING needs the security token minted by a
        successful verification.
        """
        return await self._single_flight(
            intent.reference, lambda: self._submit(intent, user, context, property)
        )

    async def _single_flight(
        self, reference: str, run: Callable[[], Awaitable[AttemptOutcome]]
    ) -> AttemptOutcome:
        if (pending := self._inflight.get(reference)) is not None:
            logger.info("attempt_joined_inflight", reference=reference)
            return await asyncio.shield(pending)

        future: asyncio.Future[AttemptOutcome] = asyncio.get_running_loop().create_future()
        self._inflight[reference] = future
        try:
            outcome = await run()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Joiners re-raise it; mark retrieved so an unjoined future stays quiet
            future.exception()
            raise
        else:
            future.set_result(outcome)
            return outcome
        finally:
            self._inflight.pop(reference, None)

    async def _submit(
        self,
        intent: PaymentIntent,
        user: UserProfile,
        context: ClientContext,
        property: PropertyFacts | None,
    ) -> AttemptOutcome:
        existing = await self._store.get_by_reference(intent.reference)
        if existing is not None:
            return await self._resubmit(existing, intent)

        transaction = Transaction.from_intent(self._id_factory(), intent)
        transaction.metadata["checkout"] = {
            "email": intent.email,
            "full_name": intent.full_name,
            "phone_number": intent.phone_number,
            "client": context.model_dump(mode="json"),
        }
        transaction = await self._store.create(transaction)
        logger.info(
            "transaction_initiated",
            reference=transaction.reference,
            transaction_id=transaction.id,
            user_id=transaction.user_id,
            amount=transaction.amount,
            method=transaction.method.value,
        )

        assessment = await self._analyst.analyze(transaction, user, property)
        await self._store.append_assessment(
            AssessmentRecord(
                transaction_id=transaction.id,
                reference=transaction.reference,
                assessment=assessment,
                action_taken=action_taken_for(assessment.recommended_action),
            )
        )
        transaction = await self._transition(
            transaction,
            AttemptState.RISK_EVALUATED,
            risk_level=assessment.risk_level,
            risk_score=assessment.risk_score,
            risk_factors=list(assessment.risk_factors),
        )

        if assessment.is_likely_fraud:
            self._alerts.emit(
                transaction.user_id,
                AlertType.FRAUD_DETECTED,
                {
                    "transactionId": transaction.id,
                    "transactionType": transaction.type.value,
                    "transactionAmount": transaction.amount,
                    "riskLevel": assessment.risk_level.value,
                    "riskFactors": list(assessment.risk_factors),
                },
            )

        if assessment.recommended_action == RecommendedAction.BLOCK:
            transaction = await self._transition(transaction, AttemptState.BLOCKED)
            return AttemptOutcome.for_transaction(
                transaction, assessment, OutcomeCode.FRAUD_BLOCKED
            )

        if assessment.recommended_action == RecommendedAction.REVIEW:
            transaction = await self._transition(transaction, AttemptState.VERIFYING)
            self._alerts.emit(
                transaction.user_id,
                AlertType.VERIFICATION_REQUIRED,
                {"transactionId": transaction.id, "reference": transaction.reference},
            )
            return AttemptOutcome.for_transaction(
                transaction,
                assessment,
                OutcomeCode.VERIFICATION_REQUIRED,
                verification_attempts_remaining=self._config.max_verification_attempts,
            )

        return await self._proceed(transaction, assessment)

    async def _resubmit(self, existing: Transaction, intent: PaymentIntent) -> AttemptOutcome:
        state = existing.attempt_state

        if existing.is_terminal:
            logger.info(
                "terminal_attempt_resubmitted",
                reference=existing.reference,
                state=state.value,
            )
            return await self._stored_outcome(existing)

        if state == AttemptState.VERIFYING:
            if not intent.security_token:
                return await self._stored_outcome(existing)
            claims = self._check_token(intent.security_token, existing.reference)
            return await self._proceed(
                existing,
                await self._latest_assessment(existing.reference),
                security_token=intent.security_token,
                verification_method=claims.method,
            )

        if state == AttemptState.PROCEEDING:
            # Earlier gateway call ended without a result; re-drive it with the same key
            token = self._redrive_token(existing, intent.security_token)
            if not await self._claim_gateway(existing.reference):
                logger.info("gateway_call_outstanding", reference=existing.reference)
                return await self._stored_outcome(existing)
            return await self._charge(
                existing,
                await self._latest_assessment(existing.reference),
                security_token=token,
                verification_method=existing.verification_method,
                claimed=True,
            )

        # INITIATED / RISK_EVALUATED with no local run: another worker owns it
        raise TransitionConflictError(f"{existing.reference} is being evaluated elsewhere")

    # --- Verification ---

    async def verify(
        self,
        reference: str,
        user: UserProfile,
        method: VerificationMethod,
        evidence: VerificationEvidence | None = None,
        auto_resubmit: bool = True,
    ) -> AttemptOutcome:
        """Run one identity check for a VERIFYING attempt.

        On success a security token is minted for the reference. With
        ``auto_resubmit`` the attempt is resubmitted with that token right
        away; otherwise the token is returned for the client to resubmit.
        """
        if reference in self._verifying:
            raise VerificationInProgressError(reference)
        self._verifying.add(reference)
        try:
            return await self._verify(reference, user, method, evidence, auto_resubmit)
        finally:
            self._verifying.discard(reference)

    async def _verify(
        self,
        reference: str,
        user: UserProfile,
        method: VerificationMethod,
        evidence: VerificationEvidence | None,
        auto_resubmit: bool,
    ) -> AttemptOutcome:
        transaction = await self._store.load(reference)
        if transaction.user_id != user.id:
            raise TransactionNotFoundError(f"{reference} does not belong to {user.id}")
        if transaction.attempt_state != AttemptState.VERIFYING:
            raise InvalidTransitionError(
                f"{reference} is {transaction.attempt_state.value}, not VERIFYING"
            )

        previous = await self._store.list_verifications(reference)
        attempt = await self._verifier.verify(user, method, evidence)
        await self._store.append_verification(reference, attempt)
        assessment = await self._latest_assessment(reference)

        if attempt.verified:
            token = self._tokens.mint(reference, method)
            if not auto_resubmit:
                return AttemptOutcome.for_transaction(
                    transaction, assessment, security_token=token
                )
            outcome = await self._proceed(
                transaction,
                assessment,
                security_token=token,
                verification_method=method,
            )
            return outcome.model_copy(update={"security_token": token})

        return await self._handle_failed_verification(transaction, assessment, previous, attempt)

    async def _handle_failed_verification(
        self,
        transaction: Transaction,
        assessment: RiskAssessment | None,
        previous: list[VerificationAttempt],
        attempt: VerificationAttempt,
    ) -> AttemptOutcome:
        failures = 1 + sum(1 for p in previous if not p.verified)
        remaining = max(self._config.max_verification_attempts - failures, 0)
        logger.info(
            "identity_verification_rejected",
            reference=transaction.reference,
            method=attempt.method.value,
            failures=failures,
            remaining=remaining,
        )

        if remaining == 0:
            transaction = await self._transition(transaction, AttemptState.VERIFICATION_FAILED)
            self._alerts.emit(
                transaction.user_id,
                AlertType.SUSPICIOUS_ACTIVITY,
                {
                    "transactionId": transaction.id,
                    "reason": "identity_verification_failed",
                    "failedAttempts": failures,
                },
            )
            return AttemptOutcome.for_transaction(
                transaction,
                assessment,
                OutcomeCode.VERIFICATION_FAILED,
                verification_attempts_remaining=0,
                verification_failure_reason=attempt.failure_reason,
            )

        return AttemptOutcome.for_transaction(
            transaction,
            assessment,
            OutcomeCode.VERIFICATION_REJECTED,
            verification_attempts_remaining=remaining,
            verification_failure_reason=attempt.failure_reason,
        )

    # --- Operator actions ---

    async def cancel(self, reference: str, reason: str | None = None) -> AttemptOutcome:
        """Cancel an attempt that has not been committed to the gateway."""
        transaction = await self._store.load(reference)
        self._ensure_cancellable(transaction)
        transaction = await self._transition(
            transaction,
            AttemptState.CANCELLED,
            metadata={**transaction.metadata, "cancel_reason": reason},
        )
        return AttemptOutcome.for_transaction(
            transaction,
            await self._latest_assessment(reference),
            OutcomeCode.CANCELLED,
        )

    async def flag_as_fraudulent(self, reference: str, notes: str) -> AttemptOutcome:
        """Operator verdict: cancel the attempt and mark it critical.

        The original assessment stays in the audit trail; the verdict is a
        new entry with ``action_taken=blocked`` and the operator's notes.
        """
        transaction = await self._store.load(reference)
        self._ensure_cancellable(transaction)
        assessment = await self._latest_assessment(reference)
        flagged_at = datetime.now(UTC)

        transaction = await self._transition(
            transaction,
            AttemptState.CANCELLED,
            risk_level=RiskLevel.CRITICAL,
            metadata={
                **transaction.metadata,
                "fraud_notes": notes,
                "flagged_at": flagged_at.isoformat(),
            },
        )
        if assessment is not None:
            await self._store.append_assessment(
                AssessmentRecord(
                    transaction_id=transaction.id,
                    reference=reference,
                    assessment=assessment,
                    action_taken=action_taken_for(RecommendedAction.BLOCK),
                    detected_at=flagged_at,
                    review_notes=notes,
                )
            )
        self._alerts.emit(
            transaction.user_id,
            AlertType.FRAUD_DETECTED,
            {
                "transactionId": transaction.id,
                "transactionType": transaction.type.value,
                "transactionAmount": transaction.amount,
                "riskLevel": RiskLevel.CRITICAL.value,
            },
        )
        return AttemptOutcome.for_transaction(transaction, assessment, OutcomeCode.CANCELLED)

    def _ensure_cancellable(self, transaction: Transaction) -> None:
        if transaction.attempt_state not in CANCELLABLE_STATES:
            raise InvalidTransitionError(
                f"{transaction.reference} cannot be cancelled from "
                f"{transaction.attempt_state.value}"
            )

    # --- Queries ---

    async def get(self, reference: str) -> AttemptOutcome:
        return await self._stored_outcome(await self._store.load(reference))

    async def history(
        self, reference: str
    ) -> tuple[Transaction, list[AssessmentRecord], list[VerificationAttempt]]:
        transaction = await self._store.load(reference)
        return (
            transaction,
            await self._store.list_assessments(reference),
            await self._store.list_verifications(reference),
        )

    async def high_risk(self) -> list[Transaction]:
        return await self._store.list_high_risk()

    # --- Gateway ---

    async def _proceed(
        self,
        transaction: Transaction,
        assessment: RiskAssessment | None,
        security_token: str | None = None,
        verification_method: VerificationMethod | None = None,
    ) -> AttemptOutcome:
        changes: dict[str, Any] = {}
        if security_token:
            changes.update(
                security_verified=True,
                verification_method=verification_method.value if verification_method else None,
                verified_at=datetime.now(UTC),
            )
        transaction = await self._transition(transaction, AttemptState.PROCEEDING, **changes)
        return await self._charge(
            transaction,
            assessment,
            security_token=security_token,
            verification_method=transaction.verification_method,
        )

    async def _charge(
        self,
        transaction: Transaction,
        assessment: RiskAssessment | None,
        security_token: str | None,
        verification_method: str | None,
        claimed: bool = False,
    ) -> AttemptOutcome:
        reference = transaction.reference
        request = self._gateway_request(transaction, security_token, verification_method)
        if not claimed and not await self._claim_gateway(reference):
            raise TransitionConflictError(f"{reference} already has a gateway call outstanding")

        try:
            # GatewayUnavailableError leaves the attempt in PROCEEDING for a same-key retry
            response = await charge_with_retry(self._gateway, request, self._config.gateway)
            return await self._settle(transaction, assessment, response)
        finally:
            await self._store.release_gateway_call(reference)

    async def _claim_gateway(self, reference: str) -> bool:
        return await self._store.claim_gateway_call(
            reference, self._config.gateway.claim_lease_seconds
        )

    def _redrive_token(self, transaction: Transaction, supplied: str | None) -> str | None:
        """Token for re-driving a PROCEEDING attempt's gateway call.

        A supplied token must be valid. Without one, a verified attempt gets a
        fresh token for its recorded method, since the record already carries
        the proof of verification.
        """
        if not transaction.security_verified:
            return None
        if supplied:
            self._check_token(supplied, transaction.reference)
            return supplied
        if not transaction.verification_method:
            raise SecurityTokenError(f"{transaction.reference} has no recorded verification")
        logger.info("security_token_reissued", reference=transaction.reference)
        return self._tokens.mint(
            transaction.reference, VerificationMethod(transaction.verification_method)
        )

    async def _settle(
        self,
        transaction: Transaction,
        assessment: RiskAssessment | None,
        response: GatewayResponse,
    ) -> AttemptOutcome:
        if response.success:
            transaction = await self._transition(
                transaction,
                AttemptState.COMPLETED,
                receipt_url=response.receipt_url,
                security_checks=response.security_checks,
            )
            return AttemptOutcome.for_transaction(transaction, assessment)

        checks = response.security_checks
        fraud_detected = bool(checks and checks.fraud_detected)
        logger.warning(
            "gateway_declined",
            reference=transaction.reference,
            gateway_status=response.status.value,
            gateway_error=response.error,
            fraud_detected=fraud_detected,
        )
        transaction = await self._transition(
            transaction,
            AttemptState.FAILED,
            status=TransactionStatus.FLAGGED if fraud_detected else TransactionStatus.FAILED,
            security_checks=checks,
        )
        if fraud_detected:
            self._alerts.emit(
                transaction.user_id,
                AlertType.FRAUD_DETECTED,
                {
                    "transactionId": transaction.id,
                    "transactionType": transaction.type.value,
                    "transactionAmount": transaction.amount,
                    "riskLevel": checks.risk_level if checks else None,
                },
            )
        return AttemptOutcome.for_transaction(
            transaction, assessment, OutcomeCode.GATEWAY_DECLINED
        )

    def _gateway_request(
        self,
        transaction: Transaction,
        security_token: str | None,
        verification_method: str | None,
    ) -> GatewayRequest:
        checkout = transaction.metadata.get("checkout", {})
        client = ClientContext.model_validate(checkout.get("client", {}))
        return GatewayRequest(
            amount=transaction.amount,
            currency=transaction.currency,
            email=checkout.get("email"),
            full_name=checkout.get("full_name"),
            phone_number=checkout.get("phone_number"),
            description=transaction.description,
            provider=transaction.provider,
            method=transaction.method,
            transaction_type=transaction.type,
            property_id=transaction.property_id,
            reference=transaction.reference,
            metadata={k: v for k, v in transaction.metadata.items() if k != "checkout"},
            device_id=client.device_id,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            location=client.location,
            security_token=security_token,
            verification_method=verification_method if security_token else None,
        )

    # --- Helpers ---

    async def _transition(
        self, transaction: Transaction, new: AttemptState, **changes: Any
    ) -> Transaction:
        updated = await self._store.compare_and_swap_status(
            transaction.reference, transaction.attempt_state, new, **changes
        )
        logger.info(
            "transaction_transitioned",
            reference=updated.reference,
            from_state=transaction.attempt_state.value,
            to_state=new.value,
            status=updated.status.value,
        )
        return updated

    def _check_token(self, token: str, reference: str) -> SecurityTokenClaims:
        try:
            return self._tokens.validate(token, reference)
        except InvalidSecurityTokenError as exc:
            logger.warning("security_token_rejected", reference=reference, error=str(exc))
            raise SecurityTokenError(str(exc)) from exc

    async def _latest_assessment(self, reference: str) -> RiskAssessment | None:
        records = await self._store.list_assessments(reference)
        return records[-1].assessment if records else None

    async def _stored_outcome(self, transaction: Transaction) -> AttemptOutcome:
        code = _STORED_OUTCOME_CODES.get(transaction.attempt_state)
        extra: dict[str, Any] = {}
        if transaction.attempt_state == AttemptState.VERIFYING:
            attempts = await self._store.list_verifications(transaction.reference)
            failures = sum(1 for a in attempts if not a.verified)
            extra["verification_attempts_remaining"] = max(
                self._config.max_verification_attempts - failures, 0
            )
        return AttemptOutcome.for_transaction(
            transaction,
            await self._latest_assessment(transaction.reference),
            code,
            **extra,
        )
