"""Transaction stores with single-writer compare-and-swap on the attempt state.

A CAS names the state the writer believes the attempt is in. If another
writer got there first the swap is rejected with TransitionConflictError;
nothing is overwritten.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import PaymentTransactionRow, RiskAssessmentRow, VerificationAttemptRow
from src.domains.risk.models import ActionTaken, AssessmentSource, RiskAssessment, RiskLevel
from src.domains.verification.models import VerificationAttempt, VerificationMethod

from .errors import InvalidTransitionError, TransactionNotFoundError, TransitionConflictError
from .models import (
    STATE_STATUS,
    AssessmentRecord,
    AttemptState,
    PaymentMethod,
    PaymentProvider,
    SecurityChecks,
    Transaction,
    TransactionStatus,
    TransactionType,
    is_transition_allowed,
)

logger = structlog.get_logger()

HIGH_RISK_LEVELS = (RiskLevel.HIGH, RiskLevel.CRITICAL)


class TransactionStore(Protocol):
    async def create(self, transaction: Transaction) -> Transaction: ...

    async def get_by_reference(self, reference: str) -> Transaction | None: ...

    async def load(self, reference: str) -> Transaction: ...

    async def compare_and_swap_status(
        self,
        reference: str,
        expected: AttemptState,
        new: AttemptState,
        **changes: Any,
    ) -> Transaction: ...

    async def append_assessment(self, record: AssessmentRecord) -> None: ...

    async def list_assessments(self, reference: str) -> list[AssessmentRecord]: ...

    async def append_verification(self, reference: str, attempt: VerificationAttempt) -> None: ...

    async def list_verifications(self, reference: str) -> list[VerificationAttempt]: ...

    async def list_high_risk(self) -> list[Transaction]: ...

    async def claim_gateway_call(self, reference: str, lease_seconds: float) -> bool: ...

    async def release_gateway_call(self, reference: str) -> None: ...


def check_transition(current: Transaction, expected: AttemptState, new: AttemptState) -> None:
    if current.attempt_state != expected:
        if current.is_terminal:
            raise InvalidTransitionError(
                f"{current.reference} is terminal ({current.attempt_state.value})"
            )
        raise TransitionConflictError(
            f"{current.reference} is {current.attempt_state.value}, expected {expected.value}"
        )
    if not is_transition_allowed(expected, new):
        raise InvalidTransitionError(f"{expected.value} -> {new.value} is not a valid transition")


def _resolve_changes(new: AttemptState, changes: dict[str, Any]) -> dict[str, Any]:
    resolved = dict(changes)
    resolved.setdefault("status", STATE_STATUS[new])
    resolved["attempt_state"] = new
    resolved["updated_at"] = datetime.now(UTC)
    return resolved


def _claimable(current: Transaction, now: datetime, lease_seconds: float) -> bool:
    if current.attempt_state != AttemptState.PROCEEDING:
        return False
    started = current.gateway_call_started_at
    return started is None or started < now - timedelta(seconds=lease_seconds)


class InMemoryTransactionStore:
    """Process-local store. One lock serializes every read-check-write."""

    def __init__(self) -> None:
        self._transactions: dict[str, Transaction] = {}
        self._assessments: dict[str, list[AssessmentRecord]] = {}
        self._verifications: dict[str, list[VerificationAttempt]] = {}
        self._lock = asyncio.Lock()

    async def create(self, transaction: Transaction) -> Transaction:
        async with self._lock:
            if transaction.reference in self._transactions:
                raise TransitionConflictError(f"{transaction.reference} already exists")
            self._transactions[transaction.reference] = transaction
        return transaction

    async def get_by_reference(self, reference: str) -> Transaction | None:
        return self._transactions.get(reference)

    async def load(self, reference: str) -> Transaction:
        transaction = self._transactions.get(reference)
        if transaction is None:
            raise TransactionNotFoundError(reference)
        return transaction

    async def compare_and_swap_status(
        self,
        reference: str,
        expected: AttemptState,
        new: AttemptState,
        **changes: Any,
    ) -> Transaction:
        async with self._lock:
            current = await self.load(reference)
            check_transition(current, expected, new)
            updated = current.model_copy(update=_resolve_changes(new, changes))
            self._transactions[reference] = updated
        return updated

    async def append_assessment(self, record: AssessmentRecord) -> None:
        async with self._lock:
            self._assessments.setdefault(record.reference, []).append(record)

    async def list_assessments(self, reference: str) -> list[AssessmentRecord]:
        return list(self._assessments.get(reference, []))

    async def append_verification(self, reference: str, attempt: VerificationAttempt) -> None:
        async with self._lock:
            self._verifications.setdefault(reference, []).append(attempt)

    async def list_verifications(self, reference: str) -> list[VerificationAttempt]:
        return list(self._verifications.get(reference, []))

    async def list_high_risk(self) -> list[Transaction]:
        return [t for t in self._transactions.values() if t.risk_level in HIGH_RISK_LEVELS]

    async def claim_gateway_call(self, reference: str, lease_seconds: float) -> bool:
        async with self._lock:
            current = await self.load(reference)
            now = datetime.now(UTC)
            if not _claimable(current, now, lease_seconds):
                return False
            self._transactions[reference] = current.model_copy(
                update={"gateway_call_started_at": now}
            )
        return True

    async def release_gateway_call(self, reference: str) -> None:
        async with self._lock:
            current = self._transactions.get(reference)
            if current is not None:
                self._transactions[reference] = current.model_copy(
                    update={"gateway_call_started_at": None}
                )


def _row_to_transaction(row: PaymentTransactionRow) -> Transaction:
    return Transaction(
        id=row.transaction_id,
        user_id=row.user_id,
        property_id=row.property_id,
        amount=row.amount,
        currency=row.currency,
        type=TransactionType(row.type),
        status=TransactionStatus(row.status),
        provider=PaymentProvider(row.provider),
        method=PaymentMethod(row.method),
        reference=row.reference,
        description=row.description,
        date=row.created_at,
        receipt_url=row.receipt_url,
        risk_level=RiskLevel(row.risk_level) if row.risk_level else None,
        risk_score=row.risk_score,
        risk_factors=row.risk_factors,
        attempt_state=AttemptState(row.attempt_state),
        security_verified=row.security_verified,
        verification_method=row.verification_method,
        verified_at=row.verified_at,
        security_checks=(
            SecurityChecks.model_validate(row.security_checks) if row.security_checks else None
        ),
        gateway_call_started_at=row.gateway_call_started_at,
        metadata=row.details or {},
        updated_at=row.updated_at,
    )


def _to_columns(changes: dict[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for key, value in changes.items():
        if key == "metadata":
            columns["details"] = value
        elif isinstance(value, SecurityChecks):
            columns[key] = value.model_dump(mode="json", by_alias=True)
        elif hasattr(value, "value"):
            columns[key] = value.value
        else:
            columns[key] = value
    return columns


class SqlTransactionStore:
    """Postgres-backed store; CAS is a conditional UPDATE on attempt_state."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, transaction: Transaction) -> Transaction:
        row = PaymentTransactionRow(
            transaction_id=transaction.id,
            reference=transaction.reference,
            user_id=transaction.user_id,
            property_id=transaction.property_id,
            amount=transaction.amount,
            currency=transaction.currency,
            type=transaction.type.value,
            method=transaction.method.value,
            provider=transaction.provider.value,
            status=transaction.status.value,
            attempt_state=transaction.attempt_state.value,
            description=transaction.description,
            details=transaction.metadata,
            created_at=transaction.date,
            updated_at=transaction.updated_at,
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise TransitionConflictError(f"{transaction.reference} already exists") from exc
        return transaction

    async def get_by_reference(self, reference: str) -> Transaction | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentTransactionRow).where(PaymentTransactionRow.reference == reference)
            )
            row = result.scalar_one_or_none()
        return _row_to_transaction(row) if row else None

    async def load(self, reference: str) -> Transaction:
        transaction = await self.get_by_reference(reference)
        if transaction is None:
            raise TransactionNotFoundError(reference)
        return transaction

    async def compare_and_swap_status(
        self,
        reference: str,
        expected: AttemptState,
        new: AttemptState,
        **changes: Any,
    ) -> Transaction:
        if not is_transition_allowed(expected, new):
            raise InvalidTransitionError(
                f"{expected.value} -> {new.value} is not a valid transition"
            )

        stmt = (
            update(PaymentTransactionRow)
            .where(
                PaymentTransactionRow.reference == reference,
                PaymentTransactionRow.attempt_state == expected.value,
            )
            .values(**_to_columns(_resolve_changes(new, changes)))
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await session.rollback()
                current = await self.load(reference)
                check_transition(current, expected, new)
                # State matched on re-read but the UPDATE lost the race
                raise TransitionConflictError(f"{reference} changed concurrently")
            await session.commit()

        logger.debug("transaction_cas_applied", reference=reference, new_state=new.value)
        return await self.load(reference)

    async def append_assessment(self, record: AssessmentRecord) -> None:
        assessment = record.assessment
        async with self._session_factory() as session:
            session.add(
                RiskAssessmentRow(
                    transaction_id=record.transaction_id,
                    reference=record.reference,
                    risk_score=assessment.risk_score,
                    risk_level=assessment.risk_level.value,
                    risk_factors=assessment.risk_factors,
                    is_likely_fraud=assessment.is_likely_fraud,
                    recommended_action=assessment.recommended_action.value,
                    action_taken=record.action_taken.value,
                    source=assessment.source.value,
                    review_notes=record.review_notes,
                    detected_at=record.detected_at,
                )
            )
            await session.commit()

    async def list_assessments(self, reference: str) -> list[AssessmentRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RiskAssessmentRow)
                .where(RiskAssessmentRow.reference == reference)
                .order_by(RiskAssessmentRow.id)
            )
            rows = result.scalars().all()
        return [
            AssessmentRecord(
                transaction_id=row.transaction_id,
                reference=row.reference,
                assessment=RiskAssessment(
                    risk_level=row.risk_level,
                    risk_score=row.risk_score,
                    risk_factors=row.risk_factors,
                    is_likely_fraud=row.is_likely_fraud,
                    recommended_action=row.recommended_action,
                    source=AssessmentSource(row.source),
                ),
                action_taken=ActionTaken(row.action_taken),
                detected_at=row.detected_at,
                review_notes=row.review_notes,
            )
            for row in rows
        ]

    async def append_verification(self, reference: str, attempt: VerificationAttempt) -> None:
        async with self._session_factory() as session:
            session.add(
                VerificationAttemptRow(
                    verification_id=attempt.verification_id,
                    reference=reference,
                    method=attempt.method.value,
                    verified=attempt.verified,
                    confidence_score=attempt.confidence_score,
                    failure_reason=attempt.failure_reason,
                    created_at=attempt.created_at,
                )
            )
            await session.commit()

    async def list_verifications(self, reference: str) -> list[VerificationAttempt]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(VerificationAttemptRow)
                .where(VerificationAttemptRow.reference == reference)
                .order_by(VerificationAttemptRow.id)
            )
            rows = result.scalars().all()
        return [
            VerificationAttempt(
                verification_id=row.verification_id,
                method=VerificationMethod(row.method),
                verified=row.verified,
                confidence_score=row.confidence_score,
                failure_reason=row.failure_reason,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def list_high_risk(self) -> list[Transaction]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentTransactionRow)
                .where(
                    PaymentTransactionRow.risk_level.in_([lvl.value for lvl in HIGH_RISK_LEVELS])
                )
                .order_by(PaymentTransactionRow.created_at.desc())
            )
            rows = result.scalars().all()
        return [_row_to_transaction(row) for row in rows]

    async def claim_gateway_call(self, reference: str, lease_seconds: float) -> bool:
        now = datetime.now(UTC)
        stale = now - timedelta(seconds=lease_seconds)
        stmt = (
            update(PaymentTransactionRow)
            .where(
                PaymentTransactionRow.reference == reference,
                PaymentTransactionRow.attempt_state == AttemptState.PROCEEDING.value,
                or_(
                    PaymentTransactionRow.gateway_call_started_at.is_(None),
                    PaymentTransactionRow.gateway_call_started_at < stale,
                ),
            )
            .values(gateway_call_started_at=now)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        claimed = result.rowcount == 1
        logger.debug("gateway_call_claim", reference=reference, claimed=claimed)
        return claimed

    async def release_gateway_call(self, reference: str) -> None:
        stmt = (
            update(PaymentTransactionRow)
            .where(PaymentTransactionRow.reference == reference)
            .values(gateway_call_started_at=None)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
