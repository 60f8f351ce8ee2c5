"""Tests for transaction stores and their compare-and-swap semantics."""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from src.db.models import PaymentTransactionRow
from src.domains.payments.errors import (
    InvalidTransitionError,
    TransactionNotFoundError,
    TransitionConflictError,
)
from src.domains.payments.models import (
    AssessmentRecord,
    AttemptState,
    Transaction,
    TransactionStatus,
)
from src.domains.payments.store import InMemoryTransactionStore, SqlTransactionStore
from src.domains.risk.models import ActionTaken, RiskAssessment, RiskLevel
from tests.fakes import NOW, make_intent


def _transaction(reference: str = "ref-000001") -> Transaction:
    return Transaction.from_intent("tx-1", make_intent(reference=reference))


class TestInMemoryTransactionStore:
    @pytest.mark.asyncio
    async def test_create_and_load(self, store):
        await store.create(_transaction())
        loaded = await store.load("ref-000001")
        assert loaded.attempt_state == AttemptState.INITIATED
        assert loaded.status == TransactionStatus.PENDING

    @pytest.mark.asyncio
    async def test_duplicate_reference_is_rejected(self, store):
        await store.create(_transaction())
        with pytest.raises(TransitionConflictError):
            await store.create(_transaction())

    @pytest.mark.asyncio
    async def test_load_missing_raises(self, store):
        with pytest.raises(TransactionNotFoundError):
            await store.load("ref-missing")
        assert await store.get_by_reference("ref-missing") is None

    @pytest.mark.asyncio
    async def test_cas_applies_changes_and_derived_status(self, store):
        await store.create(_transaction())
        updated = await store.compare_and_swap_status(
            "ref-000001",
            AttemptState.INITIATED,
            AttemptState.RISK_EVALUATED,
            risk_level=RiskLevel.HIGH,
            risk_score=48,
        )
        assert updated.attempt_state == AttemptState.RISK_EVALUATED
        assert updated.risk_score == 48
        assert updated.status == TransactionStatus.PENDING

        blocked = await store.compare_and_swap_status(
            "ref-000001", AttemptState.RISK_EVALUATED, AttemptState.BLOCKED
        )
        assert blocked.status == TransactionStatus.FLAGGED

    @pytest.mark.asyncio
    async def test_status_override_wins(self, store):
        await store.create(_transaction())
        for old, new in [
            (AttemptState.INITIATED, AttemptState.RISK_EVALUATED),
            (AttemptState.RISK_EVALUATED, AttemptState.PROCEEDING),
        ]:
            await store.compare_and_swap_status("ref-000001", old, new)
        failed = await store.compare_and_swap_status(
            "ref-000001",
            AttemptState.PROCEEDING,
            AttemptState.FAILED,
            status=TransactionStatus.FLAGGED,
        )
        assert failed.status == TransactionStatus.FLAGGED

    @pytest.mark.asyncio
    async def test_stale_expected_state_is_a_conflict(self, store):
        await store.create(_transaction())
        await store.compare_and_swap_status(
            "ref-000001", AttemptState.INITIATED, AttemptState.RISK_EVALUATED
        )
        with pytest.raises(TransitionConflictError):
            await store.compare_and_swap_status(
                "ref-000001", AttemptState.INITIATED, AttemptState.RISK_EVALUATED
            )

    @pytest.mark.asyncio
    async def test_disallowed_transition_is_invalid(self, store):
        await store.create(_transaction())
        with pytest.raises(InvalidTransitionError):
            await store.compare_and_swap_status(
                "ref-000001", AttemptState.INITIATED, AttemptState.COMPLETED
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "terminal",
        [AttemptState.BLOCKED, AttemptState.CANCELLED],
    )
    async def test_terminal_state_accepts_no_transition(self, store, terminal):
        await store.create(_transaction())
        await store.compare_and_swap_status(
            "ref-000001", AttemptState.INITIATED, AttemptState.RISK_EVALUATED
        )
        await store.compare_and_swap_status("ref-000001", AttemptState.RISK_EVALUATED, terminal)
        for target in AttemptState:
            with pytest.raises(InvalidTransitionError):
                await store.compare_and_swap_status("ref-000001", terminal, target)
        with pytest.raises(InvalidTransitionError):
            await store.compare_and_swap_status(
                "ref-000001", AttemptState.RISK_EVALUATED, AttemptState.PROCEEDING
            )

    @pytest.mark.asyncio
    async def test_concurrent_cas_has_exactly_one_winner(self, store):
        await store.create(_transaction())
        await store.compare_and_swap_status(
            "ref-000001", AttemptState.INITIATED, AttemptState.RISK_EVALUATED
        )
        results = await asyncio.gather(
            store.compare_and_swap_status(
                "ref-000001", AttemptState.RISK_EVALUATED, AttemptState.PROCEEDING
            ),
            store.compare_and_swap_status(
                "ref-000001", AttemptState.RISK_EVALUATED, AttemptState.CANCELLED
            ),
            return_exceptions=True,
        )
        winners = [r for r in results if isinstance(r, Transaction)]
        losers = [r for r in results if isinstance(r, TransitionConflictError)]
        assert len(winners) == 1
        assert len(losers) == 1

    @pytest.mark.asyncio
    async def test_audit_trail_and_high_risk_listing(self, store):
        await store.create(_transaction("ref-000001"))
        await store.create(_transaction("ref-000002"))
        assessment = RiskAssessment.from_score(55, ["New account making large transaction"])
        await store.append_assessment(
            AssessmentRecord(
                transaction_id="tx-1",
                reference="ref-000001",
                assessment=assessment,
                action_taken=ActionTaken.FLAGGED,
            )
        )
        await store.compare_and_swap_status(
            "ref-000001",
            AttemptState.INITIATED,
            AttemptState.RISK_EVALUATED,
            risk_level=assessment.risk_level,
        )

        records = await store.list_assessments("ref-000001")
        assert [r.action_taken for r in records] == [ActionTaken.FLAGGED]
        high_risk = await store.list_high_risk()
        assert [t.reference for t in high_risk] == ["ref-000001"]

    @pytest.mark.asyncio
    async def test_gateway_claim_is_exclusive_until_released(self, store):
        await _proceeding(store)

        assert await store.claim_gateway_call("ref-000001", lease_seconds=60) is True
        assert await store.claim_gateway_call("ref-000001", lease_seconds=60) is False
        assert (await store.load("ref-000001")).gateway_call_started_at is not None

        await store.release_gateway_call("ref-000001")
        assert (await store.load("ref-000001")).gateway_call_started_at is None
        assert await store.claim_gateway_call("ref-000001", lease_seconds=60) is True

    @pytest.mark.asyncio
    async def test_concurrent_gateway_claims_have_one_winner(self, store):
        await _proceeding(store)
        claims = await asyncio.gather(
            store.claim_gateway_call("ref-000001", lease_seconds=60),
            store.claim_gateway_call("ref-000001", lease_seconds=60),
        )
        assert sorted(claims) == [False, True]

    @pytest.mark.asyncio
    async def test_abandoned_gateway_claim_expires(self, store):
        await _proceeding(store)
        assert await store.claim_gateway_call("ref-000001", lease_seconds=60) is True
        # A lease that has already run out treats the earlier claim as abandoned
        assert await store.claim_gateway_call("ref-000001", lease_seconds=-1) is True

    @pytest.mark.asyncio
    async def test_gateway_claim_needs_a_proceeding_attempt(self, store):
        await store.create(_transaction())
        assert await store.claim_gateway_call("ref-000001", lease_seconds=60) is False


async def _proceeding(store) -> None:
    await store.create(_transaction())
    await store.compare_and_swap_status(
        "ref-000001", AttemptState.INITIATED, AttemptState.RISK_EVALUATED
    )
    await store.compare_and_swap_status(
        "ref-000001", AttemptState.RISK_EVALUATED, AttemptState.PROCEEDING
    )


def _factory(session):
    @asynccontextmanager
    async def factory():
        yield session

    return factory


def _row(state: AttemptState) -> PaymentTransactionRow:
    return PaymentTransactionRow(
        transaction_id="tx-1",
        reference="ref-000001",
        user_id="user-1",
        property_id=None,
        amount=100.0,
        currency="USD",
        type="FULL_PAYMENT",
        method="CARD",
        provider="STRIPE",
        status="PENDING",
        attempt_state=state.value,
        description="Property payment",
        security_verified=False,
        details={},
        created_at=NOW,
        updated_at=NOW,
    )


def _result(rowcount: int = 0, row: PaymentTransactionRow | None = None) -> MagicMock:
    result = MagicMock()
    result.rowcount = rowcount
    result.scalar_one_or_none.return_value = row
    return result


class TestSqlTransactionStore:
    @pytest.mark.asyncio
    async def test_cas_success_commits_and_reloads(self):
        session = AsyncMock()
        session.add = MagicMock()
        session.execute = AsyncMock(
            side_effect=[_result(rowcount=1), _result(row=_row(AttemptState.RISK_EVALUATED))]
        )
        store = SqlTransactionStore(_factory(session))

        updated = await store.compare_and_swap_status(
            "ref-000001", AttemptState.INITIATED, AttemptState.RISK_EVALUATED
        )

        assert updated.attempt_state == AttemptState.RISK_EVALUATED
        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cas_with_no_matching_row_is_a_conflict(self):
        session = AsyncMock()
        session.execute = AsyncMock(
            side_effect=[_result(rowcount=0), _result(row=_row(AttemptState.PROCEEDING))]
        )
        store = SqlTransactionStore(_factory(session))

        with pytest.raises(TransitionConflictError):
            await store.compare_and_swap_status(
                "ref-000001", AttemptState.RISK_EVALUATED, AttemptState.VERIFYING
            )
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cas_against_terminal_row_is_invalid(self):
        session = AsyncMock()
        session.execute = AsyncMock(
            side_effect=[_result(rowcount=0), _result(row=_row(AttemptState.COMPLETED))]
        )
        store = SqlTransactionStore(_factory(session))

        with pytest.raises(InvalidTransitionError):
            await store.compare_and_swap_status(
                "ref-000001", AttemptState.PROCEEDING, AttemptState.FAILED
            )

    @pytest.mark.asyncio
    async def test_disallowed_transition_never_hits_the_database(self):
        session = AsyncMock()
        store = SqlTransactionStore(_factory(session))
        with pytest.raises(InvalidTransitionError):
            await store.compare_and_swap_status(
                "ref-000001", AttemptState.INITIATED, AttemptState.COMPLETED
            )
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_create_is_a_conflict(self):
        session = AsyncMock()
        session.add = MagicMock()
        session.commit = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("dup")))
        store = SqlTransactionStore(_factory(session))

        with pytest.raises(TransitionConflictError):
            await store.create(_transaction())
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("rowcount", "claimed"), [(1, True), (0, False)])
    async def test_gateway_claim_follows_the_conditional_update(self, rowcount, claimed):
        session = AsyncMock()
        session.execute = AsyncMock(return_value=_result(rowcount=rowcount))
        store = SqlTransactionStore(_factory(session))

        assert await store.claim_gateway_call("ref-000001", lease_seconds=60) is claimed
        statement = str(session.execute.await_args.args[0])
        assert "gateway_call_started_at" in statement
        assert "attempt_state" in statement
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gateway_release_clears_the_claim(self):
        session = AsyncMock()
        session.execute = AsyncMock(return_value=_result(rowcount=1))
        store = SqlTransactionStore(_factory(session))

        await store.release_gateway_call("ref-000001")

        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()
