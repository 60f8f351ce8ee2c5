"""Tests for the rule-based risk evaluator."""

import itertools
import random
from datetime import timedelta

import pytest

from src.domains.payments.models import PaymentMethod, Transaction
from src.domains.risk.config import RiskConfig
from src.domains.risk.evaluator import RiskEvaluator
from src.domains.risk.models import AssessmentSource, RecommendedAction, RiskLevel
from src.domains.risk.rules import (
    LargeNonBankTransferRule,
    NewAccountLargeAmountRule,
    PropertyPriceOverageRule,
)
from tests.fakes import NOW, make_intent, make_property, make_user

OVERAGE = "Transaction amount significantly exceeds property price"
NEW_ACCOUNT = "New account making large transaction"
NON_BANK = "Large amount using non-bank transfer method"

CONFIG = RiskConfig()


def _transaction(amount: float, method: PaymentMethod = PaymentMethod.BANK_TRANSFER) -> Transaction:
    return Transaction.from_intent("tx-1", make_intent(amount=amount, method=method))


def _user(age_days: float):
    return make_user(created_at=NOW - timedelta(days=age_days))


def _expected_band(score: int) -> tuple[RiskLevel, RecommendedAction]:
    if score > 60:
        return RiskLevel.CRITICAL, RecommendedAction.BLOCK
    if score > 40:
        return RiskLevel.HIGH, RecommendedAction.REVIEW
    if score > 20:
        return RiskLevel.MEDIUM, RecommendedAction.PROCEED
    return RiskLevel.LOW, RecommendedAction.PROCEED


class TestPropertyPriceOverageRule:
    rule = PropertyPriceOverageRule()

    def test_triggers_above_ten_percent(self):
        result = self.rule.evaluate(
            _transaction(560_000), _user(365), make_property(500_000), CONFIG, NOW
        )
        assert result.triggered
        assert result.score == 30
        assert result.risk_factor == OVERAGE

    def test_exactly_ten_percent_does_not_trigger(self):
        result = self.rule.evaluate(
            _transaction(550_000), _user(365), make_property(500_000), CONFIG, NOW
        )
        assert not result.triggered

    def test_no_property_does_not_trigger(self):
        result = self.rule.evaluate(_transaction(10_000_000), _user(365), None, CONFIG, NOW)
        assert not result.triggered


class TestNewAccountLargeAmountRule:
    rule = NewAccountLargeAmountRule()

    def test_triggers_for_young_account_and_large_amount(self):
        result = self.rule.evaluate(_transaction(10_001), _user(6.9), None, CONFIG, NOW)
        assert result.triggered
        assert result.score == 25
        assert result.evidence["account_age_days"] == pytest.approx(6.9)

    def test_seven_day_old_account_does_not_trigger(self):
        result = self.rule.evaluate(_transaction(20_000), _user(7), None, CONFIG, NOW)
        assert not result.triggered

    def test_amount_at_threshold_does_not_trigger(self):
        result = self.rule.evaluate(_transaction(10_000), _user(1), None, CONFIG, NOW)
        assert not result.triggered

    def test_unknown_account_age_does_not_trigger(self):
        user = make_user(created_at=None)
        result = self.rule.evaluate(_transaction(20_000), user, None, CONFIG, NOW)
        assert not result.triggered


class TestLargeNonBankTransferRule:
    rule = LargeNonBankTransferRule()

    @pytest.mark.parametrize(
        "method", [PaymentMethod.CARD, PaymentMethod.MOBILE_MONEY, PaymentMethod.WALLET]
    )
    def test_triggers_for_non_bank_methods(self, method):
        result = self.rule.evaluate(_transaction(50_001, method), _user(365), None, CONFIG, NOW)
        assert result.triggered
        assert result.score == 15

    def test_bank_transfer_does_not_trigger(self):
        result = self.rule.evaluate(_transaction(900_000), _user(365), None, CONFIG, NOW)
        assert not result.triggered


class TestRiskEvaluatorProperties:
    evaluator = RiskEvaluator()

    @pytest.mark.parametrize(
        "overage,new_account,non_bank,seed",
        [
            (*flags, seed)
            for flags in itertools.product([False, True], repeat=3)
            for seed in range(5)
        ],
    )
    def test_score_and_band_for_every_flag_combination(self, overage, new_account, non_bank, seed):
        rng = random.Random(seed)
        amount = round(rng.uniform(50_001, 900_000), 2)
        method = PaymentMethod.CARD if non_bank else PaymentMethod.BANK_TRANSFER
        price = amount / rng.uniform(1.11, 3.0) if overage else amount * rng.uniform(1.0, 2.0)
        age = rng.uniform(0.0, 6.9) if new_account else rng.uniform(8.0, 3_000.0)

        assessment = self.evaluator.evaluate(
            _transaction(amount, method), _user(age), make_property(price), now=NOW
        )

        expected_score = 30 * overage + 25 * new_account + 15 * non_bank
        assert 0 <= assessment.risk_score <= 100
        assert assessment.risk_score == expected_score
        level, action = _expected_band(expected_score)
        assert assessment.risk_level == level
        assert assessment.recommended_action == action
        assert assessment.is_likely_fraud == (level in (RiskLevel.HIGH, RiskLevel.CRITICAL))
        expected_factors = [
            factor
            for factor, fired in (
                (OVERAGE, overage),
                (NEW_ACCOUNT, new_account),
                (NON_BANK, non_bank),
            )
            if fired
        ]
        assert assessment.risk_factors == expected_factors
        assert assessment.source == AssessmentSource.RULES

    def test_deterministic_for_fixed_now(self):
        transaction = _transaction(75_000, PaymentMethod.CARD)
        user = _user(3)
        first = self.evaluator.evaluate(transaction, user, make_property(60_000), now=NOW)
        second = self.evaluator.evaluate(transaction, user, make_property(60_000), now=NOW)
        assert first == second

    def test_naive_now_is_treated_as_utc(self):
        transaction = _transaction(20_000)
        user = _user(2)
        aware = self.evaluator.evaluate(transaction, user, now=NOW)
        naive = self.evaluator.evaluate(transaction, user, now=NOW.replace(tzinfo=None))
        assert aware == naive

    def test_score_is_clamped_to_one_hundred(self):
        heavy = RiskConfig()
        heavy.weights.property_overage = 90
        heavy.weights.new_account_large_amount = 90
        evaluator = RiskEvaluator(config=heavy)
        assessment = evaluator.evaluate(
            _transaction(600_000), _user(1), make_property(500_000), now=NOW
        )
        assert assessment.risk_score == 100
        assert assessment.risk_level == RiskLevel.CRITICAL


class TestScenarios:
    evaluator = RiskEvaluator()

    def test_scenario_a_amount_over_property_price(self):
        assessment = self.evaluator.evaluate(
            _transaction(600_000), _user(365), make_property(500_000), now=NOW
        )
        assert assessment.risk_score >= 30
        assert assessment.risk_level in (RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)
        assert OVERAGE in assessment.risk_factors

    def test_scenario_b_new_account_large_amount(self):
        assessment = self.evaluator.evaluate(_transaction(15_000), _user(2), now=NOW)
        assert assessment.risk_score >= 25
        assert assessment.risk_level in (RiskLevel.MEDIUM, RiskLevel.HIGH)
        assert assessment.recommended_action in (
            RecommendedAction.REVIEW,
            RecommendedAction.PROCEED,
        )

    def test_scenario_c_large_card_payment_from_old_account(self):
        assessment = self.evaluator.evaluate(
            _transaction(60_000, PaymentMethod.CARD), _user(365), None, now=NOW
        )
        assert assessment.risk_score == 15
        assert assessment.risk_level == RiskLevel.LOW
        assert assessment.recommended_action == RecommendedAction.PROCEED
        assert assessment.risk_factors == [NON_BANK]

    def test_scenario_d_overage_and_new_account(self):
        assessment = self.evaluator.evaluate(
            _transaction(600_000), _user(1), make_property(500_000), now=NOW
        )
        assert assessment.risk_score == 55
        assert assessment.risk_level == RiskLevel.HIGH
        assert assessment.recommended_action == RecommendedAction.REVIEW
        assert assessment.is_likely_fraud is True
