"""Deterministic risk rules.

Each rule fires independently and contributes a fixed weight plus one
human-readable factor. Rules run in ALL_RULES order, which is also the order
factors appear in the assessment.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from src.domains.payments.models import PaymentMethod, Transaction

from .config import RiskConfig
from .models import PropertyFacts, RuleResult, UserProfile

SECONDS_PER_DAY = 86_400


class RiskRule(ABC):
    rule_id: str
    risk_factor: str

    @abstractmethod
    def evaluate(
        self,
        transaction: Transaction,
        user: UserProfile,
        property: PropertyFacts | None,
        config: RiskConfig,
        now: datetime,
    ) -> RuleResult:
        ...

    def _not_triggered(self) -> RuleResult:
        return RuleResult(rule_name=self.rule_id, triggered=False)

    def _triggered(self, score: int, evidence: dict | None = None) -> RuleResult:
        return RuleResult(
            rule_name=self.rule_id,
            triggered=True,
            score=score,
            risk_factor=self.risk_factor,
            evidence=evidence or {},
        )


class PropertyPriceOverageRule(RiskRule):
    """Amount is more than 10% above the referenced property's price."""

    rule_id = "property_price_overage"
    risk_factor = "Transaction amount significantly exceeds property price"

    def evaluate(self, transaction, user, property, config, now) -> RuleResult:
        if property is None:
            return self._not_triggered()

        limit = property.price * config.thresholds.property_overage_ratio
        if transaction.amount <= limit:
            return self._not_triggered()

        return self._triggered(
            config.weights.property_overage,
            evidence={"amount": transaction.amount, "property_price": property.price},
        )


class NewAccountLargeAmountRule(RiskRule):
    rule_id = "new_account_large_amount"
    risk_factor = "New account making large transaction"

    def evaluate(self, transaction, user, property, config, now) -> RuleResult:
        if user.created_at is None:
            return self._not_triggered()

        age_days = (now - user.created_at).total_seconds() / SECONDS_PER_DAY
        if age_days >= config.thresholds.new_account_days:
            return self._not_triggered()
        if transaction.amount <= config.thresholds.new_account_amount:
            return self._not_triggered()

        return self._triggered(
            config.weights.new_account_large_amount,
            evidence={"account_age_days": round(age_days, 2), "amount": transaction.amount},
        )


class LargeNonBankTransferRule(RiskRule):
    rule_id = "large_non_bank_transfer"
    risk_factor = "Large amount using non-bank transfer method"

    def evaluate(self, transaction, user, property, config, now) -> RuleResult:
        if transaction.amount <= config.thresholds.large_amount:
            return self._not_triggered()
        if transaction.method == PaymentMethod.BANK_TRANSFER:
            return self._not_triggered()

        return self._triggered(
            config.weights.large_non_bank_transfer,
            evidence={"amount": transaction.amount, "method": transaction.method.value},
        )


ALL_RULES: list[RiskRule] = [
    PropertyPriceOverageRule(),
    NewAccountLargeAmountRule(),
    LargeNonBankTransferRule(),
]
