"""Rule-based risk evaluator; also the fallback for the fraud oracle."""

from datetime import UTC, datetime

from src.domains.payments.models import Transaction

from .config import RiskConfig, default_config
from .models import AssessmentSource, PropertyFacts, RiskAssessment, UserProfile
from .rules import ALL_RULES, RiskRule


class RiskEvaluator:
    """Additive scoring over ALL_RULES.

    Pure and deterministic for a fixed ``now``: no I/O, no randomness, and no
    failure path. Scores are clamped to 0-100 before banding.
    """

    def __init__(
        self,
        config: RiskConfig | None = None,
        rules: list[RiskRule] | None = None,
    ) -> None:
        self._config = config or default_config
        self._rules = list(rules) if rules is not None else list(ALL_RULES)

    def evaluate(
        self,
        transaction: Transaction,
        user: UserProfile,
        property: PropertyFacts | None = None,
        *,
        now: datetime | None = None,
    ) -> RiskAssessment:
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        score = 0
        factors: list[str] = []

        for rule in self._rules:
            result = rule.evaluate(transaction, user, property, self._config, now)
            if result.triggered:
                score += result.score
                factors.append(result.risk_factor or result.rule_name)

        return RiskAssessment.from_score(score, factors, source=AssessmentSource.RULES)
