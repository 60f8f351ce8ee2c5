"""Pydantic models for the risk domain."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendedAction(StrEnum):
    PROCEED = "proceed"
    REVIEW = "review"
    BLOCK = "block"


class ActionTaken(StrEnum):
    NONE = "none"
    FLAGGED = "flagged"
    BLOCKED = "blocked"


class AssessmentSource(StrEnum):
    RULES = "rules"
    ORACLE = "oracle"


# Upper bounds (inclusive) of each band; anything above HIGH_MAX is critical.
LOW_MAX = 20
MEDIUM_MAX = 40
HIGH_MAX = 60

_LEVEL_ACTIONS = {
    RiskLevel.LOW: RecommendedAction.PROCEED,
    RiskLevel.MEDIUM: RecommendedAction.PROCEED,
    RiskLevel.HIGH: RecommendedAction.REVIEW,
    RiskLevel.CRITICAL: RecommendedAction.BLOCK,
}

_ACTIONS_TAKEN = {
    RecommendedAction.PROCEED: ActionTaken.NONE,
    RecommendedAction.REVIEW: ActionTaken.FLAGGED,
    RecommendedAction.BLOCK: ActionTaken.BLOCKED,
}


def classify_risk_level(score: int) -> RiskLevel:
    if score > HIGH_MAX:
        return RiskLevel.CRITICAL
    if score > MEDIUM_MAX:
        return RiskLevel.HIGH
    if score > LOW_MAX:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def recommend_action(level: RiskLevel) -> RecommendedAction:
    return _LEVEL_ACTIONS[level]


def action_taken_for(action: RecommendedAction) -> ActionTaken:
    return _ACTIONS_TAKEN[action]


class UserProfile(BaseModel):
    """Facts about the paying user that risk scoring may look at."""

    id: str
    email: str | None = None
    name: str | None = None
    phone: str | None = None
    created_at: datetime | None = None
    verification_level: str | None = None
    transaction_history: list[str] = Field(default_factory=list)

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class PropertyFacts(BaseModel):
    id: str
    price: float = Field(gt=0)
    type: str | None = None
    location: str | None = None
    listed_by: str | None = None
    listed_at: datetime | None = None


class RuleResult(BaseModel):
    rule_name: str
    triggered: bool
    score: int = 0
    risk_factor: str | None = None
    evidence: dict = Field(default_factory=dict)


class RiskAssessment(BaseModel):
    """Score, band and recommendation for one payment attempt.

    Serializes to the camelCase JSON contract shared with the fraud oracle
    (``model_dump(by_alias=True)``). The band must agree with the score, and
    the fraud flag and recommended action must agree with the band; anything
    else fails validation.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    risk_level: RiskLevel = Field(alias="riskLevel")
    risk_score: int = Field(alias="riskScore", ge=0, le=100)
    risk_factors: list[str] = Field(alias="riskFactors", default_factory=list)
    is_likely_fraud: bool = Field(alias="isLikelyFraud")
    recommended_action: RecommendedAction = Field(alias="recommendedAction")
    source: AssessmentSource = Field(default=AssessmentSource.RULES, exclude=True)

    @model_validator(mode="after")
    def _check_consistency(self) -> "RiskAssessment":
        expected_level = classify_risk_level(self.risk_score)
        if self.risk_level != expected_level:
            raise ValueError(
                f"riskLevel {self.risk_level.value} does not match riskScore {self.risk_score}"
            )
        if self.is_likely_fraud != (self.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)):
            raise ValueError("isLikelyFraud disagrees with riskLevel")
        if self.recommended_action != recommend_action(self.risk_level):
            raise ValueError("recommendedAction disagrees with riskLevel")
        return self

    @classmethod
    def from_score(
        cls,
        score: int,
        risk_factors: list[str],
        source: AssessmentSource = AssessmentSource.RULES,
    ) -> "RiskAssessment":
        score = max(0, min(score, 100))
        level = classify_risk_level(score)
        return cls(
            risk_level=level,
            risk_score=score,
            risk_factors=list(risk_factors),
            is_likely_fraud=level in (RiskLevel.HIGH, RiskLevel.CRITICAL),
            recommended_action=recommend_action(level),
            source=source,
        )

    def to_contract(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
