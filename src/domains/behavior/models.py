"""Pydantic models for behavior monitoring."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ActionType(StrEnum):
    LOGIN = "login"
    UPDATE_PROFILE = "update_profile"
    CHANGE_PASSWORD = "change_password"
    UPDATE_PAYMENT_METHOD = "update_payment_method"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_COMPLETED = "payment_completed"


ACCOUNT_MUTATING_ACTIONS: frozenset[str] = frozenset(
    {
        ActionType.UPDATE_PROFILE,
        ActionType.CHANGE_PASSWORD,
        ActionType.UPDATE_PAYMENT_METHOD,
    }
)


class BehaviorRiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class UserAction(BaseModel):
    # Open string: clients may report action types this service does not score
    type: str
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=UTC)

    @property
    def location(self) -> str | None:
        location = self.details.get("location")
        return str(location) if location else None


class BehaviorReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    suspicious_activity: bool = Field(alias="suspiciousActivity")
    suspicious_actions: list[str] = Field(alias="suspiciousActions", default_factory=list)
    risk_level: BehaviorRiskLevel = Field(alias="riskLevel")
