"""Pydantic models for security alerts."""

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AlertType(StrEnum):
    FRAUD_DETECTED = "fraud_detected"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    VERIFICATION_REQUIRED = "verification_required"
    UNUSUAL_LOGIN = "unusual_login"


class SecurityAlert(BaseModel):
    """An emitted alert. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    alert_id: str = Field(default_factory=lambda: f"security_{uuid.uuid4().hex}")
    user_id: str
    alert_type: AlertType
    title: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_event(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "user_id": self.user_id,
            "alert_type": self.alert_type.value,
            "title": self.title,
            "message": self.message,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
        }
