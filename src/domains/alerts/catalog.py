"""Static alert template catalog: alert type -> title and message."""

from dataclasses import dataclass, field
from typing import Any

from .models import AlertType


@dataclass(frozen=True)
class AlertTemplate:
    title: str
    message: str
    # Placeholder values used when the alert details do not supply one
    defaults: dict[str, str] = field(default_factory=dict)


ALERT_TEMPLATES: dict[AlertType, AlertTemplate] = {
    AlertType.FRAUD_DETECTED: AlertTemplate(
        title="Potential Fraud Detected",
        message=(
            "We've detected potentially fraudulent activity related to {transactionType}. "
            "Please review and contact support if needed."
        ),
        defaults={"transactionType": "a transaction"},
    ),
    AlertType.SUSPICIOUS_ACTIVITY: AlertTemplate(
        title="Suspicious Account Activity",
        message=(
            "Unusual activity has been detected on your account. Please verify recent actions."
        ),
    ),
    AlertType.VERIFICATION_REQUIRED: AlertTemplate(
        title="Verification Required",
        message="Additional verification is required to complete your recent transaction.",
    ),
    AlertType.UNUSUAL_LOGIN: AlertTemplate(
        title="Unusual Login Detected",
        message=(
            "Login detected from {location}. If this wasn't you, please secure your account."
        ),
        defaults={"location": "an unusual location"},
    ),
}


class _TemplateValues(dict):
    def __init__(self, defaults: dict[str, str], details: dict[str, Any]) -> None:
        super().__init__(defaults)
        self.update({k: v for k, v in details.items() if v not in (None, "")})

    def __missing__(self, key: str) -> str:
        return ""


def render(alert_type: AlertType, details: dict[str, Any]) -> tuple[str, str]:
    template = ALERT_TEMPLATES[alert_type]
    message = template.message.format_map(_TemplateValues(template.defaults, details))
    return template.title, message
