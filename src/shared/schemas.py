"""JSON Schemas for payloads crossing a trust boundary.

The fraud oracle's answer and user-activity events from Kafka are both
validated here before any pydantic model is built from them.
"""

import jsonschema
import structlog

logger = structlog.get_logger()

RISK_ASSESSMENT_SCHEMA: dict = {
    "type": "object",
    "required": [
        "riskLevel",
        "riskScore",
        "riskFactors",
        "isLikelyFraud",
        "recommendedAction",
    ],
    "properties": {
        "riskLevel": {"type": "string", "enum": ["low", "medium", "high", "critical"]},
        "riskScore": {"type": "integer", "minimum": 0, "maximum": 100},
        "riskFactors": {"type": "array", "items": {"type": "string"}},
        "isLikelyFraud": {"type": "boolean"},
        "recommendedAction": {"type": "string", "enum": ["proceed", "review", "block"]},
    },
}

USER_ACTIVITY_EVENT_SCHEMA: dict = {
    "type": "object",
    "required": ["event_type", "payload"],
    "properties": {
        "event_id": {"type": "string"},
        "event_type": {"type": "string", "const": "user-action-performed"},
        "payload": {
            "type": "object",
            "required": ["user_id", "action_type", "timestamp"],
            "properties": {
                "user_id": {"type": "string"},
                "action_type": {"type": "string"},
                "timestamp": {"type": "string"},
                "details": {"type": "object"},
            },
        },
    },
}


def validate_payload(payload: object, schema: dict) -> None:
    """Raise jsonschema.ValidationError if ``payload`` does not match ``schema``."""
    jsonschema.validate(instance=payload, schema=schema)


def is_valid(payload: object, schema: dict) -> bool:
    try:
        validate_payload(payload, schema)
    except jsonschema.ValidationError as exc:
        logger.debug("payload_schema_mismatch", error=exc.message)
        return False
    return True
