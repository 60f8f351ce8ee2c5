"""Tests for the JSON schemas guarding untrusted payloads."""

import jsonschema
import pytest

from src.shared.schemas import (
    RISK_ASSESSMENT_SCHEMA,
    USER_ACTIVITY_EVENT_SCHEMA,
    is_valid,
    validate_payload,
)

VALID_ASSESSMENT = {
    "riskLevel": "medium",
    "riskScore": 30,
    "riskFactors": ["Transaction amount significantly exceeds property price"],
    "isLikelyFraud": False,
    "recommendedAction": "proceed",
}


class TestRiskAssessmentSchema:
    def test_valid_payload(self):
        validate_payload(VALID_ASSESSMENT, RISK_ASSESSMENT_SCHEMA)

    @pytest.mark.parametrize(
        "override",
        [
            {"riskLevel": "severe"},
            {"riskScore": "30"},
            {"riskScore": -1},
            {"riskFactors": "one factor"},
            {"isLikelyFraud": "no"},
            {"recommendedAction": "escalate"},
        ],
    )
    def test_invalid_values(self, override):
        with pytest.raises(jsonschema.ValidationError):
            validate_payload({**VALID_ASSESSMENT, **override}, RISK_ASSESSMENT_SCHEMA)

    def test_keys_are_case_sensitive(self):
        payload = {k.lower(): v for k, v in VALID_ASSESSMENT.items()}
        assert is_valid(payload, RISK_ASSESSMENT_SCHEMA) is False


class TestUserActivitySchema:
    def test_valid_event(self):
        event = {
            "event_type": "user-action-performed",
            "payload": {
                "user_id": "user-1",
                "action_type": "login",
                "timestamp": "2026-03-02T12:00:00+00:00",
            },
        }
        assert is_valid(event, USER_ACTIVITY_EVENT_SCHEMA) is True

    def test_other_event_type_rejected(self):
        event = {"event_type": "user-registered", "payload": {}}
        assert is_valid(event, USER_ACTIVITY_EVENT_SCHEMA) is False
