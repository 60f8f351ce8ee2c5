"""Shared test fixtures for Checkout Guard tests."""

import os

import pytest

os.environ.setdefault("TRANSACTION_STORE_BACKEND", "memory")
os.environ.setdefault("KAFKA_ALERTS_ENABLED", "false")
os.environ.setdefault("SECURITY_TOKEN_SECRET", "test-secret")

from src.domains.alerts.emitter import SecurityAlertEmitter  # noqa: E402
from src.domains.payments.config import GatewaySettings, PaymentsConfig  # noqa: E402
from src.domains.payments.orchestrator import TransactionOrchestrator  # noqa: E402
from src.domains.payments.store import InMemoryTransactionStore  # noqa: E402
from src.domains.verification.tokens import SecurityTokenIssuer  # noqa: E402
from tests.fakes import (  # noqa: E402
    TOKEN_SECRET,
    RecordingSink,
    ScriptedGateway,
    ScriptedVerifier,
    offline_analyst,
)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def alerts(sink: RecordingSink) -> SecurityAlertEmitter:
    return SecurityAlertEmitter([sink])


@pytest.fixture
def store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def verifier() -> ScriptedVerifier:
    return ScriptedVerifier()


@pytest.fixture
def tokens() -> SecurityTokenIssuer:
    return SecurityTokenIssuer(TOKEN_SECRET, ttl_seconds=600)


@pytest.fixture
def payments_config() -> PaymentsConfig:
    # No real sleeping between gateway retries in tests
    return PaymentsConfig(
        max_verification_attempts=3,
        gateway=GatewaySettings(max_attempts=3, backoff_base_seconds=0.0, backoff_max_seconds=0.0),
    )


@pytest.fixture
def orchestrator(store, gateway, verifier, alerts, tokens, payments_config):
    return TransactionOrchestrator(
        store=store,
        analyst=offline_analyst(),
        verifier=verifier,
        gateway=gateway,
        alerts=alerts,
        tokens=tokens,
        config=payments_config,
    )
