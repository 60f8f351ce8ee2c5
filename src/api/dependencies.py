"""Builds the service graph the routes depend on.

The graph lives on ``app.state.services``; the lifespan builds it from
settings and tests install their own with fake collaborators.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from fastapi import Request

from src.config import Settings
from src.domains.alerts.emitter import SecurityAlertEmitter
from src.domains.alerts.sinks import (
    DatabaseNotificationSink,
    KafkaNotificationSink,
    LogNotificationSink,
    NotificationSink,
)
from src.domains.behavior.config import BehaviorConfig
from src.domains.behavior.monitor import BehaviorMonitor
from src.domains.payments.config import PaymentsConfig
from src.domains.payments.gateway import HttpPaymentGateway
from src.domains.payments.orchestrator import TransactionOrchestrator
from src.domains.payments.store import (
    InMemoryTransactionStore,
    SqlTransactionStore,
    TransactionStore,
)
from src.domains.risk.analyst import FraudAnalyst
from src.domains.risk.config import RiskConfig
from src.domains.verification.config import VerificationConfig
from src.domains.verification.tokens import SecurityTokenIssuer
from src.domains.verification.verifier import HttpIdentityVerifier


@dataclass
class Services:
    orchestrator: TransactionOrchestrator
    monitor: BehaviorMonitor
    alerts: SecurityAlertEmitter
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        await self.alerts.drain()
        for close in self.closers:
            await close()


def build_services(settings: Settings, producer: Any | None = None) -> Services:
    """Wire the production collaborators. ``producer`` enables Kafka alert delivery."""
    sinks: list[NotificationSink] = [LogNotificationSink()]
    store: TransactionStore
    if settings.transaction_store_backend == "postgres":
        from src.db.database import async_session_factory

        store = SqlTransactionStore(async_session_factory)
        sinks.append(DatabaseNotificationSink(async_session_factory))
    else:
        store = InMemoryTransactionStore()
    if producer is not None:
        sinks.append(KafkaNotificationSink(producer, settings.kafka_alerts_topic))
    alerts = SecurityAlertEmitter(sinks)

    risk_config = RiskConfig.from_env()
    risk_config.oracle.url = settings.fraud_oracle_url
    risk_config.oracle.timeout_seconds = settings.fraud_oracle_timeout_seconds

    verification_config = VerificationConfig.from_env()
    verification_config.service_url = settings.identity_verification_url
    verification_config.timeout_seconds = settings.identity_verification_timeout_seconds

    payments_config = PaymentsConfig.from_env()
    payments_config.gateway.url = settings.payment_gateway_url
    payments_config.gateway.timeout_seconds = settings.payment_gateway_timeout_seconds

    analyst = FraudAnalyst(config=risk_config)
    verifier = HttpIdentityVerifier(config=verification_config)
    gateway = HttpPaymentGateway(config=payments_config)
    tokens = SecurityTokenIssuer(
        settings.security_token_secret, ttl_seconds=settings.security_token_ttl_seconds
    )

    orchestrator = TransactionOrchestrator(
        store=store,
        analyst=analyst,
        verifier=verifier,
        gateway=gateway,
        alerts=alerts,
        tokens=tokens,
        config=payments_config,
    )
    return Services(
        orchestrator=orchestrator,
        monitor=BehaviorMonitor(BehaviorConfig.from_env()),
        alerts=alerts,
        closers=[analyst.aclose, verifier.aclose, gateway.aclose],
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
