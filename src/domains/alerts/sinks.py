"""Notification sinks that alerts are handed to."""

import json
from typing import Any, Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import SecurityAlertRow

from .models import SecurityAlert

logger = structlog.get_logger()


class NotificationSink(Protocol):
    async def deliver(self, alert: SecurityAlert) -> None: ...


class LogNotificationSink:
    async def deliver(self, alert: SecurityAlert) -> None:
        logger.warning(
            "security_alert",
            alert_id=alert.alert_id,
            user_id=alert.user_id,
            alert_type=alert.alert_type.value,
            title=alert.title,
        )


class KafkaNotificationSink:
    """Publishes alerts to Kafka, keyed by user so a user's alerts stay ordered.

    Args:
        producer: A started aiokafka AIOKafkaProducer with no value serializer.
        topic: Destination topic.
    """

    def __init__(self, producer: Any, topic: str) -> None:
        self._producer = producer
        self._topic = topic

    async def deliver(self, alert: SecurityAlert) -> None:
        await self._producer.send_and_wait(
            self._topic,
            value=json.dumps(alert.to_event(), default=str).encode("utf-8"),
            key=alert.user_id.encode("utf-8"),
        )
        logger.info("security_alert_published", alert_id=alert.alert_id, topic=self._topic)


class DatabaseNotificationSink:
    """Persists alerts so the notification service can pick them up."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def deliver(self, alert: SecurityAlert) -> None:
        async with self._session_factory() as session:
            session.add(
                SecurityAlertRow(
                    alert_id=alert.alert_id,
                    user_id=alert.user_id,
                    alert_type=alert.alert_type.value,
                    title=alert.title,
                    message=alert.message,
                    details=json.loads(json.dumps(alert.details, default=str)),
                    created_at=alert.created_at,
                )
            )
            await session.commit()
