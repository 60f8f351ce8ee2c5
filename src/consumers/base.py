"""Base Kafka consumer with JSON decoding, schema checks and event routing."""

import json
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from aiokafka import AIOKafkaConsumer

from src.shared.schemas import is_valid

logger = structlog.get_logger()

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]


class BaseConsumer:
    def __init__(
        self,
        topics: list[str],
        bootstrap_servers: str,
        group_id: str,
        handlers: dict[str, EventHandler] | None = None,
    ):
        self.topics = topics
        self.bootstrap_servers = bootstrap_servers
        self.group_id = group_id
        self.handlers: dict[str, EventHandler] = handlers or {}
        self._schemas: dict[str, dict] = {}
        self._consumer: AIOKafkaConsumer | None = None
        self._running = False

    def register_handler(
        self, event_type: str, handler: EventHandler, schema: dict | None = None
    ) -> None:
        self.handlers[event_type] = handler
        if schema is not None:
            self._schemas[event_type] = schema

    async def start(self) -> None:
        self._consumer = AIOKafkaConsumer(
            *self.topics,
            bootstrap_servers=self.bootstrap_servers,
            group_id=self.group_id,
            auto_offset_reset="latest",
            enable_auto_commit=True,
        )
        await self._consumer.start()
        self._running = True
        logger.info("consumer_started", topics=self.topics, group_id=self.group_id)
        try:
            async for msg in self._consumer:
                await self._process_message(msg)
        finally:
            await self._consumer.stop()

    async def _process_message(self, msg: Any) -> None:
        try:
            event = json.loads(msg.value.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.warning("undecodable_message_skipped", topic=msg.topic, offset=msg.offset)
            return

        await self.dispatch(event, topic=msg.topic, offset=msg.offset)

    async def dispatch(
        self, event: Any, topic: str | None = None, offset: int | None = None
    ) -> None:
        """Route one decoded event to its handler. Handler errors are logged, not raised."""
        if not isinstance(event, dict):
            logger.warning("non_object_event_skipped", topic=topic, offset=offset)
            return

        event_type = event.get("event_type", "unknown")
        handler = self.handlers.get(event_type)
        if handler is None:
            logger.debug("no_handler_for_event", event_type=event_type)
            return

        schema = self._schemas.get(event_type)
        if schema is not None and not is_valid(event, schema):
            logger.warning(
                "invalid_event_skipped",
                event_type=event_type,
                event_id=event.get("event_id"),
                topic=topic,
                offset=offset,
            )
            return

        try:
            await handler(event)
        except Exception:
            logger.exception("message_processing_error", topic=topic, offset=offset)

    async def stop(self) -> None:
        self._running = False
        if self._consumer:
            await self._consumer.stop()
            logger.info("consumer_stopped", topics=self.topics)
