"""FastAPI application entry point for Checkout Guard."""

import asyncio
import contextlib
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.dependencies import build_services
from src.api.middleware.error_handler import global_exception_handler, payment_error_handler
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.behavior import router as behavior_router
from src.api.routes.health import router as health_router
from src.api.routes.payments import router as payments_router
from src.config import settings
from src.domains.payments.errors import PaymentError
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level)

    logger.info(
        "checkout_guard_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        store_backend=settings.transaction_store_backend,
    )

    if settings.transaction_store_backend == "postgres":
        from src.db.database import init_db

        await init_db()

    producer = None
    consumer = None
    consumer_task: asyncio.Task | None = None
    if settings.kafka_alerts_enabled:
        try:
            from src.shared.kafka_utils import create_producer

            producer = await create_producer(settings.kafka_bootstrap_servers)
        except Exception:
            logger.warning("kafka_producer_failed_to_start", exc_info=True)

    services = build_services(settings, producer=producer)
    app.state.services = services

    if settings.kafka_alerts_enabled:
        from src.consumers.activity_consumer import ActivityConsumer

        consumer = ActivityConsumer(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            alerts=services.alerts,
            topic=settings.kafka_activity_topic,
            group_id=settings.kafka_consumer_group,
        )
        consumer_task = asyncio.create_task(consumer.start())
        logger.info("kafka_consumers_started", count=1)

    yield

    if consumer is not None:
        with contextlib.suppress(Exception):
            await consumer.stop()
    if consumer_task is not None:
        consumer_task.cancel()
    await services.aclose()
    if producer is not None:
        await producer.stop()
    if settings.transaction_store_backend == "postgres":
        from src.db.database import dispose_db

        await dispose_db()
    logger.info("checkout_guard_shutting_down")


app = FastAPI(
    title="Checkout Guard",
    description="Transaction risk assessment and verification for property payments",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(StructuredLoggingMiddleware)

app.add_exception_handler(PaymentError, payment_error_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.include_router(health_router)
app.include_router(payments_router)
app.include_router(behavior_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
