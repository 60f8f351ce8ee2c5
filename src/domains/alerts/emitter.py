"""Best-effort security alert emission.

``emit`` builds the alert synchronously and schedules delivery in the
background, so the caller never waits on a sink and never sees a sink error.
"""

import asyncio
import copy
from typing import Any

import structlog

from .catalog import render
from .models import AlertType, SecurityAlert
from .sinks import NotificationSink

logger = structlog.get_logger()


class SecurityAlertEmitter:
    def __init__(
        self,
        sinks: list[NotificationSink],
        delivery_timeout_seconds: float = 5.0,
    ) -> None:
        self._sinks = list(sinks)
        self._timeout = delivery_timeout_seconds
        self._pending: set[asyncio.Task] = set()

    def emit(
        self,
        user_id: str,
        alert_type: AlertType,
        details: dict[str, Any] | None = None,
    ) -> SecurityAlert | None:
        """Build the alert and schedule delivery. Returns None if it could not be scheduled."""
        details = copy.deepcopy(dict(details or {}))
        title, message = render(alert_type, details)
        alert = SecurityAlert(
            user_id=user_id,
            alert_type=alert_type,
            title=title,
            message=message,
            details={"alertType": alert_type.value, **details},
        )

        try:
            task = asyncio.get_running_loop().create_task(self._deliver(alert))
        except RuntimeError:
            logger.error("security_alert_not_scheduled", alert_id=alert.alert_id)
            return None

        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.info(
            "security_alert_emitted",
            alert_id=alert.alert_id,
            user_id=user_id,
            alert_type=alert_type.value,
        )
        return alert.model_copy(deep=True)

    async def _deliver(self, alert: SecurityAlert) -> None:
        for sink in self._sinks:
            try:
                async with asyncio.timeout(self._timeout):
                    # Each sink gets its own copy; the emitted alert stays as built
                    await sink.deliver(alert.model_copy(deep=True))
            except Exception:
                logger.exception(
                    "security_alert_delivery_failed",
                    alert_id=alert.alert_id,
                    sink=type(sink).__name__,
                )

    async def drain(self) -> None:
        """Wait for scheduled deliveries; used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
