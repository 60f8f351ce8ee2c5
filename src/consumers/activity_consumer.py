"""Consumer for user activity events feeding the behavior monitor."""

from typing import Any

import structlog

from src.domains.alerts.emitter import SecurityAlertEmitter
from src.domains.behavior.config import BehaviorConfig, default_config
from src.domains.behavior.models import UserAction
from src.domains.behavior.monitor import (
    BehaviorMonitor,
    BehaviorWindowRegistry,
    alert_if_suspicious,
)
from src.shared.schemas import USER_ACTIVITY_EVENT_SCHEMA

from .base import BaseConsumer

logger = structlog.get_logger()

USER_ACTION_EVENT = "user-action-performed"


class ActivityConsumer(BaseConsumer):
    """Appends each action to the user's window and re-runs the monitor.

    Only raises alerts; payment attempts are never touched from here.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        alerts: SecurityAlertEmitter,
        topic: str = "checkout.user.activity",
        group_id: str = "checkout-guard",
        config: BehaviorConfig | None = None,
    ) -> None:
        super().__init__(
            topics=[topic],
            bootstrap_servers=bootstrap_servers,
            group_id=group_id,
        )
        self._config = config or default_config
        self._alerts = alerts
        self._monitor = BehaviorMonitor(self._config)
        self.windows = BehaviorWindowRegistry(self._config.window)
        self.register_handler(
            USER_ACTION_EVENT, self._handle_user_action, USER_ACTIVITY_EVENT_SCHEMA
        )

    async def _handle_user_action(self, event: dict[str, Any]) -> None:
        payload = event["payload"]
        user_id = payload["user_id"]
        action = UserAction(
            type=payload["action_type"],
            timestamp=payload["timestamp"],
            details=payload.get("details") or {},
        )
        window = self.windows.record(user_id, action)
        report = self._monitor.monitor(user_id, window.actions())

        flags = frozenset(report.suspicious_actions)
        if flags == window.last_flags:
            return
        window.last_flags = flags
        if alert_if_suspicious(self._alerts, user_id, report):
            logger.info(
                "activity_alert_raised",
                user_id=user_id,
                event_id=event.get("event_id"),
                risk_level=report.risk_level.value,
            )
