"""Sliding-window behavior monitor.

Looks at a user's recent actions independently of any payment. It can raise
a suspicious-activity alert but never blocks or delays a payment attempt.
"""

import bisect
from collections import OrderedDict
from collections.abc import Sequence
from datetime import datetime, timedelta

import structlog

from src.domains.alerts.emitter import SecurityAlertEmitter
from src.domains.alerts.models import AlertType

from .config import BehaviorConfig, WindowConfig, default_config
from .models import (
    ACCOUNT_MUTATING_ACTIONS,
    ActionType,
    BehaviorReport,
    BehaviorRiskLevel,
    UserAction,
)

logger = structlog.get_logger()

MULTIPLE_ACCOUNT_CHANGES = "Multiple account changes in short period"
MULTIPLE_FAILED_PAYMENTS = "Multiple failed payment attempts"
MULTIPLE_LOCATIONS = "Access from multiple unusual locations"


class BehaviorWindow:
    """Bounded, time-ordered actions for one user."""

    def __init__(self, user_id: str, max_entries: int = 50, span: timedelta = timedelta(hours=24)):
        self.user_id = user_id
        self._max_entries = max_entries
        self._span = span
        self._actions: list[UserAction] = []
        # Flags from the last evaluation; repeated identical findings are not re-alerted
        self.last_flags: frozenset[str] = frozenset()

    def add(self, action: UserAction) -> None:
        bisect.insort(self._actions, action, key=lambda a: a.timestamp)
        if len(self._actions) > self._max_entries:
            del self._actions[: len(self._actions) - self._max_entries]

    def actions(self, now: datetime | None = None) -> list[UserAction]:
        if not self._actions:
            return []
        end = now or self._actions[-1].timestamp
        start = end - self._span
        return [a for a in self._actions if start <= a.timestamp <= end]

    def __len__(self) -> int:
        return len(self._actions)


class BehaviorWindowRegistry:
    """Per-user windows, evicting the least recently touched user past the cap."""

    def __init__(self, config: WindowConfig | None = None) -> None:
        self._config = config or default_config.window
        self._windows: OrderedDict[str, BehaviorWindow] = OrderedDict()

    def record(self, user_id: str, action: UserAction) -> BehaviorWindow:
        window = self._windows.get(user_id)
        if window is None:
            window = BehaviorWindow(
                user_id,
                max_entries=self._config.max_entries,
                span=timedelta(hours=self._config.span_hours),
            )
            self._windows[user_id] = window
        self._windows.move_to_end(user_id)
        window.add(action)

        while len(self._windows) > self._config.max_tracked_users:
            self._windows.popitem(last=False)
        return window

    def get(self, user_id: str) -> BehaviorWindow | None:
        return self._windows.get(user_id)


class BehaviorMonitor:
    def __init__(self, config: BehaviorConfig | None = None) -> None:
        self._config = config or default_config

    def monitor(
        self,
        user_id: str,
        recent_actions: Sequence[UserAction],
        now: datetime | None = None,
    ) -> BehaviorReport:
        """Score the actions that fall inside the window ending at ``now``.

        Without ``now`` the window ends at the newest action, so the result
        depends only on the actions passed in.
        """
        if not recent_actions:
            return BehaviorReport(
                suspicious_activity=False, suspicious_actions=[], risk_level=BehaviorRiskLevel.LOW
            )

        end = now or max(a.timestamp for a in recent_actions)
        start = end - timedelta(hours=self._config.window.span_hours)
        actions = [a for a in recent_actions if start <= a.timestamp <= end]
        thresholds = self._config.thresholds
        flags: list[str] = []

        account_changes = sum(1 for a in actions if a.type in ACCOUNT_MUTATING_ACTIONS)
        if account_changes >= thresholds.account_changes_min:
            flags.append(MULTIPLE_ACCOUNT_CHANGES)

        failed_payments = sum(1 for a in actions if a.type == ActionType.PAYMENT_FAILED)
        if failed_payments > thresholds.failed_payments_max:
            flags.append(MULTIPLE_FAILED_PAYMENTS)

        locations = {a.location for a in actions if a.location}
        if len(locations) > thresholds.distinct_locations_max:
            flags.append(MULTIPLE_LOCATIONS)

        if len(flags) > 1:
            risk_level = BehaviorRiskLevel.HIGH
        elif flags:
            risk_level = BehaviorRiskLevel.MEDIUM
        else:
            risk_level = BehaviorRiskLevel.LOW

        report = BehaviorReport(
            suspicious_activity=bool(flags),
            suspicious_actions=flags,
            risk_level=risk_level,
        )
        if flags:
            logger.info(
                "suspicious_behavior_detected",
                user_id=user_id,
                risk_level=risk_level.value,
                flags=flags,
                actions_in_window=len(actions),
            )
        return report


def alert_if_suspicious(
    emitter: SecurityAlertEmitter,
    user_id: str,
    report: BehaviorReport,
) -> bool:
    """Raise a suspicious-activity alert for a flagged report. Returns True if raised."""
    if not report.suspicious_activity:
        return False
    emitter.emit(
        user_id,
        AlertType.SUSPICIOUS_ACTIVITY,
        {
            "suspiciousActions": report.suspicious_actions,
            "riskLevel": report.risk_level.value,
        },
    )
    return True
