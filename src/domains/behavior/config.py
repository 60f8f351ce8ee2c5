"""Behavior monitoring configuration with sensible defaults."""

import os
from dataclasses import dataclass, field


@dataclass
class WindowConfig:
    max_entries: int = 50
    span_hours: int = 24
    # Users whose windows are kept in memory by the activity consumer
    max_tracked_users: int = 10_000


@dataclass
class MonitorThresholds:
    # Inclusive: 4 or more account changes is suspicious
    account_changes_min: int = 4
    # Exclusive: more than 2 failed payments is suspicious
    failed_payments_max: int = 2
    # Exclusive: more than 3 distinct locations is suspicious
    distinct_locations_max: int = 3


@dataclass
class BehaviorConfig:
    window: WindowConfig = field(default_factory=WindowConfig)
    thresholds: MonitorThresholds = field(default_factory=MonitorThresholds)

    @classmethod
    def from_env(cls) -> "BehaviorConfig":
        """Load config with env var overrides. Env vars use BEHAVIOR_ prefix."""
        config = cls()
        if v := os.getenv("BEHAVIOR_WINDOW_MAX_ENTRIES"):
            config.window.max_entries = int(v)
        if v := os.getenv("BEHAVIOR_WINDOW_SPAN_HOURS"):
            config.window.span_hours = int(v)
        if v := os.getenv("BEHAVIOR_ACCOUNT_CHANGES_MIN"):
            config.thresholds.account_changes_min = int(v)
        if v := os.getenv("BEHAVIOR_FAILED_PAYMENTS_MAX"):
            config.thresholds.failed_payments_max = int(v)
        if v := os.getenv("BEHAVIOR_DISTINCT_LOCATIONS_MAX"):
            config.thresholds.distinct_locations_max = int(v)
        return config


default_config = BehaviorConfig()
