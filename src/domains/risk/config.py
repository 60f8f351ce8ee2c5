"""Risk scoring configuration with sensible defaults."""

import os
from dataclasses import dataclass, field


@dataclass
class RuleThresholds:
    # Amount may exceed the listed property price by at most 10%
    property_overage_ratio: float = 1.10
    new_account_days: int = 7
    new_account_amount: float = 10_000.0
    large_amount: float = 50_000.0


@dataclass
class RuleWeights:
    property_overage: int = 30
    new_account_large_amount: int = 25
    large_non_bank_transfer: int = 15


@dataclass
class OracleSettings:
    url: str = "https://toolkit.rork.com/text/llm/"
    timeout_seconds: float = 5.0
    max_completion_chars: int = 20_000


@dataclass
class RiskConfig:
    thresholds: RuleThresholds = field(default_factory=RuleThresholds)
    weights: RuleWeights = field(default_factory=RuleWeights)
    oracle: OracleSettings = field(default_factory=OracleSettings)

    @classmethod
    def from_env(cls) -> "RiskConfig":
        """Load config with env var overrides. Env vars use RISK_ prefix."""
        config = cls()

        if v := os.getenv("RISK_PROPERTY_OVERAGE_RATIO"):
            config.thresholds.property_overage_ratio = float(v)
        if v := os.getenv("RISK_NEW_ACCOUNT_DAYS"):
            config.thresholds.new_account_days = int(v)
        if v := os.getenv("RISK_NEW_ACCOUNT_AMOUNT"):
            config.thresholds.new_account_amount = float(v)
        if v := os.getenv("RISK_LARGE_AMOUNT"):
            config.thresholds.large_amount = float(v)

        if v := os.getenv("RISK_ORACLE_URL"):
            config.oracle.url = v
        if v := os.getenv("RISK_ORACLE_TIMEOUT_SECONDS"):
            config.oracle.timeout_seconds = float(v)

        return config


default_config = RiskConfig()
