"""Payment orchestration configuration."""

import os
from dataclasses import dataclass, field


@dataclass
class GatewaySettings:
    url: str = "http://localhost:8200/v1/payments"
    timeout_seconds: float = 10.0
    # Total tries per submission, all with the same reference
    max_attempts: int = 3
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 4.0
    # A claim older than this is treated as abandoned by a crashed worker
    claim_lease_seconds: float = 120.0


@dataclass
class PaymentsConfig:
    max_verification_attempts: int = 3
    gateway: GatewaySettings = field(default_factory=GatewaySettings)

    @classmethod
    def from_env(cls) -> "PaymentsConfig":
        """Load config with env var overrides. Env vars use PAYMENTS_ prefix."""
        config = cls()
        if v := os.getenv("PAYMENTS_MAX_VERIFICATION_ATTEMPTS"):
            config.max_verification_attempts = int(v)
        if v := os.getenv("PAYMENTS_GATEWAY_URL"):
            config.gateway.url = v
        if v := os.getenv("PAYMENTS_GATEWAY_TIMEOUT_SECONDS"):
            config.gateway.timeout_seconds = float(v)
        if v := os.getenv("PAYMENTS_GATEWAY_MAX_ATTEMPTS"):
            config.gateway.max_attempts = int(v)
        if v := os.getenv("PAYMENTS_GATEWAY_BACKOFF_BASE_SECONDS"):
            config.gateway.backoff_base_seconds = float(v)
        if v := os.getenv("PAYMENTS_GATEWAY_CLAIM_LEASE_SECONDS"):
            config.gateway.claim_lease_seconds = float(v)
        return config


default_config = PaymentsConfig()
