"""Identity verification configuration."""

import os
from dataclasses import dataclass


@dataclass
class VerificationConfig:
    service_url: str = "http://localhost:8100/v1/verifications"
    timeout_seconds: float = 15.0
    # Provider may report success with a weak match; below this it counts as a failure
    min_confidence: float = 0.8
    token_ttl_seconds: int = 600

    @classmethod
    def from_env(cls) -> "VerificationConfig":
        """Load config with env var overrides. Env vars use VERIFICATION_ prefix."""
        config = cls()
        if v := os.getenv("VERIFICATION_SERVICE_URL"):
            config.service_url = v
        if v := os.getenv("VERIFICATION_TIMEOUT_SECONDS"):
            config.timeout_seconds = float(v)
        if v := os.getenv("VERIFICATION_MIN_CONFIDENCE"):
            config.min_confidence = float(v)
        if v := os.getenv("VERIFICATION_TOKEN_TTL_SECONDS"):
            config.token_ttl_seconds = int(v)
        return config


default_config = VerificationConfig()
