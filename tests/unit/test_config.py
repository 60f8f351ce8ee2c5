"""Tests for application and domain configuration."""

from src.config import Settings
from src.domains.payments.config import PaymentsConfig
from src.domains.risk.config import RiskConfig
from src.domains.verification.config import VerificationConfig


class TestSettings:
    def test_default_settings(self, monkeypatch):
        monkeypatch.delenv("TRANSACTION_STORE_BACKEND", raising=False)
        settings = Settings(_env_file=None)
        assert settings.app_name == "checkout-guard"
        assert settings.app_version == "0.1.0"
        assert settings.port == 8000
        assert settings.transaction_store_backend == "memory"
        assert settings.fraud_oracle_timeout_seconds == 5.0
        assert settings.security_token_ttl_seconds == 600

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("APP_NAME", "test-app")
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("KAFKA_ALERTS_ENABLED", "true")
        monkeypatch.setenv("TRANSACTION_STORE_BACKEND", "postgres")
        settings = Settings(_env_file=None)
        assert settings.app_name == "test-app"
        assert settings.port == 9000
        assert settings.kafka_alerts_enabled is True
        assert settings.transaction_store_backend == "postgres"

    def test_database_url_default(self):
        settings = Settings(_env_file=None)
        assert "postgresql+asyncpg" in settings.database_url


class TestRiskConfig:
    def test_defaults(self):
        cfg = RiskConfig()
        assert cfg.thresholds.property_overage_ratio == 1.10
        assert cfg.thresholds.new_account_days == 7
        assert cfg.thresholds.new_account_amount == 10_000
        assert cfg.thresholds.large_amount == 50_000
        assert (cfg.weights.property_overage, cfg.weights.new_account_large_amount) == (30, 25)
        assert cfg.weights.large_non_bank_transfer == 15

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RISK_LARGE_AMOUNT", "75000")
        monkeypatch.setenv("RISK_ORACLE_TIMEOUT_SECONDS", "2.5")
        cfg = RiskConfig.from_env()
        assert cfg.thresholds.large_amount == 75_000
        assert cfg.oracle.timeout_seconds == 2.5
        assert cfg.thresholds.new_account_days == 7


class TestPaymentsConfig:
    def test_defaults(self):
        cfg = PaymentsConfig()
        assert cfg.max_verification_attempts == 3
        assert cfg.gateway.max_attempts == 3
        assert cfg.gateway.backoff_base_seconds == 0.5

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PAYMENTS_MAX_VERIFICATION_ATTEMPTS", "5")
        monkeypatch.setenv("PAYMENTS_GATEWAY_MAX_ATTEMPTS", "1")
        cfg = PaymentsConfig.from_env()
        assert cfg.max_verification_attempts == 5
        assert cfg.gateway.max_attempts == 1


class TestVerificationConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("VERIFICATION_MIN_CONFIDENCE", "0.9")
        cfg = VerificationConfig.from_env()
        assert cfg.min_confidence == 0.9
        assert cfg.token_ttl_seconds == 600
