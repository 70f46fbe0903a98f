# jailer/core/config.py

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

from jailer.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    PROJECT_NAME: str = "Service Jailer"
    PROJECT_VERSION: str = "1.0.0"

    # ── Collaborators ──
    REDIS_URL: str = "redis://redis:6379"
    IPSET_NAME: str = "fail2ban"
    KEY_PREFIX: str = "aws-fail2ban-"

    # ── Jail thresholds ──
    MAX_RETRY: int = 5
    FIND_TIME: int = 600
    BAN_TIME: int = 3600

    # ── Fleet decorrelation ──
    STARTUP_JITTER_SECONDS: float = 60
    SCAN_PERIOD_MIN_SECONDS: float = 60
    SCAN_PERIOD_MAX_SECONDS: float = 120

    # ── Key-space scan paging ──
    SCAN_BATCH_START: int = 100
    SCAN_BATCH_MAX: int = 1000

    # ── Status server ──
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def key_ttl_seconds(self) -> int:
        return 2 * self.BAN_TIME

    def validate_limits(self) -> None:
        """Reject settings the jail cannot run with."""
        errors: list[str] = []

        for name in ("MAX_RETRY", "FIND_TIME", "BAN_TIME", "SCAN_BATCH_START", "SCAN_BATCH_MAX"):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")

        if self.STARTUP_JITTER_SECONDS < 0:
            errors.append("STARTUP_JITTER_SECONDS must not be negative")
        if self.SCAN_PERIOD_MIN_SECONDS <= 0:
            errors.append("SCAN_PERIOD_MIN_SECONDS must be positive")
        if self.SCAN_PERIOD_MIN_SECONDS > self.SCAN_PERIOD_MAX_SECONDS:
            errors.append("SCAN_PERIOD_MIN_SECONDS must not exceed SCAN_PERIOD_MAX_SECONDS")
        if not self.KEY_PREFIX:
            errors.append("KEY_PREFIX must not be empty")

        if errors:
            for e in errors:
                logger.error("[CONFIG] %s", e)
            raise ConfigurationError("; ".join(errors))


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
    )


settings = Settings()
