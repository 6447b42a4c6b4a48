"""Application configuration settings."""

import os
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_database_url() -> str:
    """Get the default database URL, using Fly Volume path if available."""
    if os.path.isdir("/data"):
        return "sqlite+aiosqlite:////data/aquameter.db"
    return "sqlite+aiosqlite:///./aquameter.db"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    PROJECT_NAME: str = "AquaMeter"
    VERSION: str = "0.1.0"
    DEBUG: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 3001

    # Database - defaults to Fly Volume path if /data exists
    DATABASE_URL: str = _get_default_database_url()

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Billing
    RATE_PER_UNIT: Decimal = Decimal("15.0")  # per cubic meter
    METER_DIGITS: int = 5
    BILL_PERIOD_DAYS: int = 29
    BILL_DUE_DAYS: int = 5
    CONSUMPTION_HISTORY_LIMIT: int = 12

    # Leak detection - enable on exactly one instance
    LEAK_DETECTION_ENABLED: bool = True
    LEAK_CHECK_INTERVAL_SECONDS: float = 600.0
    LEAK_RUN_TIMEOUT_SECONDS: float = 300.0
    LEAK_SAMPLE_SIZE: int = 5
    LEAK_THRESHOLD_MULTIPLIER: Decimal = Decimal("1.5")
    LEAK_MAX_CONCURRENCY: int = 10
    LEAK_ALERT_COOLDOWN_MINUTES: int = 0  # 0 disables suppression

    # Push gateway
    PUSH_GATEWAY_URL: str = "https://exp.host/--/api/v2/push/send"
    PUSH_TIMEOUT_SECONDS: float = 10.0
    PUSH_TOKEN_PREFIX: str = "ExponentPushToken"
    NOTIFY_RECORD_ON_FAILURE: bool = False

    @property
    def max_register_value(self) -> int:
        """Largest value the meter register can show."""
        return 10**self.METER_DIGITS - 1


settings = Settings()
