"""TikTok worker configuration"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# === Path Configuration ===
TIKTOK_DIR = Path(__file__).parent.parent
BACKEND_DIR = TIKTOK_DIR.parent


class TikTokWorkerSettings(BaseSettings):
    """TikTok worker settings"""

    model_config = SettingsConfigDict(
        env_file=TIKTOK_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")

    # TikTokLive signing
    euler_api_key: str = Field(default="", description="Euler Stream sign API key")

    # Live-status supervision (seconds)
    check_interval: float = Field(default=30.0, gt=0, description="Minimum gap between live checks")
    rate_limit_recheck: float = Field(default=10.0, gt=0, description="Retry delay when rate limited")
    max_retries: int = Field(default=3, ge=0, description="Backoff attempts before stalling")
    retry_delay: float = Field(default=60.0, gt=0, description="Backoff base delay")
    max_retry_delay: float = Field(default=300.0, gt=0, description="Backoff cap")
    reconnect_cooldown: float = Field(default=60.0, ge=0, description="Wait after stream end")
    teardown_grace: float = Field(default=2.0, ge=0, description="Wait after forced disconnect")
    wait_live_poll_interval: float = Field(default=30.0, gt=0, description="Offline poll period")

    # Control loops (seconds)
    identity_refresh_interval: float = Field(default=60.0, gt=0)
    job_poll_interval: float = Field(default=2.0, gt=0)

    # Persistence gateway
    db_max_concurrent: int = Field(default=3, ge=1)
    db_max_retries: int = Field(default=3, ge=0)
    db_base_delay: float = Field(default=0.1, ge=0)
    db_max_delay: float = Field(default=2.0, ge=0)
    db_jitter: float = Field(default=0.1, ge=0)

    # Health server
    health_port: int = Field(default=4345, description="Health check HTTP port")

    # Environment
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL starts with postgresql://"""
        if not v.startswith("postgresql://"):
            raise ValueError("DATABASE_URL must start with 'postgresql://'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper


@lru_cache
def get_settings() -> TikTokWorkerSettings:
    """Get cached settings instance"""
    return TikTokWorkerSettings()  # type: ignore[call-arg]
