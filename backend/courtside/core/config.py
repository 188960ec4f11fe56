# backend/courtside/core/config.py
import logging
import os
from pathlib import Path
from typing import Set

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    BOOKING_CODE_PREFIX,
    BRAND_NAME,
    DEFAULT_SWEEP_BATCH_SIZE,
    QUICK_HOLD_MINUTES,
)

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


PROD_SITE_MODES: Set[str] = {"prod", "production", "live"}
TEST_SITE_MODES: Set[str] = {"test", "ci"}

_DEFAULT_SECRET_KEY = SecretStr("courtside-dev-secret-change-me")


class Settings(BaseSettings):
    site_mode: str = Field(default="local", description="Deployment mode (local, stg, prod)")

    # Storage
    database_url: str = Field(
        default="sqlite:///./courtside.db",
        description="SQLAlchemy database URL",
    )
    auto_create_tables: bool = Field(
        default=False,
        description="Create tables on startup (local/dev only; production uses migrations)",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used as Celery broker and result backend",
    )

    # Auth
    secret_key: SecretStr = Field(
        default=_DEFAULT_SECRET_KEY,
        description="Secret key for JWT tokens",
    )
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 720  # 12 hours

    # PayOS gateway
    payos_client_id: str = Field(default="", description="PayOS x-client-id header")
    payos_api_key: SecretStr = Field(default=SecretStr(""), description="PayOS x-api-key header")
    payos_checksum_key: SecretStr = Field(
        default=SecretStr(""),
        description="PayOS checksum key used for request and webhook signatures",
    )
    payos_api_base: str = Field(
        default="https://api-merchant.payos.vn",
        description="PayOS merchant API base URL",
    )
    payos_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for every outbound PayOS call",
    )
    payos_fake: bool = Field(
        default=False,
        description="Use the in-memory PayOS stand-in instead of the real API",
    )

    # URLs
    frontend_url: str = Field(
        default="http://localhost:5173",
        description="Frontend origin that payment redirects land on",
    )
    public_api_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL of this API (used for gateway return/cancel URLs)",
    )

    # Booking metadata
    booking_code_prefix: str = Field(
        default=BOOKING_CODE_PREFIX,
        description="Prefix of human-readable booking codes",
    )

    # Expiration sweeper
    sweep_interval_seconds: int = Field(
        default=60,
        description="Beat interval for the hold sweeper (at most half the shortest hold)",
    )
    sweep_batch_size: int = Field(
        default=DEFAULT_SWEEP_BATCH_SIZE,
        description="Maximum stale holds processed per sweep run",
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("sweep_interval_seconds")
    @classmethod
    def _bound_sweep_interval(cls, value: int) -> int:
        ceiling = QUICK_HOLD_MINUTES * 60 // 2
        if value <= 0:
            raise ValueError("SWEEP_INTERVAL_SECONDS must be positive")
        if value > ceiling:
            raise ValueError(
                f"SWEEP_INTERVAL_SECONDS must be <= {ceiling}s (half the shortest hold duration)"
            )
        return value

    @field_validator("frontend_url", "public_api_url", "payos_api_base")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def environment(self) -> str:
        normalized = (self.site_mode or "").strip().lower()
        if normalized in PROD_SITE_MODES:
            return "production"
        if normalized in TEST_SITE_MODES:
            return "testing"
        return "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def payos_configured(self) -> bool:
        return bool(
            self.payos_client_id
            and self.payos_api_key.get_secret_value()
            and self.payos_checksum_key.get_secret_value()
        )


settings = Settings()
logger.info(
    "[CONFIG] %s configuration: site_mode=%s payos_fake=%s sweep_interval=%ss",
    BRAND_NAME,
    settings.site_mode,
    settings.payos_fake,
    settings.sweep_interval_seconds,
)
