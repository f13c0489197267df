from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from decimal import Decimal
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes
    DB_CONNECT_TIMEOUT: int = 10  # Seconds to establish a connection
    DB_STATEMENT_TIMEOUT_MS: int = 5000  # Per-statement limit on PostgreSQL

    # App Settings
    APP_NAME: str = "bazaarMKT Settlement"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: Optional[str] = None  # whsec_... for webhook verification
    STRIPE_WEBHOOK_TOLERANCE: int = 300  # Max age of a signed webhook in seconds
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    WEBHOOK_PROCESSING_TIMEOUT: float = 5.0  # Seconds before a webhook fails fast

    # Shared secrets for machine-to-machine calls
    CRON_SECRET: Optional[str] = None  # Bearer token for the payout trigger
    ADMIN_API_TOKEN: Optional[str] = None  # Bearer token for admin tooling

    # Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_MAX_ENTRIES: int = 1024  # LRU bound for the in-memory backend
    PLATFORM_SETTINGS_CACHE_TTL: int = 300  # 5 minutes

    # Payouts
    DEFAULT_MINIMUM_PAYOUT: Decimal = Decimal("25.00")
    PAYOUT_CURRENCY: str = "cad"
    PAYOUTS_VIA_STRIPE: bool = True  # False records ledger-only payouts
    PAYOUT_SCHEDULER_ENABLED: bool = True
    PAYOUT_CRON_DAY_OF_WEEK: str = "fri"
    PAYOUT_CRON_HOUR: int = 9
    PAYOUT_CRON_MINUTE: int = 0
    TIMEZONE: str = "America/Toronto"
    PAYOUT_LOCK_TTL_SECONDS: int = 900

    # Delivery buffer defaults (overridable per platform settings)
    DELIVERY_BUFFER_PERCENTAGE: Decimal = Decimal("20")
    DELIVERY_MIN_BUFFER: Decimal = Decimal("2.00")
    DELIVERY_MAX_BUFFER: Decimal = Decimal("10.00")
    ARTISAN_ABSORPTION_LIMIT: Decimal = Decimal("5.00")  # Max artisan can be asked to absorb
    AUTO_APPROVE_THRESHOLD: Decimal = Decimal("0.50")  # Absorb increases under this silently
    REFUND_THRESHOLD: Decimal = Decimal("0.25")  # Don't refund amounts under this
    ARTISAN_RESPONSE_TIMEOUT: int = 7200  # 2 hours
    QUOTE_VALIDITY_PERIOD: int = 900  # 15 minutes

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin for origin in self.CORS_ORIGINS if origin]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
