from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "UTC"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800
    DB_STATEMENT_TIMEOUT_MS: int = 15000  # PostgreSQL only

    # Auth (tokens are issued by the identity service, we only verify them)
    JWT_SECRET: str = "test-jwt-secret"
    JWT_ALGORITHM: str = "HS256"

    # Orders
    DELIVERY_FEE: Decimal = Decimal("2.00")  # Flat surcharge for delivery orders
    CUSTOMER_CAN_CANCEL_ACCEPTED: bool = False

    # Settlement (simulated, no real gateway)
    SETTLEMENT_TIMEOUT_SECONDS: float = 10.0
    SETTLEMENT_SIMULATED_DELAY_SECONDS: float = 0.0
    SETTLEMENT_CARD_LIMIT: Decimal = Decimal("500.00")

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PAYMENTS: str = "10/minute"  # Per payer, across all orders
    RATE_LIMIT_ORDER_ACTIONS: str = "60/minute"
    REDIS_URL: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
