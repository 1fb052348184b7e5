"""Application configuration using pydantic-settings."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite:///./balances.db"

    # Balance sync
    SYNC_TIMEOUT_SECONDS: float = 300.0  # 0 disables the wall-clock budget
    SYNC_CHUNK_DAYS: int = 0  # 0 = reconcile the whole window in one commit

    # Price lookups (holdings valuation)
    PRICE_LOOKUP_MAX_RETRIES: int = 3
    PRICE_LOOKUP_BASE_DELAY: float = 0.5
    PRICE_LOOKUP_MAX_WORKERS: int = 4
    MARKET_DATA_LIVE_FETCH: bool = False

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    @field_validator("SYNC_CHUNK_DAYS", "PRICE_LOOKUP_MAX_RETRIES", mode="after")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Reject negative counts."""
        if v < 0:
            raise ValueError(f"value must be >= 0, got {v}")
        return v

    @field_validator("PRICE_LOOKUP_MAX_WORKERS", mode="after")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """A thread pool needs at least one worker."""
        if v < 1:
            raise ValueError(f"PRICE_LOOKUP_MAX_WORKERS must be >= 1, got {v}")
        return v


settings = Settings()
