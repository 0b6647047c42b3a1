"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - relative sqlite path for local runs, override via env
    database_url: str = "sqlite:///./data/hotel_pms.db"

    # Store timeouts. A caller waiting longer than this gets StoreUnavailable.
    db_pool_timeout_seconds: float = 10.0
    db_statement_timeout_ms: int = 5000

    # Account tokens
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 240  # 4 hours

    # Identifiers
    hotel_id_start: int = 1000000000  # first allocated hotel_id is start + 1
    booking_reference_max_attempts: int = 5
    default_account_type_code: str = "1"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("default_account_type_code")
    @classmethod
    def validate_account_type_code(cls, v: str) -> str:
        if len(v) != 1 or not v.isdigit():
            raise ValueError("default_account_type_code must be a single digit")
        return v

    @field_validator("booking_reference_max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("booking_reference_max_attempts must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Refuse to run outside debug mode with an unsafe secret key."""
        if not self.debug:
            if self.secret_key == "change-me-in-production":
                raise ValueError(
                    "FATAL: Cannot start in production mode with default SECRET_KEY. "
                    "Set a secure SECRET_KEY environment variable (minimum 32 characters)."
                )
            if len(self.secret_key) < 32:
                raise ValueError(
                    f"FATAL: SECRET_KEY must be at least 32 characters in production mode "
                    f"(current length: {len(self.secret_key)})."
                )
        return self

    @property
    def redacted_database_url(self) -> Optional[str]:
        """Database URL with any password masked, for log lines."""
        if "@" not in self.database_url:
            return self.database_url
        scheme, rest = self.database_url.split("://", 1)
        return f"{scheme}://***@{rest.split('@', 1)[1]}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
