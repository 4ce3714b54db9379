"""
RoleGate Configuration Management

Uses Pydantic Settings for type-safe configuration from environment variables.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # =========================================================================
    # APPLICATION
    # =========================================================================
    APP_NAME: str = "RoleGate"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "info"
    VERSION: str = "0.1.0"

    # =========================================================================
    # TENANCY
    # =========================================================================
    DEFAULT_CONTEXT_ID: str = "HOME"

    # =========================================================================
    # SESSIONS & CREDENTIALS
    # =========================================================================
    SESSION_TIMEOUT_MINUTES: int = 60
    BCRYPT_ROUNDS: int = 12

    # =========================================================================
    # FIELD VALIDATION
    # =========================================================================
    MAX_FIELD_LENGTH: int = 40
    MAX_DESCRIPTION_LENGTH: int = 80

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance for easy import
settings = get_settings()
