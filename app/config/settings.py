"""
Application settings and configuration
"""
from functools import lru_cache
from typing import Dict, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Basic app settings
    DEBUG: bool = Field(default=False)
    APP_NAME: str = Field(default="Scheduling Console API")

    # Access token settings (tokens are issued by the scheduling backend)
    JWT_SECRET_KEY: str = Field(
        default="change-this-jwt-secret-in-production-use-long-random-string"
    )
    JWT_ALGORITHM: str = Field(default="HS256")

    # Server settings
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8080)
    ALLOWED_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # Scheduling backend (REST)
    BACKEND_API_URL: str = Field(default="http://localhost:8000/api")
    BACKEND_TIMEOUT_SECONDS: float = Field(default=15.0)

    # Scheduling rules
    DEFAULT_APPOINTMENT_DURATION_MINUTES: int = Field(default=30, ge=1)
    SLOT_DURATION_MINUTES: int = Field(default=30, ge=1)
    CANCELLED_STATUS_IDS: List[int] = Field(default_factory=lambda: [3])
    # Clients are always blocked from double-booking; admins and providers
    # only when this flag is on.
    ENFORCE_CONFLICTS_FOR_ALL_ROLES: bool = Field(default=False)
    MAX_VISIBLE_RANGE_DAYS: int = Field(default=62, ge=1)
    MAX_CALENDAR_SESSIONS: int = Field(default=500, ge=1)

    # Calendar palette
    STATUS_COLORS: Dict[int, str] = Field(
        default_factory=lambda: {
            1: "#1a73e8",  # scheduled
            2: "#34a853",  # confirmed
            3: "#ea4335",  # cancelled
            4: "#9c27b0",  # completed
        }
    )
    DEFAULT_EVENT_COLOR: str = Field(default="#1a73e8")
    EVENT_TEXT_COLOR: str = Field(default="#ffffff")
    OCCUPIED_BACKGROUND_COLOR: str = Field(default="#d9d9d9")
    OCCUPIED_BORDER_COLOR: str = Field(default="#bfbfbf")
    OCCUPIED_TEXT_COLOR: str = Field(default="#5f6368")
    UNAVAILABLE_BACKGROUND_COLOR: str = Field(default="#c5221f")
    UNAVAILABLE_BORDER_COLOR: str = Field(default="#b71c1c")
    BLOCK_BACKGROUND_COLOR: str = Field(default="#e37400")
    BLOCK_BORDER_COLOR: str = Field(default="#b06000")

    # Monitoring settings
    LOG_LEVEL: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # allows extra env vars without breaking
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Convenience accessor for settings
settings = get_settings()
