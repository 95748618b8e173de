from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Document store backing the threads/messages/map_spots collections
    DATABASE_URL: str = "sqlite:///./petmedia.db"

    LOG_LEVEL: str = "INFO"

    # Messaging limits
    MESSAGE_MAX_LENGTH: int = 1000

    # Shown in a thread snapshot when a participant's profile is unavailable
    PLACEHOLDER_DISPLAY_NAME: str = "Kullanıcı"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()
