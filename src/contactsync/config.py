"""Configuration management using pydantic-settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Local storage
    data_dir: Path = Field(default=Path.home() / ".contactsync", alias="CONTACTSYNC_DATA_DIR")
    debounce_seconds: float = Field(default=2.0, alias="CONTACTSYNC_DEBOUNCE_SECONDS")
    history_retention: int = Field(default=5, alias="CONTACTSYNC_HISTORY_RETENTION")

    # Background sync cadence
    sync_interval_minutes: float = Field(default=30.0, alias="CONTACTSYNC_SYNC_INTERVAL_MINUTES")
    initial_sync_delay_seconds: float = Field(
        default=5.0, alias="CONTACTSYNC_INITIAL_SYNC_DELAY_SECONDS"
    )
    pull_batch_size: int = Field(default=20, alias="CONTACTSYNC_PULL_BATCH_SIZE")

    # Google OAuth configuration
    google_client_id: str | None = Field(default=None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: str | None = Field(default=None, alias="GOOGLE_CLIENT_SECRET")
    google_refresh_token: str | None = Field(default=None, alias="GOOGLE_REFRESH_TOKEN")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
