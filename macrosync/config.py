"""Configuration settings for macrosync."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    return Path.home() / ".macrosync"


class SyncSettings(BaseSettings):
    """Engine settings loaded from ``MACROSYNC_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MACROSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None  # Publishable (anon) key; RLS scopes rows
    auth_email: Optional[str] = None
    auth_password: Optional[str] = None

    # Local state
    data_dir: Path = Field(default_factory=_default_data_dir)
    db_path: Optional[Path] = None  # Defaults to <data_dir>/macrosync.db
    watermark_key_base: str = "macrosync_last_synced"

    # Scheduling
    sync_interval_seconds: float = Field(default=30.0, gt=0)
    connectivity_interval_seconds: float = Field(default=15.0, gt=0)

    # Pull
    pull_page_size: int = Field(default=100, gt=0)
    reconcile_page_size: int = Field(default=500, gt=0)
    pull_max_attempts: int = Field(default=3, ge=1)
    retry_unit_delay: float = Field(default=1.0, ge=0)

    log_level: str = "INFO"

    @property
    def database_path(self) -> Path:
        return self.db_path or self.data_dir / "macrosync.db"

    @property
    def watermark_path(self) -> Path:
        return self.data_dir / "watermarks.json"

    @property
    def has_remote(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


@lru_cache
def get_settings() -> SyncSettings:
    """Get cached settings instance."""
    return SyncSettings()
