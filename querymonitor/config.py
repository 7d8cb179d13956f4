"""
Configuration settings for the query monitor.

Uses Pydantic Settings to load environment variables for the default target
database, the snapshot store, sampling cadence, retention and logging.
"""
from __future__ import annotations

from datetime import timedelta, tzinfo
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROFILE_FILENAME = "monitoring_config.json"


class Settings(BaseSettings):
    # Default target database (CLI fallbacks)
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("postgres", alias="DB_NAME")

    # Snapshot store
    store_url: str = Field("sqlite:///data/monitor.db", alias="STORE_URL")
    data_dir: Path = Field(Path("data"), alias="DATA_DIR")

    # Sampling
    sample_interval_seconds: float = Field(60.0, alias="SAMPLE_INTERVAL_SECONDS", gt=0)
    resume_delay_seconds: float = Field(1.0, alias="RESUME_DELAY_SECONDS", ge=0)
    leaderboard_size: int = Field(20, alias="LEADERBOARD_SIZE", ge=1)
    candidate_window: int = Field(50, alias="CANDIDATE_WINDOW", ge=1)
    live_catalogue_limit: int = Field(100, alias="LIVE_CATALOGUE_LIMIT", ge=1)
    connect_timeout_seconds: int = Field(10, alias="CONNECT_TIMEOUT_SECONDS", ge=1)

    # Retention and reads
    metrics_retention_hours: float = Field(24.0, alias="METRICS_RETENTION_HOURS", gt=0)
    metrics_window_minutes: float = Field(60.0, alias="METRICS_WINDOW_MINUTES", gt=0)
    monitor_timezone: Optional[str] = Field(None, alias="MONITOR_TIMEZONE")

    # Application
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    api_host: str = Field("127.0.0.1", alias="API_HOST")
    api_port: int = Field(3001, alias="API_PORT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def profile_path(self) -> Path:
        return self.data_dir / PROFILE_FILENAME

    @property
    def metrics_retention(self) -> timedelta:
        return timedelta(hours=self.metrics_retention_hours)

    @property
    def metrics_window(self) -> timedelta:
        return timedelta(minutes=self.metrics_window_minutes)

    def day_timezone(self) -> Optional[tzinfo]:
        """Timezone used for day keys; None means the host's local timezone."""
        if not self.monitor_timezone:
            return None
        return ZoneInfo(self.monitor_timezone)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["PROFILE_FILENAME", "Settings", "get_settings"]
