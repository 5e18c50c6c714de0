"""Application settings loaded from .env via pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration: values come from environment / .env file."""

    # App
    secret_key: str = "change-me"
    log_level: str = "INFO"
    enabled_platforms: List[str] = ["spotify", "youtube"]

    # Database
    db_path: str = "./data/musync.db"

    # HTTP / retry policy
    http_connect_timeout: float = 10.0  # seconds
    http_read_timeout: float = 30.0
    page_size: int = 50
    transient_retries: int = 2
    transient_backoff: float = 1.0  # seconds, multiplied by the attempt number
    rate_limit_delay: float = 5.0  # used when no Retry-After header is sent
    rate_limit_delay_cap: float = 30.0

    # Platforms
    spotify_api_base: str = "https://api.spotify.com/v1"
    youtube_api_base: str = "https://www.googleapis.com/youtube/v3"
    youtube_daily_quota: int = 10000
    youtube_quota_safety: float = 0.9

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def db_abs_path(self) -> Path:
        """Return the database path as an absolute Path, creating parents if needed."""
        p = Path(self.db_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p.resolve()


@lru_cache
def get_settings() -> Settings:
    """Cached singleton so .env is read only once."""
    return Settings()
