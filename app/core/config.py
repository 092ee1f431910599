from datetime import datetime, timezone
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logger import get_logger

_PLACEHOLDER_KEYS = {"", "YOUR_KEY", "your_api_key"}


def _default_season() -> int:
    """European season year: Jul-Dec -> current year, Jan-Jun -> previous year."""
    now = datetime.now(timezone.utc)
    return now.year if now.month >= 7 else (now.year - 1)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    sport_api_key: str = Field("", alias="SPORT_API_KEY")
    football_api_host: str = Field("v3.football.api-sports.io", alias="FOOTBALL_API_HOST")
    hockey_api_host: str = Field("v1.hockey.api-sports.io", alias="HOCKEY_API_HOST")
    basketball_api_host: str = Field("v1.basketball.api-sports.io", alias="BASKETBALL_API_HOST")
    football_league_id: int = Field(39, alias="FOOTBALL_LEAGUE_ID")
    hockey_league_id: int = Field(57, alias="HOCKEY_LEAGUE_ID")
    basketball_league_id: int = Field(120, alias="BASKETBALL_LEAGUE_ID")
    nba_league_id: int = Field(12, alias="NBA_LEAGUE_ID")
    season: int = Field(default_factory=_default_season, alias="SEASON")
    display_timezone: str = Field("Europe/Moscow", alias="DISPLAY_TIMEZONE")

    store_backend: str = Field("json", alias="STORE_BACKEND")
    store_path: str = Field(".cache.json", alias="STORE_PATH")
    database_url: str = Field("", alias="DATABASE_URL")

    games_cache_ttl_seconds: int = Field(default=2 * 3600, alias="GAMES_CACHE_TTL_SECONDS")
    activity_log_limit: int = Field(default=100, alias="ACTIVITY_LOG_LIMIT")
    job_lock_ttl_seconds: int = Field(default=600, alias="JOB_LOCK_TTL_SECONDS")
    # Stale entries in central_predictions:all are otherwise dropped only at the next cycle start.
    prune_all_on_empty_fetch: bool = Field(default=False, alias="PRUNE_ALL_ON_EMPTY_FETCH")

    http_timeout_seconds: float = Field(default=20.0, alias="HTTP_TIMEOUT_SECONDS")
    http_retries: int = Field(default=2, alias="HTTP_RETRIES")

    job_update_predictions_cron: str = Field("*/15 * * * *", alias="JOB_UPDATE_PREDICTIONS_CRON")
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    admin_token: str = Field("", alias="ADMIN_TOKEN")

    @model_validator(mode="after")
    def validate_api_key(self):
        if self.sport_api_key in _PLACEHOLDER_KEYS:
            logger = get_logger("settings")
            logger.warning("SPORT_API_KEY is not configured; update_predictions will serve mock games")
        return self

    @property
    def has_sport_api_key(self) -> bool:
        return (self.sport_api_key or "").strip() not in _PLACEHOLDER_KEYS

    @property
    def basketball_season(self) -> str:
        return f"{self.season}-{self.season + 1}"

    @property
    def is_sql_store(self) -> bool:
        return (self.store_backend or "").strip().lower() == "sql"

    @property
    def store_file(self) -> Optional[str]:
        path = (self.store_path or "").strip()
        return path or None


default_settings = Settings()
settings = default_settings
