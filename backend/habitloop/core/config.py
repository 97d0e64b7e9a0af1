"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "HabitLoop Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "sqlite:///./habitloop.db"
    user_data_key: str = "userData"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    ai_timeout_seconds: float = 30.0
    app_timezone: str = "UTC"
    history_retention_days: int = 7
    weekly_analysis_window_days: int = 7
    default_plan_duration: int = 21
    background_workers: int = 2
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "habitloop"
    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    rollover_job_hour: int = 5
    rollover_job_minute: int = 0


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
