from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logger import get_logger


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    database_url: str = Field(..., alias="DATABASE_URL")
    admin_token: str = Field("", alias="ADMIN_TOKEN")
    cors_origins_raw: str = Field("*", alias="CORS_ORIGINS")
    # Season shown when a request does not pick one; unset means every season.
    active_season: Optional[str] = Field(default=None, alias="ACTIVE_SEASON")

    # Free-tier key "123" is limited to 30 requests/minute.
    thesportsdb_api_key: str = Field("123", alias="THESPORTSDB_API_KEY")
    thesportsdb_base: str = Field("https://www.thesportsdb.com/api/v1/json", alias="THESPORTSDB_BASE")
    thesportsdb_rate_limit_ms: int = Field(default=2100, alias="THESPORTSDB_RATE_LIMIT_MS")
    thesportsdb_timeout_seconds: float = Field(default=15.0, alias="THESPORTSDB_TIMEOUT_SECONDS")
    fixture_search_limit: int = Field(default=5, alias="FIXTURE_SEARCH_LIMIT")

    scheduler_enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")
    allow_web_scheduler: bool = Field(default=False, alias="ALLOW_WEB_SCHEDULER")
    job_update_results_cron: str = Field("*/30 * * * *", alias="JOB_UPDATE_RESULTS_CRON")

    @model_validator(mode="after")
    def validate_admin_token(self):
        if not (self.admin_token or "").strip():
            logger = get_logger("settings")
            logger.warning("ADMIN_TOKEN is not configured; admin endpoints will reject every request")
        return self

    @property
    def cors_origins(self) -> List[str]:
        return [x.strip() for x in self.cors_origins_raw.split(",") if x.strip()]

    @property
    def thesportsdb_url(self) -> str:
        base = (self.thesportsdb_base or "").rstrip("/")
        return f"{base}/{self.thesportsdb_api_key}"

    @property
    def is_prod(self) -> bool:
        return (self.app_env or "").strip().lower() in {"prod", "production"}


default_settings = Settings()
settings = default_settings
