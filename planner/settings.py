from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from planner.constants import (
    MISSED_DAY_CHECK_DELAY_S,
    REMINDER_DEBOUNCE_MS,
    REMINDER_LEAD_MINUTES,
    REMINDER_MAX_AHEAD_HOURS,
)


class PlannerSettings(BaseSettings):
    api_base_url: str = Field("", alias="API_BASE_URL")
    backend_token: str = Field("", alias="BACKEND_SESSION_SECRET")

    data_dir: Path = Field(Path(".local/planner"), alias="PLANNER_DATA_DIR")
    timezone: str = Field("UTC", alias="PLANNER_TIMEZONE")
    log_level: str = Field("INFO", alias="PLANNER_LOG_LEVEL")

    reminder_lead_minutes: int = Field(REMINDER_LEAD_MINUTES, alias="PLANNER_REMINDER_LEAD_MINUTES")
    reminder_max_ahead_hours: int = Field(REMINDER_MAX_AHEAD_HOURS, alias="PLANNER_REMINDER_MAX_AHEAD_HOURS")
    reminder_debounce_ms: int = Field(REMINDER_DEBOUNCE_MS, alias="PLANNER_REMINDER_DEBOUNCE_MS")
    missed_day_check_delay_s: float = Field(MISSED_DAY_CHECK_DELAY_S, alias="PLANNER_MISSED_DAY_CHECK_DELAY_S")

    http_timeout: int = Field(10, alias="PLANNER_HTTP_TIMEOUT")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @property
    def local_store_path(self) -> Path:
        return self.data_dir / "local_storage.json"

    @property
    def remote_enabled(self) -> bool:
        return bool(self.api_base_url.strip() and self.backend_token.strip())


_settings: PlannerSettings | None = None


def get_settings() -> PlannerSettings:
    global _settings
    if _settings is None:
        _settings = PlannerSettings()
    return _settings
