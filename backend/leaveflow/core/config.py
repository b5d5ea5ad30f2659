from functools import lru_cache
import json
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from leaveflow.core.weekdays import WEEKDAY_NAMES, normalize_weekday


BACKEND_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"

DEFAULT_WORKING_DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class Settings(BaseSettings):
    # Resolve to backend/.env so `uvicorn --app-dir backend` works from any cwd.
    model_config = SettingsConfigDict(env_file=str(BACKEND_ENV_FILE), env_file_encoding="utf-8")

    project_name: str = "LeaveFlow API"
    api_prefix: str = "/api"
    log_level: str = "INFO"

    database_url: str = "sqlite+pysqlite:///./leaveflow.db"

    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    default_annual_leave_days: int = 30
    long_leave_threshold_days: int = 10
    section_reviewers: dict[str, str] = {}
    department_heads: dict[str, str] = {}
    senior_administrator_id: str | None = None

    working_days: list[str] = DEFAULT_WORKING_DAYS
    periods_per_day: int = 7

    notification_workers: int = 4
    notification_retry_attempts: int = 2
    notification_retry_backoff_seconds: float = 0.5

    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    @field_validator("cors_origins", "working_days", mode="before")
    @classmethod
    def split_list(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("working_days")
    @classmethod
    def normalize_working_days(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for item in value:
            name = normalize_weekday(item)
            if name not in WEEKDAY_NAMES:
                raise ValueError(f"Unknown working day '{item}'")
            if name not in normalized:
                normalized.append(name)
        if not normalized:
            raise ValueError("At least one working day is required")
        return normalized

    @field_validator("section_reviewers", "department_heads", mode="before")
    @classmethod
    def normalize_mapping_keys(cls, value: str | dict[str, str]) -> dict[str, str]:
        if isinstance(value, str):
            value = json.loads(value) if value.strip() else {}
        return {str(key).strip().upper(): str(item).strip() for key, item in value.items() if str(key).strip()}


@lru_cache
def get_settings() -> Settings:
    return Settings()
