"""Editor configuration loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from timetable.domain.models import EventKind


class Settings(BaseSettings):
    """Settings are read from ``TIMETABLE_*`` variables or a local ``.env`` file."""

    model_config = SettingsConfigDict(
        env_prefix="TIMETABLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "Timetable Event Editor"

    allowed_kinds: list[EventKind] = Field(
        default_factory=lambda: [EventKind.LESSON, EventKind.INVIGILATE, EventKind.UNAVAILABLE],
        description="Event kinds an editor session may be opened with",
    )
    default_repeat_num: int = Field(default=1, ge=1)
    max_repeat_num: int = Field(default=52, ge=1)

    log_json: bool = Field(default=False, description="Output logs as JSON")
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")

    session_max_age_minutes: int = Field(
        default=60, ge=1, description="Open editor sessions older than this are discarded"
    )

    seed_demo_data: bool = Field(
        default=True, description="Pre-load the in-memory backend with sample rooms and lessons"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
