"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="DAYPLAN_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Daily Planning Workflow API"
    api_prefix: str = "/api"
    jobs_file: Optional[Path] = Field(
        default=None,
        description="CSV file with job records used to seed the in-memory job store.",
    )
    inventory_catalog_file: Optional[Path] = Field(
        default=None,
        description="JSON file with the stock catalog used to derive parts requirements.",
    )
    day_start_hour: int = Field(default=8, ge=0, le=23)
    buffer_between_jobs_minutes: int = Field(
        default=10,
        ge=0,
        description="Idle buffer appended after each job departure before the next leg.",
    )
    default_job_duration_minutes: int = Field(default=60, ge=1)
    local_speed_kmh: float = Field(default=30.0, gt=0.0)
    highway_speed_kmh: float = Field(default=80.0, gt=0.0)
    local_distance_threshold_km: float = Field(default=10.0, ge=0.0)
    travel_buffer_minutes: int = Field(default=5, ge=0)
    fallback_latitude: float = Field(default=37.7749, ge=-90.0, le=90.0)
    fallback_longitude: float = Field(default=-122.4194, ge=-180.0, le=180.0)
    fallback_jitter_degrees: float = Field(
        default=0.1,
        ge=0.0,
        description="Width of the box used to synthesise coordinates for jobs without geodata.",
    )
    travel_estimator: Literal["engine", "simulated"] = Field(
        default="engine",
        description="Travel-time estimator used by the route stage.",
    )
    auto_approve: bool = True
    max_plan_retries: int = Field(default=3, ge=0)
    stale_plan_minutes: int = Field(default=30, ge=1)
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:8081",
            "http://127.0.0.1:8081",
            "http://localhost:19006",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("jobs_file", "inventory_catalog_file", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Optional[Path]:
        if value is None or value == "":
            return None
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
