"""Configuration for the local runner.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Runner-specific variables carry a `STEP_RUNNER_` prefix so they don't collide
with other tools sharing the same `.env`.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RunnerSettings(BaseSettings):
    """Settings for the local runner.

    Environment variables:
    - LOG_LEVEL                          (optional)
    - STEP_RUNNER_MAP_MAX_CONCURRENCY    (optional)
    - STEP_RUNNER_KILL_GRACE_SECONDS     (optional)
    - STEP_RUNNER_SCRIPT_PATH            (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `RunnerSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    map_max_concurrency: int = Field(
        default=0,
        ge=0,
        validation_alias="STEP_RUNNER_MAP_MAX_CONCURRENCY",
        description=(
            "Iterations a Map state runs at once when its MaxConcurrency is 0. "
            "0 means unbounded."
        ),
    )

    kill_grace_seconds: float = Field(
        default=5.0,
        gt=0,
        validation_alias="STEP_RUNNER_KILL_GRACE_SECONDS",
        description="Seconds a cancelled script gets to exit after SIGTERM before SIGKILL",
    )

    script_search_path: Path | None = Field(
        default=None,
        validation_alias="STEP_RUNNER_SCRIPT_PATH",
        description="Directory searched for `script:` resources before PATH",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"LOG_LEVEL must be a standard logging level, got {value!r}")
        return level
