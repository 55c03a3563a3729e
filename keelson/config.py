"""Runtime settings — env-driven.

Centralized settings using pydantic-settings for environment variable
support. Reads from a .env file and KEELSON_* environment variables.
Project-level pipeline behaviour lives in ``keelson.models.config``; these
settings cover how this process runs it.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export KEELSON_LOG_LEVEL=DEBUG
        export KEELSON_MAX_PARALLEL_JOBS=2
        export KEELSON_DRY_RUN=true

    Or via .env file::

        KEELSON_ENVIRONMENT=ci
        KEELSON_COMMAND_TIMEOUT_SECONDS=3600
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="KEELSON_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    # Locations
    workspace: Path = Path(".")
    config_file: Path | None = None  # falls back to keelson.toml / pyproject.toml

    # Execution
    max_parallel_jobs: int = 4
    command_timeout_seconds: int = 1800

    # Publishing: when true, releases go to the local backend and the
    # changelog commit is not pushed.
    dry_run: bool = False


# Module-level singleton; import as `from keelson.config import settings`
settings = Settings()
