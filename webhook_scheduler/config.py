"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Scheduler configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/scheduler.db"))

    # HTTP API
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8080)

    # Scheduler
    scheduler_timezone: str = Field(default="UTC")
    poll_interval_seconds: float = Field(default=10.0, gt=0)
    shutdown_timeout_seconds: float = Field(default=30.0, ge=0)

    # Executor
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    max_concurrent_executions: int = Field(default=32, ge=1)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_server_address(self) -> str:
        """Return ``host:port`` for log lines."""
        return f"{self.server_host}:{self.server_port}"


settings = Settings()
