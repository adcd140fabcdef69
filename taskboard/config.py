"""Taskboard configuration via pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class TaskboardSettings(BaseSettings):
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///taskboard.db"
    echo_sql: bool = False
    app_title: str = "Taskboard"
    log_level: str = "INFO"

    # Comma-separated list; empty disables the origin allow-list.
    allowed_origins: str = ""
    csrf_enabled: bool = True

    # Per-endpoint request budgets (requests per minute)
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: int = 60
    rate_limit_list: int = 100
    rate_limit_read: int = 100
    rate_limit_create: int = 30
    rate_limit_update: int = 50
    rate_limit_delete: int = 30
    rate_limit_bulk_update: int = 20
    rate_limit_bulk_delete: int = 10
    rate_limit_max_entries: int = 10_000
    rate_limit_sweep_interval_seconds: int = 30

    max_request_size: int = 10 * 1024

    model_config = {"env_prefix": "TASKBOARD_", "env_file": ".env", "extra": "ignore"}

    @property
    def allowed_origins_list(self) -> list[str] | None:
        """Parse comma-separated origins; ``None`` when unrestricted."""
        origins = [item.strip().rstrip("/") for item in self.allowed_origins.split(",")]
        origins = [item for item in origins if item]
        return origins or None

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}


settings = TaskboardSettings()
