"""Recruitment portal configuration via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class RecruitmentSettings(BaseSettings):
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///recruitment.db"
    echo_sql: bool = False
    sqlite_busy_timeout_seconds: float = 30.0
    app_title: str = "Recruitment Portal"
    log_level: str = "INFO"

    # Booking rules
    cancellation_window_hours: int = 5

    # Review phases
    default_min_reviewers: int = 2

    # Outbound notifications (email, calendar invites)
    notify_webhook_url: str = ""
    notify_timeout_seconds: float = 10.0
    notification_worker_enabled: bool = True
    notification_poll_interval_seconds: float = 2.0
    notification_max_attempts: int = 5
    notification_retry_backoff_seconds: int = 60

    # Uploaded files and check-in photos
    blobstore_dir: str = "data/blobstore"

    # Identity is resolved upstream and forwarded in these headers
    identity_email_header: str = "X-Actor-Email"
    identity_role_header: str = "X-Actor-Role"
    admin_roles: str = "admin,owner"

    model_config = {"env_prefix": "RECRUIT_", "env_file": ".env", "extra": "ignore"}

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent

    @property
    def project_dir(self) -> Path:
        return self.base_dir.parent

    @property
    def blobstore_path(self) -> Path:
        path = Path(self.blobstore_dir)
        if not path.is_absolute():
            path = self.project_dir / path
        return path

    @property
    def admin_role_set(self) -> set[str]:
        return {r.strip().lower() for r in self.admin_roles.split(",") if r.strip()}

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}


settings = RecruitmentSettings()
