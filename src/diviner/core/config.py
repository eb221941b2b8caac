# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Application configuration via environment variables and .env files."""

from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DIVINER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )

    # Database
    db_path: Path = Path("diviner.db")
    auto_migrate: bool = True

    # API server
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    app_url: str = "http://localhost:3000"

    # Queue and cancellation bus
    queue_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    queue_prefix: str = "diviner"
    cancellation_channel: str = "scan-cancellation"

    # Scan job retry policy
    scan_job_attempts: int = 3
    scan_job_backoff_seconds: float = 5.0
    scan_job_timeout_seconds: int = 900
    cleanup_delay_seconds: float = 60.0

    # Workers
    worker_heartbeat_ttl: int = 30
    worker_poll_interval: float = 1.0

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_interval: float = 60.0
    scheduler_concurrency: int = 1
    scan_record_dedup_window: int = 300  # seconds

    # Maintenance sweeps
    maintenance_enabled: bool = True
    stale_finding_days: int = 30
    cve_lookback_hours: int = 24
    digest_lookback_days: int = 7

    # SCM providers
    github_api_url: str = "https://api.github.com"
    gitlab_api_url: str = "https://gitlab.com/api/v4"
    bitbucket_api_url: str = "https://api.bitbucket.org/2.0"
    azure_devops_api_url: str = "https://dev.azure.com"
    scm_timeout: float = 15.0

    # Weekly digest (SMTP)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from: str = "noreply@diviner.local"
    digest_recipients: Annotated[list[str], NoDecode] = []

    @field_validator("digest_recipients", mode="before")
    @classmethod
    def _parse_digest_recipients(cls, v: object) -> list[str]:
        if isinstance(v, str):
            return [a.strip() for a in v.split(",") if a.strip()]
        return v if isinstance(v, list) else []

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"


def get_settings() -> Settings:
    return Settings()
