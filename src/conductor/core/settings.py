"""Runtime configuration for conductor.

All settings are read from ``CONDUCTOR_``-prefixed environment variables or a
``.env`` file and validated once at startup.

Examples:
    >>> settings = ConductorSettings(max_concurrency=2, cron_secret="s3cret")
    >>> settings.max_concurrency
    2

Environment::

    CONDUCTOR_LOG_LEVEL=DEBUG
    CONDUCTOR_MAX_CONCURRENCY=8
    CONDUCTOR_CRON_SECRET=...
    CONDUCTOR_JOBS_FILE=/etc/conductor/jobs.yaml
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConductorSettings(BaseSettings):
    """Settings for the orchestration service.

    Fields
    ──────
    max_concurrency         : Worker threads per execution
    max_concurrent_actions  : Process-wide cap on in-flight action calls
    max_concurrent_jobs     : Process-wide cap on concurrently running jobs
    history_capacity        : Executions retained by the monitor
    health_window           : Recent executions considered for health
    cron_secret             : Shared secret for the time-based trigger
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUCTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    service_name: str = "conductor"
    log_level: str = "INFO"
    log_json: bool | None = None
    debug: bool = False

    # ── Execution ────────────────────────────────────────────────
    max_concurrency: int = Field(default=5, ge=1)
    max_concurrent_actions: int = Field(default=10, ge=1)
    max_concurrent_jobs: int = Field(default=4, ge=1)
    default_task_timeout: float = Field(default=300.0, gt=0)
    default_max_attempts: int = Field(default=3, ge=1)
    default_retry_delay: float = Field(default=1.0, ge=0)
    default_retry_multiplier: float = Field(default=2.0, ge=1)
    default_retry_max_delay: float = Field(default=60.0, ge=0)

    # ── Monitor ──────────────────────────────────────────────────
    history_capacity: int = Field(default=100, ge=1)
    health_window: int = Field(default=5, ge=1)
    unhealthy_failure_rate: float = Field(default=0.5, ge=0, le=1)
    degraded_failure_rate: float = Field(default=0.2, ge=0, le=1)
    slow_task_seconds: float = Field(default=60.0, gt=0)
    task_failure_rate: float = Field(default=0.2, ge=0, le=1)
    failing_task_limit: int = Field(default=3, ge=0)

    # ── Scheduler ────────────────────────────────────────────────
    cron_secret: str | None = None
    jobs_file: Path | None = None
    register_builtin_jobs: bool = True
    tick_enabled: bool = False
    tick_interval: float = Field(default=30.0, gt=0)

    # ── API ──────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000
    api_prefix: str = "/api/v1"
    api_title: str = "Conductor API"
    api_version: str = "0.1.0"
    api_key: str | None = None
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @model_validator(mode="after")
    def _check_thresholds(self) -> ConductorSettings:
        if self.degraded_failure_rate > self.unhealthy_failure_rate:
            raise ValueError(
                "degraded_failure_rate must not exceed unhealthy_failure_rate"
            )
        return self


@lru_cache
def get_settings() -> ConductorSettings:
    """Return the cached process-wide settings (cleared in tests)."""
    return ConductorSettings()
