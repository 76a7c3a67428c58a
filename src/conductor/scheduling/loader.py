"""Static job registration from a YAML jobs file and the built-in job list.

Example jobs file::

    workflows:
      - id: welcome-daily
        schedule: "0 9 * * *"
        workflow:
          name: welcome
          tasks:
            - id: send-email
              action: {type: http, url: https://automation.example.com/hooks/welcome}
            - id: log-crm
              action: crm-log
              depends_on: [send-email]
    cron:
      - id: cleanup-expired-sessions
        schedule: "0 2 * * *"
        action: cleanup-expired-sessions
        enabled: false
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from conductor.core.errors import ConfigError, ConductorError
from conductor.core.logging import get_logger
from conductor.orchestration.payloads import RetryPolicySpec, WorkflowPayload
from conductor.scheduling.scheduler import Scheduler

logger = get_logger(__name__)


class WorkflowJobSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    schedule: str
    enabled: bool = True
    description: str = ""
    workflow: WorkflowPayload

    def register(self, scheduler: Scheduler) -> str:
        return scheduler.register_workflow(
            self.workflow.to_definition(),
            self.schedule,
            job_id=self.id,
            enabled=self.enabled,
            description=self.description,
        )


class CronJobSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    schedule: str
    action: str | dict[str, Any]
    name: str | None = None
    enabled: bool = True
    description: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    retry: RetryPolicySpec | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)

    def register(self, scheduler: Scheduler) -> str:
        return scheduler.register_cron(
            self.id,
            self.schedule,
            self.action,
            name=self.name,
            payload=self.payload,
            retry_policy=self.retry.to_policy() if self.retry else None,
            timeout_seconds=self.timeout_seconds,
            enabled=self.enabled,
            description=self.description,
        )


class JobsFileSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    workflows: list[WorkflowJobSpec] = Field(default_factory=list)
    cron: list[CronJobSpec] = Field(default_factory=list)

    def register_all(self, scheduler: Scheduler) -> list[str]:
        ids = [spec.register(scheduler) for spec in self.workflows]
        ids.extend(spec.register(scheduler) for spec in self.cron)
        return ids


# Recurring maintenance jobs of the host application. Their actions are
# named handlers the host registers on the ActionRegistry.
BUILTIN_CRON_JOBS: tuple[CronJobSpec, ...] = (
    CronJobSpec(
        id="cleanup-expired-sessions",
        schedule="0 2 * * *",
        action="cleanup-expired-sessions",
        description="Remove expired sessions and temporary data",
    ),
    CronJobSpec(
        id="aggregate-analytics",
        schedule="0 0 * * 1",
        action="aggregate-analytics",
        description="Aggregate weekly analytics",
    ),
    CronJobSpec(
        id="subscription-renewal-check",
        schedule="0 8 * * *",
        action="subscription-renewal-check",
        description="Check subscriptions that are about to renew",
    ),
    CronJobSpec(
        id="agent-health-check",
        schedule="0 * * * *",
        action="agent-health-check",
        description="Check that automation agents respond",
    ),
)


def register_builtin_jobs(scheduler: Scheduler) -> list[str]:
    return [spec.register(scheduler) for spec in BUILTIN_CRON_JOBS]


def parse_jobs(yaml_content: str) -> JobsFileSpec:
    """Parse and validate jobs YAML.

    Raises:
        ConfigError: Invalid YAML or schema mismatch
    """
    try:
        data = yaml.safe_load(yaml_content) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid jobs YAML: {e}", cause=e) from e
    try:
        return JobsFileSpec.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid jobs file: {e}", cause=e) from e


def load_jobs_file(path: str | Path, scheduler: Scheduler) -> list[str]:
    """Register every job in a YAML jobs file. Returns the registered ids.

    Raises:
        ConfigError: Unreadable file, invalid YAML/schema or a rejected job
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read jobs file {path}: {e}", cause=e) from e

    spec = parse_jobs(content)
    try:
        ids = spec.register_all(scheduler)
    except ConductorError as e:
        raise ConfigError(f"{path}: {e.message}", cause=e) from e
    logger.info("scheduler.jobs_file_loaded", path=str(path), jobs=ids)
    return ids
