"""Pydantic models for loose workflow payloads.

HTTP bodies, CLI workflow files and the jobs file all describe workflows as
plain JSON/YAML. These models check the *shape* (required keys, types) and
convert to the frozen domain dataclasses. Graph validity is left to the
orchestrator, so a structurally well-formed but cyclic workflow still
produces a recorded failed execution.

Example YAML::

    name: welcome
    environment:
      TENANT: acme
    timeout_seconds: 600
    tasks:
      - id: send-email
        action: {type: http, url: https://automation.example.com/hooks/welcome}
        payload: {template: welcome}
        retry: {max_attempts: 3, base_delay: 1.0}
        timeout_seconds: 30
      - id: log-crm
        action: crm-log
        depends_on: [send-email]
        retry: {max_attempts: 5, base_delay: 2.0, backoff: linear}
        environment: {CRM_PIPELINE: onboarding}
        condition: {TENANT: acme}

Tags:
    conductor, orchestration, yaml, pydantic, declarative
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from conductor.execution.retry import RetryPolicy
from conductor.orchestration.models import Task, WorkflowDefinition


class RetryPolicySpec(BaseModel):
    """Retry section of a task."""

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=60.0, ge=0)
    jitter: bool = False
    backoff: Literal["exponential", "linear"] = "exponential"

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(**self.model_dump())


class TaskPayload(BaseModel):
    """One task of a loose workflow payload."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str
    name: str | None = None
    action: str | dict[str, Any]
    depends_on: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("depends_on", "dependencies"),
    )
    payload: dict[str, Any] = Field(default_factory=dict)
    retry: RetryPolicySpec | None = None
    timeout_seconds: float | None = None
    environment: dict[str, str] = Field(default_factory=dict)
    condition: dict[str, str] = Field(default_factory=dict)

    def to_task(self) -> Task:
        return Task(
            id=self.id,
            name=self.name,
            action=self.action,
            depends_on=frozenset(self.depends_on),
            payload=dict(self.payload),
            retry_policy=self.retry.to_policy() if self.retry else None,
            timeout_seconds=self.timeout_seconds,
            environment=dict(self.environment),
            condition=dict(self.condition),
        )


class WorkflowPayload(BaseModel):
    """A workflow as submitted over HTTP or loaded from YAML."""

    model_config = ConfigDict(extra="forbid")

    name: str
    id: str | None = None
    description: str = ""
    version: int = Field(default=1, ge=1)
    environment: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float | None = None
    tasks: list[TaskPayload]

    def to_definition(self) -> WorkflowDefinition:
        return WorkflowDefinition(
            name=self.name,
            id=self.id,
            description=self.description,
            version=self.version,
            environment=dict(self.environment),
            timeout_seconds=self.timeout_seconds,
            tasks=tuple(t.to_task() for t in self.tasks),
        )

    @classmethod
    def from_definition(cls, workflow: WorkflowDefinition) -> WorkflowPayload:
        """Reverse conversion, used for listings and export."""
        tasks = []
        for task in workflow.tasks:
            policy = task.retry_policy
            tasks.append(
                TaskPayload(
                    id=task.id,
                    name=task.name,
                    action=task.action if isinstance(task.action, str) else dict(task.action),
                    depends_on=sorted(task.depends_on),
                    payload=dict(task.payload),
                    retry=RetryPolicySpec(**policy.to_dict()) if policy else None,
                    timeout_seconds=task.timeout_seconds,
                    environment=dict(task.environment),
                    condition=dict(task.condition),
                )
            )
        return cls(
            name=workflow.name,
            id=workflow.id,
            description=workflow.description,
            version=workflow.version,
            environment=dict(workflow.environment),
            timeout_seconds=workflow.timeout_seconds,
            tasks=tasks,
        )

    @classmethod
    def from_yaml(cls, yaml_content: str) -> WorkflowPayload:
        """Parse and validate YAML (or JSON) content.

        Raises:
            ValueError: If the YAML is invalid or doesn't match the schema
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}") from e
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> WorkflowPayload:
        content = Path(path).read_text(encoding="utf-8")
        return cls.from_yaml(content)
