"""
API schemas: request bodies, the success envelope and RFC 7807 errors.

Every 2xx response is ``SuccessResponse[T]``; every 4xx/5xx is
``ProblemDetail``. The time-based trigger is the exception: it returns a
bare ``TriggerResponse`` with the HTTP status reflecting the outcome,
because external cron providers only look at the status code.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from conductor.orchestration.payloads import WorkflowPayload

T = TypeVar("T")


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Example:
        {
            "type": "about:blank",
            "title": "Not Found",
            "status": 404,
            "detail": "Job not found: nightly-report",
            "instance": "/api/v1/workflows/nightly-report",
            "code": "NOT_FOUND"
        }
    """

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str = ""
    instance: str = ""
    code: str | None = Field(default=None, description="ErrorCategory of the failure")


class SuccessResponse(BaseModel, Generic[T]):
    data: T
    warnings: list[str] = Field(default_factory=list)


class ExecuteWorkflowRequest(BaseModel):
    """Body of ``POST /workflows``."""

    workflow: WorkflowPayload
    immediate: bool = True


class CronTriggerRequest(BaseModel):
    """Body of ``POST /workflows/cron``."""

    job_id: str | None = Field(default=None, min_length=1)


class TriggerResponse(BaseModel):
    job_id: str
    success: bool
    message: str
    skipped: bool = False
    execution: dict[str, Any] | None = None
