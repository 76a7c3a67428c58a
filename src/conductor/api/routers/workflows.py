"""
Workflow dashboard endpoints.

    GET    /workflows            metrics, recent executions, health
    POST   /workflows            execute an ad hoc workflow now
    GET    /workflows/health     health report + job listing
    GET    /workflows/{job_id}   one job, its recent executions and task metrics
    POST   /workflows/{job_id}   trigger a job immediately
    DELETE /workflows/{job_id}   soft-disable a job
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request

from conductor.api.deps import Service
from conductor.api.middleware.errors import problem_response
from conductor.api.schemas import ExecuteWorkflowRequest, SuccessResponse
from conductor.core.errors import NotFoundError
from conductor.orchestration.models import TriggerSource
from conductor.scheduling.jobs import CronJob, WorkflowJob

router = APIRouter(prefix="/workflows")


@router.get("", response_model=SuccessResponse[dict[str, Any]])
def workflow_overview(
    service: Service,
    limit: int = Query(default=10, ge=1, le=1000),
) -> SuccessResponse[dict[str, Any]]:
    monitor = service.monitor
    return SuccessResponse(
        data={
            "metrics": monitor.get_aggregate_metrics().to_dict(),
            "workflows": [m.to_dict() for m in monitor.get_workflow_metrics()],
            "recent_executions": [e.to_dict() for e in monitor.get_recent_executions(limit)],
            "health": monitor.get_health_report().to_dict(),
        }
    )


@router.post("", response_model=SuccessResponse[dict[str, Any]])
def execute_workflow(
    request: Request,
    service: Service,
    body: ExecuteWorkflowRequest,
) -> Any:
    """Execute a workflow submitted in the request body and record the result."""
    if not body.immediate:
        return problem_response(
            status=501,
            detail="Deferred execution is not supported; send immediate=true",
            instance=request.url.path,
        )
    execution = service.execute_workflow(
        body.workflow.to_definition(), triggered_by=TriggerSource.API
    )
    return SuccessResponse(data=execution.to_dict())


@router.get("/health", response_model=SuccessResponse[dict[str, Any]])
def workflow_health(service: Service) -> SuccessResponse[dict[str, Any]]:
    return SuccessResponse(
        data={
            "health": service.monitor.get_health_report().to_dict(),
            "jobs": service.scheduler.get_all_jobs().to_dict(),
            "ticker": service.backend.health(),
        }
    )


@router.get("/{job_id}", response_model=SuccessResponse[dict[str, Any]])
def get_workflow(
    job_id: str,
    service: Service,
    limit: int = Query(default=20, ge=1, le=1000),
) -> SuccessResponse[dict[str, Any]]:
    """A job (or an ad hoc workflow name) with its recent executions and task metrics."""
    job = service.scheduler.get_job(job_id)
    if job is not None:
        executions = service.monitor.get_executions_for(job_id=job_id, limit=limit)
        match job:
            case WorkflowJob():
                task_ids = job.workflow.task_ids
            case CronJob():
                task_ids = [job.name]
        name = job.name
    else:
        executions = service.monitor.get_executions_for(workflow_name=job_id, limit=limit)
        if not executions:
            raise NotFoundError("Workflow", job_id)
        task_ids = sorted({r.task_id for e in executions for r in e.task_results})
        name = job_id

    return SuccessResponse(
        data={
            "job": job.to_dict() if job is not None else None,
            "metrics": [m.to_dict() for m in service.monitor.get_workflow_metrics(name)],
            "recent_executions": [e.to_dict() for e in executions],
            "task_metrics": [m.to_dict() for m in service.monitor.get_task_metrics(task_ids)],
        }
    )


@router.post("/{job_id}", response_model=SuccessResponse[dict[str, Any]])
def trigger_workflow(job_id: str, service: Service) -> SuccessResponse[dict[str, Any]]:
    """Run a job now regardless of schedule (409 if it is already running)."""
    execution = service.scheduler.run_job(job_id, triggered_by=TriggerSource.API)
    warnings = [] if execution.succeeded else [f"execution {execution.status.value}"]
    return SuccessResponse(data=execution.to_dict(), warnings=warnings)


@router.delete("/{job_id}", response_model=SuccessResponse[dict[str, Any]])
def disable_workflow(job_id: str, service: Service) -> SuccessResponse[dict[str, Any]]:
    if not service.scheduler.disable_job(job_id):
        raise NotFoundError("Job", job_id)
    job = service.scheduler.get_job(job_id)
    return SuccessResponse(data=job.to_dict() if job else {"id": job_id})
