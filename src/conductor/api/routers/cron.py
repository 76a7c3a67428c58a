"""
Time-based trigger endpoint.

An external cron provider calls ``GET /workflows/cron?job=<id>`` (or POSTs
``{"job_id": ...}``) on each schedule tick. The secret is checked before
anything else, so an unauthenticated caller can never cause a side effect.

Status codes:
    200  job ran successfully, or the trigger was a benign no-op
         (disabled, already run this cycle, already running)
    400  no job id supplied
    401  missing/invalid secret
    404  unknown job id
    500  the job ran and failed (next_run not advanced)
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from conductor.api.deps import Service
from conductor.api.middleware.auth import verify_cron_secret
from conductor.api.middleware.errors import problem_response
from conductor.api.schemas import CronTriggerRequest, TriggerResponse
from conductor.core.errors import NotFoundError
from conductor.service import ConductorService

router = APIRouter(prefix="/workflows")


def _dispatch(request: Request, service: ConductorService, job_id: str | None) -> JSONResponse:
    verify_cron_secret(request, service.settings.cron_secret)
    if not job_id:
        return problem_response(
            status=400,
            detail="Job ID required (?job=<id> or {\"job_id\": ...})",
            instance=request.url.path,
        )
    if service.scheduler.get_job(job_id) is None:
        raise NotFoundError("Job", job_id)

    result = service.scheduler.handle_cron_request(job_id)
    body = TriggerResponse(**result.to_dict())
    return JSONResponse(status_code=200 if result.success else 500, content=body.model_dump())


@router.get("/cron", response_model=TriggerResponse)
def trigger_cron(
    request: Request,
    service: Service,
    job: str | None = Query(default=None, description="Job id to trigger"),
) -> JSONResponse:
    """Run a scheduled job on behalf of an external cron provider."""
    return _dispatch(request, service, job)


@router.post("/cron", response_model=TriggerResponse)
def trigger_cron_post(
    request: Request,
    service: Service,
    body: CronTriggerRequest | None = None,
) -> JSONResponse:
    """POST variant of the time-based trigger."""
    return _dispatch(request, service, body.job_id if body else None)
