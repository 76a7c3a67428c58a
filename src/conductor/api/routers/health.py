"""Kubernetes-style probes.

    GET /health/live    always 200 while the process serves requests
    GET /health/ready   503 until the service has started, or when the
                        enabled ticker thread has died. A failed tick is
                        reported as ticker.last_error but keeps it ready.
    GET /health         workflow health report; 503 when unhealthy
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Any, Literal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from conductor.api.deps import Service

_START_TIME = time.monotonic()

router = APIRouter(prefix="/health")


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"] = "healthy"
    service: str = ""
    version: str = ""
    uptime_s: float = 0.0
    timestamp: str = ""
    checks: dict[str, Any] = Field(default_factory=dict)


def _response(service: Service, status: str, checks: dict[str, Any]) -> HealthResponse:
    return HealthResponse(
        status=status,  # type: ignore[arg-type]
        service=service.settings.service_name,
        version=service.settings.api_version,
        uptime_s=round(time.monotonic() - _START_TIME, 1),
        timestamp=datetime.now(UTC).isoformat(),
        checks=checks,
    )


@router.get("/live", response_model=HealthResponse)
def liveness(service: Service) -> HealthResponse:
    return _response(service, "healthy", {})


@router.get("/ready", response_model=HealthResponse)
def readiness(service: Service) -> JSONResponse:
    ticker = service.backend.health()
    ready = service.started and (not service.settings.tick_enabled or service.backend.is_running)
    body = _response(
        service,
        "healthy" if ready else "unhealthy",
        {"started": service.started, "ticker": ticker},
    )
    return JSONResponse(content=body.model_dump(), status_code=200 if ready else 503)


@router.get("", response_model=HealthResponse)
def health(service: Service) -> JSONResponse:
    report = service.monitor.get_health_report()
    body = _response(service, report.status.value, {"workflows": report.to_dict()})
    return JSONResponse(
        content=body.model_dump(), status_code=503 if report.status.value == "unhealthy" else 200
    )
