"""
FastAPI dependency injection.

The service and settings live on ``app.state`` (set by ``create_app``), so
tests can build an app around any service instance without touching
process-wide state.

Usage in routers::

    from conductor.api.deps import Service

    @router.get("/things")
    def list_things(service: Service):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from conductor.core.settings import ConductorSettings
from conductor.service import ConductorService


def get_service(request: Request) -> ConductorService:
    return request.app.state.service


def get_app_settings(request: Request) -> ConductorSettings:
    return request.app.state.settings


Service = Annotated[ConductorService, Depends(get_service)]
Settings = Annotated[ConductorSettings, Depends(get_app_settings)]
