"""
Error handlers: map ConductorError categories to RFC 7807 responses.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from conductor.api.schemas import ProblemDetail
from conductor.core.errors import ConductorError, ErrorCategory
from conductor.core.logging import get_logger

logger = get_logger(__name__)

# ── Error category → HTTP status mapping ─────────────────────────────────

ERROR_CATEGORY_TO_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.DUPLICATE: 409,
    ErrorCategory.AUTH: 401,
    ErrorCategory.DEFINITION: 400,
    ErrorCategory.SCHEDULE: 400,
    ErrorCategory.CONFIG: 500,
    ErrorCategory.ACTION: 502,
    ErrorCategory.TIMEOUT: 504,
    ErrorCategory.INTERNAL: 500,
}

_TITLES: dict[int, str] = {
    400: "Bad Request",
    401: "Unauthorized",
    404: "Not Found",
    409: "Conflict",
    500: "Internal Server Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    504: "Gateway Timeout",
}


def status_for_category(category: ErrorCategory) -> int:
    return ERROR_CATEGORY_TO_STATUS.get(category, 500)


def problem_response(
    *,
    status: int,
    detail: str = "",
    instance: str = "",
    title: str | None = None,
    code: str | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(
        title=title or _TITLES.get(status, "Error"),
        status=status,
        detail=detail,
        instance=instance,
        code=code,
    )
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    return JSONResponse(
        status_code=status,
        content=body.model_dump(),
        media_type="application/problem+json",
        headers=headers,
    )


async def conductor_error_handler(request: Request, exc: ConductorError) -> JSONResponse:
    status = status_for_category(exc.category)
    logger.info(
        "api.error",
        path=request.url.path,
        status=status,
        error_type=exc.__class__.__name__,
        message=exc.message,
    )
    return problem_response(
        status=status,
        detail=exc.message,
        instance=request.url.path,
        code=exc.category.value,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: 500 without leaking details unless debug is on."""
    logger.error("api.unhandled_exception", path=request.url.path, exc_info=exc)
    return problem_response(
        status=500,
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=request.url.path,
        code=ErrorCategory.INTERNAL.value,
    )
