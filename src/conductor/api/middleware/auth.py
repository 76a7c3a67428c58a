"""
Request authentication.

Two independent checks:

- ``AuthMiddleware``: when ``CONDUCTOR_API_KEY`` is set, dashboard endpoints
  require a matching ``X-API-Key`` header. Health, metrics, docs and the
  time-based trigger bypass it.
- ``verify_cron_secret``: the time-based trigger requires the shared cron
  secret as ``Authorization: Bearer <secret>``, ``X-Cron-Secret`` or
  ``?secret=``. With no secret configured the trigger is closed.

Both compare in constant time.
"""

from __future__ import annotations

import hmac
import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from conductor.api.middleware.errors import problem_response
from conductor.core.errors import AuthError

# Paths that never require the API key
_BYPASS_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^/health"),
    re.compile(r"^/metrics$"),
    re.compile(r"/workflows/cron$"),
    re.compile(r"/docs$"),
    re.compile(r"/redoc$"),
    re.compile(r"/openapi\.json$"),
]


def _is_bypass(path: str) -> bool:
    return any(p.search(path) for p in _BYPASS_PATTERNS)


def _matches(provided: str | None, expected: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


class AuthMiddleware(BaseHTTPMiddleware):
    """Reject dashboard requests that lack a valid API key.

    ``api_key=None`` disables enforcement.
    """

    def __init__(self, app: object, api_key: str | None = None) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._api_key = api_key

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self._api_key is None or _is_bypass(request.url.path):
            return await call_next(request)

        if not _matches(request.headers.get("X-API-Key"), self._api_key):
            return problem_response(
                status=401,
                detail="Missing or invalid API key. Provide X-API-Key header.",
                instance=request.url.path,
                code="AUTH",
            )
        return await call_next(request)


def extract_cron_secret(request: Request) -> str | None:
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return request.headers.get("X-Cron-Secret") or request.query_params.get("secret")


def verify_cron_secret(request: Request, expected: str | None) -> None:
    """Raise AuthError unless the request carries the configured cron secret."""
    if not expected:
        raise AuthError("Time-based trigger is disabled: no cron secret configured")
    if not _matches(extract_cron_secret(request), expected):
        raise AuthError("Unauthorized: invalid or missing cron secret")
