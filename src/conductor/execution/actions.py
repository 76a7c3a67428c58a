"""
Task actions: the opaque references a Task uses to reach external automation.

A task's ``action`` is resolved through an ``ActionRegistry`` into a callable
``(payload, timeout) -> output``. Two kinds are supported:

- **http**: ``{"type": "http", "url": "...", "method": "POST", "headers": {...}}``
  posts the JSON payload to an automation endpoint with httpx. The endpoint
  answers ``{"status": "success" | "error", ...}``.
- **callable**: a plain string name (or ``{"type": "callable", "name": ...}``)
  naming an in-process handler registered by the host application.

Failure classification:

    ┌──────────────────────────────┬──────────────────────────────┐
    │ outcome                      │ raised                       │
    ├──────────────────────────────┼──────────────────────────────┤
    │ transport error / timeout    │ TaskActionError(retryable)   │
    │ HTTP 429, 5xx                │ TaskActionError(retryable)   │
    │ HTTP 4xx                     │ TaskActionError(final)       │
    │ body {"status": "error"}     │ TaskActionError(retryable)   │
    │ unknown action reference     │ TaskActionError(final)       │
    └──────────────────────────────┴──────────────────────────────┘

Example:
    >>> registry = ActionRegistry()
    >>> registry.register("cleanup-expired-sessions", lambda payload: {"deleted": 3})
    >>> fn = registry.resolve("cleanup-expired-sessions")
    >>> fn({}, 5.0)
    {'deleted': 3}
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from conductor.core.errors import ConductorError, TaskActionError, is_retryable
from conductor.core.logging import get_logger

logger = get_logger(__name__)

ActionRef = str | Mapping[str, Any]
Handler = Callable[[dict[str, Any]], Any]
ResolvedAction = Callable[[dict[str, Any], float], Any]

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429})


def describe_action(action: ActionRef) -> str:
    """Short human-readable label for logs and error messages."""
    if isinstance(action, str):
        return action
    kind = action.get("type", "callable")
    if kind == "http":
        return f"{action.get('method', 'POST').upper()} {action.get('url', '?')}"
    return str(action.get("name", "?"))


def check_result(result: Any, action_label: str) -> Any:
    """Raise if an action answered with an error envelope."""
    if isinstance(result, Mapping) and result.get("status") == "error":
        message = result.get("error") or result.get("message") or "action reported error"
        raise TaskActionError(
            f"{action_label}: {message}",
            retryable=bool(result.get("retryable", True)),
        )
    return result


@dataclass
class HttpAction:
    """JSON-over-HTTP call to an external automation endpoint."""

    url: str
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    transport: httpx.BaseTransport | None = None

    def __call__(self, payload: dict[str, Any], timeout: float) -> Any:
        label = f"{self.method.upper()} {self.url}"
        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.request(
                    self.method.upper(), self.url, json=payload, headers=self.headers
                )
        except httpx.TimeoutException as e:
            raise TaskActionError(
                f"{label}: request timed out", retryable=True, cause=e
            ).with_context(url=self.url)
        except httpx.TransportError as e:
            raise TaskActionError(
                f"{label}: {e.__class__.__name__}: {e}", retryable=True, cause=e
            ).with_context(url=self.url)

        status = response.status_code
        if status >= 400:
            retryable = status >= 500 or status in RETRYABLE_STATUS_CODES
            raise TaskActionError(
                f"{label}: HTTP {status}", retryable=retryable
            ).with_context(url=self.url, http_status=status)

        try:
            body: Any = response.json()
        except ValueError:
            body = {"status_code": status, "text": response.text}
        return check_result(body, label)


class ActionRegistry:
    """Resolves action references to callables.

    Handlers are registered by name; http actions are built on the fly from
    their reference. ``http_transport`` is handed to every ``HttpAction``
    (tests pass an ``httpx.MockTransport``).
    """

    def __init__(self, http_transport: httpx.BaseTransport | None = None):
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.Lock()
        self._http_transport = http_transport

    def register(self, name: str, handler: Handler) -> None:
        if not name:
            raise ValueError("action name must be non-empty")
        with self._lock:
            self._handlers[name] = handler
        logger.debug("actions.registered", action=name)

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._handlers.pop(name, None) is not None

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._handlers)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._handlers

    def resolve(self, action: ActionRef) -> ResolvedAction:
        """Return a ``(payload, timeout) -> output`` callable for ``action``.

        Raises:
            TaskActionError: The reference is malformed or names no handler
        """
        if isinstance(action, str):
            return self._resolve_callable(action)

        kind = action.get("type", "callable")
        if kind == "http":
            url = action.get("url")
            if not url:
                raise TaskActionError("http action requires a url", retryable=False)
            return HttpAction(
                url=url,
                method=action.get("method", "POST"),
                headers=dict(action.get("headers") or {}),
                transport=self._http_transport,
            )
        if kind == "callable":
            return self._resolve_callable(str(action.get("name", "")))
        raise TaskActionError(f"Unsupported action type: {kind}", retryable=False)

    def _resolve_callable(self, name: str) -> ResolvedAction:
        with self._lock:
            handler = self._handlers.get(name)
        if handler is None:
            raise TaskActionError(f"No handler registered for action: {name!r}", retryable=False)

        def call(payload: dict[str, Any], timeout: float) -> Any:
            try:
                result = handler(payload)
            except ConductorError:
                raise
            except Exception as e:
                raise TaskActionError(
                    f"{name}: {e.__class__.__name__}: {e}",
                    retryable=is_retryable(e),
                    cause=e,
                ) from e
            return check_result(result, name)

        call.__name__ = name
        return call
