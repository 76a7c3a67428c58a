"""Hard per-attempt timeouts for task actions.

Action calls are blocking and may hang on a slow automation endpoint. Each
attempt runs on a dedicated worker thread; the caller waits at most
``timeout_seconds`` and then moves on. Python cannot kill the worker, so an
abandoned attempt keeps running in the background until its own I/O returns.
HTTP actions pass the same timeout to httpx so abandoned workers are
short-lived in practice.
"""

from __future__ import annotations

import concurrent.futures
import time
from collections.abc import Callable
from typing import Any, TypeVar

from conductor.core.errors import TaskTimeoutError

T = TypeVar("T")


def run_with_timeout(
    func: Callable[..., T],
    timeout_seconds: float,
    operation: str | None = None,
    args: tuple[Any, ...] | None = None,
    kwargs: dict[str, Any] | None = None,
) -> T:
    """Run a callable with a timeout using thread isolation.

    Raises:
        TaskTimeoutError: If execution exceeds timeout
        Exception: Any exception raised by func

    Example:
        >>> run_with_timeout(call_endpoint, 30.0, operation="notify", args=(payload,))
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=1, thread_name_prefix="conductor-action"
    )
    future = executor.submit(func, *(args or ()), **(kwargs or {}))
    try:
        return future.result(timeout=timeout_seconds)
    except concurrent.futures.TimeoutError:
        elapsed = time.monotonic() - start
        raise TaskTimeoutError(
            timeout=timeout_seconds,
            elapsed=elapsed,
            operation=operation or getattr(func, "__name__", "unknown"),
        ) from None
    finally:
        # Never block on a hung worker
        executor.shutdown(wait=False, cancel_futures=True)
