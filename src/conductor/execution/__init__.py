"""Task execution: actions, retry policy and timeouts.

The runner itself lives in :mod:`conductor.execution.task_runner`; it is not
re-exported here because it depends on the orchestration models, which in
turn import this package.
"""

from conductor.execution.actions import (
    ActionRef,
    ActionRegistry,
    HttpAction,
    check_result,
    describe_action,
)
from conductor.execution.retry import RetryPolicy
from conductor.execution.timeout import run_with_timeout

__all__ = [
    "ActionRef",
    "ActionRegistry",
    "HttpAction",
    "RetryPolicy",
    "check_result",
    "describe_action",
    "run_with_timeout",
]
