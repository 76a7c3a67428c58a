"""Cron expression evaluation (5-field, UTC) via croniter."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from croniter import croniter

from conductor.core.errors import ScheduleError


def validate_cron(expression: str) -> str:
    """Return the normalized expression or raise ScheduleError."""
    normalized = " ".join((expression or "").split())
    if len(normalized.split(" ")) != 5:
        raise ScheduleError(f"Cron expression must have 5 fields: {expression!r}")
    if not croniter.is_valid(normalized):
        raise ScheduleError(f"Invalid cron expression: {expression!r}")
    return normalized


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def next_fire(expression: str, after: datetime) -> datetime:
    """First fire time strictly after ``after``."""
    return croniter(expression, _aware(after).astimezone(UTC)).get_next(datetime)


def previous_fire(expression: str, at: datetime) -> datetime:
    """Most recent fire time at or before ``at``: the start of the current due-window."""
    # get_prev is strict; cron has minute resolution
    minute = _aware(at).astimezone(UTC).replace(second=0, microsecond=0)
    start = minute + timedelta(seconds=1)
    return croniter(expression, start).get_prev(datetime)


def describe(expression: str, now: datetime, count: int = 3) -> list[datetime]:
    """The next ``count`` fire times after ``now`` (for CLI/API listings)."""
    itr = croniter(expression, _aware(now).astimezone(UTC))
    return [itr.get_next(datetime) for _ in range(count)]
