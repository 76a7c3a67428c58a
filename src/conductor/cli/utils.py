"""
CLI helpers: rich output and a small client for a running conductor API.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import typer
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

_STATUS_STYLES = {
    "succeeded": "green",
    "healthy": "green",
    "partial": "yellow",
    "degraded": "yellow",
    "skipped": "dim",
    "failed": "red",
    "unhealthy": "red",
}


def styled(value: str | None) -> str:
    if value is None:
        return "[dim]-[/dim]"
    style = _STATUS_STYLES.get(value)
    return f"[{style}]{value}[/{style}]" if style else value


def fail(message: str, code: int = 1) -> typer.Exit:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    return typer.Exit(code=code)


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def execution_table(execution: dict[str, Any]) -> Table:
    table = Table(
        title=f"{execution['workflow_name']} [{execution['id']}] {styled(execution['status'])}"
    )
    table.add_column("Task", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Error", style="dim")
    for result in execution["task_results"]:
        table.add_row(
            result["task_id"],
            styled(result["status"]),
            str(result["attempts"]),
            f"{result['duration_seconds']:.2f}s",
            result["error"] or "",
        )
    return table


def history_table(executions: list[dict[str, Any]]) -> Table:
    table = Table(title="Recent executions")
    table.add_column("Execution", style="cyan")
    table.add_column("Workflow")
    table.add_column("Status")
    table.add_column("Trigger")
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    for e in executions:
        duration = e.get("duration_seconds")
        table.add_row(
            e["id"],
            e["workflow_name"],
            styled(e["status"]),
            e["triggered_by"],
            e["started_at"][:19],
            f"{duration:.2f}s" if duration is not None else "-",
        )
    return table


def jobs_table(listing: dict[str, list[dict[str, Any]]]) -> Table:
    table = Table(title="Jobs")
    table.add_column("Id", style="cyan")
    table.add_column("Kind")
    table.add_column("Schedule")
    table.add_column("Enabled")
    table.add_column("Runs", justify="right")
    table.add_column("Last status")
    table.add_column("Next run")
    for job in [*listing["workflows"], *listing["cron"]]:
        table.add_row(
            job["id"],
            job["kind"],
            job["schedule"],
            "yes" if job["enabled"] else "[dim]no[/dim]",
            str(job["run_count"]),
            styled(job["last_status"]),
            (job["next_run"] or "-")[:19],
        )
    return table


class ApiClient:
    """Thin httpx wrapper around a running conductor API."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 330.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"X-API-Key": api_key} if api_key else {}
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout, transport=transport
        )

    def request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request and return the ``data`` of the success envelope.

        Raises:
            typer.Exit: Connection failure or non-2xx response
        """
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise fail(f"cannot reach {self._client.base_url}: {e}") from e
        if response.is_error:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise fail(f"HTTP {response.status_code}: {detail}")
        return response.json()["data"]

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ApiClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
