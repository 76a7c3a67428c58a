"""
Root Typer application for the conductor CLI.

    conductor run <file>          execute a workflow file locally
    conductor status              health report and jobs of a running server
    conductor history             recent executions of a running server
    conductor jobs                list jobs (server, or --local static jobs)
    conductor trigger <job-id>    run a job now (server, or --local)
    conductor serve               start the API server
"""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError

from conductor.cli.utils import (
    ApiClient,
    console,
    execution_table,
    fail,
    history_table,
    jobs_table,
    print_json,
    styled,
)
from conductor.core.errors import ConductorError
from conductor.core.logging import configure_logging
from conductor.core.settings import ConductorSettings
from conductor.orchestration.models import TriggerSource
from conductor.orchestration.payloads import WorkflowPayload
from conductor.service import ConductorService

app = typer.Typer(
    name="conductor",
    help="conductor: workflow scheduling, orchestration and monitoring.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

UrlOption = typer.Option(
    "http://localhost:8000/api/v1", "--url", envvar="CONDUCTOR_URL", help="API base URL"
)
ApiKeyOption = typer.Option(None, "--api-key", envvar="CONDUCTOR_API_KEY", help="API key")
JsonOption = typer.Option(False, "--json", help="Print raw JSON")


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError, version

        try:
            v = version("conductor-core")
        except PackageNotFoundError:
            v = "unknown"
        typer.echo(f"conductor {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V", help="Show version and exit.", callback=_version_callback, is_eager=True
    ),
    log_level: str = typer.Option("WARNING", "--log-level", envvar="CONDUCTOR_LOG_LEVEL"),
) -> None:
    """conductor CLI: run workflows and inspect a running scheduler."""
    configure_logging(level=log_level, json_format=False)


def _build_service() -> ConductorService:
    return ConductorService.from_settings(ConductorSettings(tick_enabled=False))


def _local_service() -> ConductorService:
    service = _build_service()
    service.load_static_jobs()
    return service


@app.command()
def run(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Workflow YAML/JSON file"),
    as_json: bool = JsonOption,
) -> None:
    """Execute a workflow file in-process and print its task results."""
    try:
        workflow = WorkflowPayload.from_yaml_file(file).to_definition()
    except (ValueError, ValidationError) as e:
        raise fail(f"invalid workflow file {file}: {e}") from e

    service = _build_service()
    execution = service.execute_workflow(workflow, triggered_by=TriggerSource.CLI)

    if as_json:
        print_json(execution.to_dict())
    else:
        console.print(execution_table(execution.to_dict()))
        if execution.error:
            console.print(f"[red]{execution.error}[/red]")
    if not execution.succeeded:
        raise typer.Exit(code=1)


@app.command()
def status(url: str = UrlOption, api_key: str | None = ApiKeyOption, as_json: bool = JsonOption) -> None:
    """Show the health report and job listing of a running server."""
    with ApiClient(url, api_key=api_key) as client:
        data = client.request("GET", "/workflows/health")
    if as_json:
        print_json(data)
        return
    health = data["health"]
    console.print(f"Status: {styled(health['status'])}")
    metrics = health["metrics"]
    console.print(
        f"Executions: {metrics['total_executions']}  "
        f"success rate: {metrics['success_rate']:.0%}  "
        f"retained: {metrics['retained']}/{metrics['capacity']}"
    )
    for issue in health["issues"]:
        console.print(f"  [yellow]•[/yellow] {issue['message']}")
    for text in health["recommendations"]:
        console.print(f"  [dim]→ {text}[/dim]")
    console.print(jobs_table(data["jobs"]))


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Number of executions"),
    url: str = UrlOption,
    api_key: str | None = ApiKeyOption,
    as_json: bool = JsonOption,
) -> None:
    """List recent executions of a running server, most recent first."""
    with ApiClient(url, api_key=api_key) as client:
        data = client.request("GET", "/workflows", params={"limit": limit})
    executions = data["recent_executions"]
    if as_json:
        print_json(executions)
    elif not executions:
        console.print("[dim]No executions recorded.[/dim]")
    else:
        console.print(history_table(executions))


@app.command()
def jobs(
    local: bool = typer.Option(False, "--local", help="List static jobs without a server"),
    url: str = UrlOption,
    api_key: str | None = ApiKeyOption,
    as_json: bool = JsonOption,
) -> None:
    """List registered jobs and their schedule state."""
    if local:
        listing = _local_service().scheduler.get_all_jobs().to_dict()
    else:
        with ApiClient(url, api_key=api_key) as client:
            listing = client.request("GET", "/workflows/health")["jobs"]
    if as_json:
        print_json(listing)
    else:
        console.print(jobs_table(listing))


@app.command()
def trigger(
    job_id: str = typer.Argument(..., help="Job id"),
    local: bool = typer.Option(False, "--local", help="Run the job in-process"),
    url: str = UrlOption,
    api_key: str | None = ApiKeyOption,
    as_json: bool = JsonOption,
) -> None:
    """Run a job immediately, ignoring its schedule."""
    if local:
        try:
            execution = _local_service().scheduler.run_job(job_id, triggered_by=TriggerSource.CLI)
        except ConductorError as e:
            raise fail(e.message) from e
        data = execution.to_dict()
    else:
        with ApiClient(url, api_key=api_key) as client:
            data = client.request("POST", f"/workflows/{job_id}")

    if as_json:
        print_json(data)
    else:
        console.print(execution_table(data))
    if data["status"] != "succeeded":
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
) -> None:
    """Start the conductor REST API server."""
    import uvicorn

    settings = ConductorSettings()
    configure_logging(
        level=settings.log_level, json_format=settings.log_json, service=settings.service_name
    )
    bind_host = host or settings.host
    bind_port = port or settings.port
    console.print(f"[bold green]Starting conductor API[/bold green] on {bind_host}:{bind_port}")
    uvicorn.run(
        "conductor.api.app:create_app",
        factory=True,
        host=bind_host,
        port=bind_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    app()
