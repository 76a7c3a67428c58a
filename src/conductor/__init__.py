"""
conductor: workflow scheduling, orchestration and monitoring.

Subpackages:
    core            errors, structured logging, settings
    execution       actions, retry policy, timeouts, the task runner
    orchestration   workflow models, dependency graph, the orchestrator
    scheduling      cron jobs, the scheduler, job loading, the tick backend
    observability   execution history, health reports, metrics
    api             FastAPI application
    cli             Typer command line
"""

__version__ = "0.1.0"
