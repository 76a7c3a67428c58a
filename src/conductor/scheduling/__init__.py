"""Cron jobs, the scheduler and its tick backend."""

from conductor.scheduling.backend import ThreadTickBackend
from conductor.scheduling.cron import describe, next_fire, previous_fire, validate_cron
from conductor.scheduling.jobs import CronJob, Job, WorkflowJob
from conductor.scheduling.loader import load_jobs_file, parse_jobs, register_builtin_jobs
from conductor.scheduling.scheduler import JobListing, Scheduler, TriggerResult

__all__ = [
    "CronJob",
    "Job",
    "JobListing",
    "Scheduler",
    "ThreadTickBackend",
    "TriggerResult",
    "WorkflowJob",
    "describe",
    "load_jobs_file",
    "next_fire",
    "parse_jobs",
    "previous_fire",
    "register_builtin_jobs",
    "validate_cron",
]
