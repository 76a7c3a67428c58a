"""Workflow definitions, dependency graphs and the orchestrator."""

from conductor.orchestration.graph import (
    topological_layers,
    topological_order,
    transitive_dependents,
    validate_graph,
    validate_workflow,
)
from conductor.orchestration.models import (
    Execution,
    ExecutionStatus,
    Task,
    TaskResult,
    TaskStatus,
    TriggerSource,
    WorkflowDefinition,
)
from conductor.orchestration.orchestrator import Orchestrator
from conductor.orchestration.payloads import RetryPolicySpec, TaskPayload, WorkflowPayload

__all__ = [
    "Execution",
    "ExecutionStatus",
    "Orchestrator",
    "RetryPolicySpec",
    "Task",
    "TaskPayload",
    "TaskResult",
    "TaskStatus",
    "TriggerSource",
    "WorkflowDefinition",
    "WorkflowPayload",
    "topological_layers",
    "topological_order",
    "transitive_dependents",
    "validate_graph",
    "validate_workflow",
]
