"""Task graph validation and ordering.

``validate_workflow`` is the single gate a definition passes through before
dispatch. It rejects, in order: an empty workflow name, empty or duplicate
task ids, self-dependencies, unknown dependencies and cycles.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Sequence

from conductor.core.errors import DefinitionError
from conductor.orchestration.models import Task, WorkflowDefinition


def validate_workflow(workflow: WorkflowDefinition) -> None:
    """Raise DefinitionError if the workflow cannot be executed."""
    if not workflow.name or not workflow.name.strip():
        raise DefinitionError("Workflow name must be non-empty")
    if not workflow.tasks:
        raise DefinitionError(f"Workflow '{workflow.name}' has no tasks")
    if workflow.timeout_seconds is not None and workflow.timeout_seconds <= 0:
        raise DefinitionError(f"Workflow '{workflow.name}' timeout must be positive")
    try:
        validate_graph(workflow.tasks)
    except DefinitionError as e:
        raise e.with_context(workflow=workflow.name)


def validate_graph(tasks: Sequence[Task]) -> None:
    """Check ids and dependency edges, then detect cycles."""
    seen: set[str] = set()
    for task in tasks:
        if not task.id or not task.id.strip():
            raise DefinitionError("Task id must be non-empty")
        if task.id in seen:
            raise DefinitionError(f"Duplicate task id: '{task.id}'")
        seen.add(task.id)
        if task.timeout_seconds is not None and task.timeout_seconds <= 0:
            raise DefinitionError(f"Task '{task.id}' timeout must be positive")

    for task in tasks:
        if task.id in task.depends_on:
            raise DefinitionError(f"Task '{task.id}' depends on itself")
        for dep in sorted(task.depends_on):
            if dep not in seen:
                raise DefinitionError(f"Task '{task.id}' depends on unknown task '{dep}'")

    order = topological_order(tasks)
    if len(order) != len(tasks):
        stuck = sorted(t.id for t in tasks if t.id not in set(order))
        raise DefinitionError(f"Dependency cycle detected among tasks: {stuck}")


def topological_order(tasks: Sequence[Task]) -> list[str]:
    """Kahn's algorithm; declaration order breaks ties.

    Returns fewer ids than there are tasks when the graph has a cycle.
    """
    in_degree: dict[str, int] = {t.id: 0 for t in tasks}
    dependents: dict[str, list[str]] = defaultdict(list)
    for task in tasks:
        for dep in task.depends_on:
            if dep in in_degree:
                dependents[dep].append(task.id)
                in_degree[task.id] += 1

    queue: deque[str] = deque(tid for tid, deg in in_degree.items() if deg == 0)
    result: list[str] = []
    while queue:
        node = queue.popleft()
        result.append(node)
        for neighbor in dependents[node]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)
    return result


def topological_layers(tasks: Sequence[Task]) -> list[list[str]]:
    """Group tasks into layers that could run together.

    Layer 0 has no dependencies; layer n depends only on earlier layers.
    The graph must already be valid.
    """
    by_id = {t.id: t for t in tasks}
    depth: dict[str, int] = {}
    for tid in topological_order(tasks):
        deps = by_id[tid].depends_on
        depth[tid] = 1 + max((depth[d] for d in deps), default=-1)

    layers: list[list[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
    for task in tasks:
        layers[depth[task.id]].append(task.id)
    return layers


def transitive_dependents(tasks: Sequence[Task], task_id: str) -> set[str]:
    """All tasks that depend on ``task_id`` directly or indirectly."""
    dependents: dict[str, list[str]] = defaultdict(list)
    for task in tasks:
        for dep in task.depends_on:
            dependents[dep].append(task.id)

    found: set[str] = set()
    queue: deque[str] = deque([task_id])
    while queue:
        for child in dependents[queue.popleft()]:
            if child not in found:
                found.add(child)
                queue.append(child)
    return found
