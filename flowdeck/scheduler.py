"""Dependency resolution for workflow steps.

Everything here is a pure function of the step list and the set of step ids
already executed, so readiness can be recomputed at any time with the same
answer.
"""

from __future__ import annotations

from collections import deque
from typing import AbstractSet, Dict, Iterable, List, Sequence

from .errors import ConfigurationError
from .models import Step


def validate_graph(steps: Sequence[Step]) -> None:
    """Reject duplicate ids, dangling references and cycles.

    Raises:
        ConfigurationError: If the dependency relation is not a DAG over the
            workflow's own steps.
    """
    ids: set[str] = set()
    for step in steps:
        if step.id in ids:
            raise ConfigurationError(f"Duplicate step ID: {step.id}")
        ids.add(step.id)

    for step in steps:
        missing = [dep for dep in step.dependencies if dep not in ids]
        if missing:
            raise ConfigurationError(
                f"Step {step.id} depends on unknown step(s): {', '.join(missing)}"
            )
        if step.id in step.dependencies:
            raise ConfigurationError(f"Step {step.id} depends on itself")

    # Kahn's algorithm: whatever is left unordered sits on a cycle
    indegree: Dict[str, int] = {step.id: len(set(step.dependencies)) for step in steps}
    dependents: Dict[str, List[str]] = {step.id: [] for step in steps}
    for step in steps:
        for dep in set(step.dependencies):
            dependents[dep].append(step.id)

    queue = deque(step_id for step_id, degree in indegree.items() if degree == 0)
    ordered = 0
    while queue:
        current = queue.popleft()
        ordered += 1
        for child in dependents[current]:
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)

    if ordered < len(steps):
        stuck = sorted(step_id for step_id, degree in indegree.items() if degree > 0)
        raise ConfigurationError(
            f"Circular dependency detected in workflow steps: {', '.join(stuck)}"
        )


def ready_steps(steps: Iterable[Step], executed: AbstractSet[str]) -> List[Step]:
    """Return steps not yet executed whose dependencies all are."""
    return [
        step
        for step in steps
        if step.id not in executed and all(dep in executed for dep in step.dependencies)
    ]


def execution_waves(steps: Sequence[Step]) -> List[List[str]]:
    """Group step ids into topological levels.

    Raises:
        ConfigurationError: If some steps can never become ready.
    """
    executed: set[str] = set()
    waves: List[List[str]] = []
    while len(executed) < len(steps):
        wave = [step.id for step in ready_steps(steps, executed)]
        if not wave:
            raise ConfigurationError("Circular dependency detected in workflow steps")
        waves.append(wave)
        executed.update(wave)
    return waves


def satisfied_ids(steps: Iterable[Step]) -> set[str]:
    """Ids of steps that completed or were skipped."""
    return {step.id for step in steps if step.is_satisfied}


__all__ = [
    "validate_graph",
    "ready_steps",
    "execution_waves",
    "satisfied_ids",
]
