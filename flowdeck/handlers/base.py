"""Step handler contract and the context handed to handlers."""

from __future__ import annotations

import abc
from collections import ChainMap
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from ..constants import SANITIZE_MAX_DEPTH, SANITIZE_MAX_ITEMS
from ..models import Step


class StepContext:
    """Read-only view of execution data available to a running step.

    ``results`` holds the outputs of steps that were already terminal when the
    step was dispatched; it is a snapshot, so outputs published concurrently by
    steps of the same wave are never observed.
    """

    def __init__(
        self,
        execution_id: str,
        results: Mapping[str, Any],
        workflow_inputs: Optional[Mapping[str, Any]] = None,
        step_inputs: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.execution_id = execution_id
        self.results: Mapping[str, Any] = MappingProxyType(dict(results))
        self.workflow_inputs: Mapping[str, Any] = MappingProxyType(dict(workflow_inputs or {}))
        self.step_inputs: Mapping[str, Any] = MappingProxyType(dict(step_inputs or {}))

    @property
    def inputs(self) -> Dict[str, Any]:
        """Step inputs layered over the execution's initial inputs."""
        return {**self.workflow_inputs, **self.step_inputs}

    def namespace(self) -> ChainMap:
        """Names visible to conditions: results, then step and workflow inputs."""
        return ChainMap(dict(self.results), dict(self.step_inputs), dict(self.workflow_inputs))

    def for_step(self, step: Step, extra_inputs: Optional[Mapping[str, Any]] = None) -> "StepContext":
        """Context for a nested step (loop iteration, parallel branch)."""
        return StepContext(
            self.execution_id,
            self.results,
            self.workflow_inputs,
            {**step.inputs, **(extra_inputs or {})},
        )


class StepHandler(metaclass=abc.ABCMeta):
    """Executor behind one step type."""

    @abc.abstractmethod
    async def execute(self, step: Step, context: StepContext) -> Dict[str, Any]:
        """Run ``step`` and return its outputs.

        Raises:
            HandlerError: When the work fails. ``retryable`` tells the engine
                whether another attempt may succeed.
        """
        raise NotImplementedError


def sanitize(data: Any, depth: int = 0, seen: Optional[set[int]] = None) -> Any:
    """Make arbitrary result data safe to embed in prompts and JSON.

    Nesting is cut at ``SANITIZE_MAX_DEPTH``, collections at
    ``SANITIZE_MAX_ITEMS`` entries, reference cycles are replaced by a marker
    and keys starting with an underscore are dropped.
    """
    if depth > SANITIZE_MAX_DEPTH:
        return "[Max depth reached]"
    if data is None or isinstance(data, (str, int, float, bool)):
        return data
    if callable(data):
        return "[Function]"

    seen = seen or set()
    if id(data) in seen:
        return "[Circular reference]"

    if isinstance(data, Mapping):
        nested = seen | {id(data)}
        sanitized: Dict[str, Any] = {}
        for key, value in list(data.items())[:SANITIZE_MAX_ITEMS]:
            if str(key).startswith("_"):
                continue
            sanitized[str(key)] = sanitize(value, depth + 1, nested)
        return sanitized
    if isinstance(data, (list, tuple, set, frozenset)):
        nested = seen | {id(data)}
        return [sanitize(item, depth + 1, nested) for item in list(data)[:SANITIZE_MAX_ITEMS]]
    if hasattr(data, "model_dump"):
        return sanitize(data.model_dump(), depth + 1, seen | {id(data)})
    return str(data)


def get_path(data: Any, path: Optional[str]) -> Any:
    """Follow a dotted ``path`` through nested mappings and sequences."""
    if not path:
        return data
    current = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def config_value(config: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    """First present key among ``names`` (snake_case and camelCase spellings)."""
    for name in names:
        if name in config and config[name] is not None:
            return config[name]
    return default


__all__ = ["StepContext", "StepHandler", "sanitize", "get_path", "config_value"]
