from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Mapping

from ..conditions import evaluate_condition
from ..constants import DEFAULT_MAX_ITERATIONS
from ..errors import ConfigurationError
from ..models import Step, StepType
from .base import StepContext, StepHandler, config_value, get_path

if TYPE_CHECKING:
    from .registry import HandlerRegistry

logger = logging.getLogger(__name__)


class LoopHandler(StepHandler):
    """Runs a synthetic step once per item.

    Config keys:
        items: Literal list to iterate.
        items_from: Dotted path into the results (``"fetch.data.items"``),
            used when ``items`` is absent.
        max_iterations: Upper bound on iterations.
        loop_step_type: Step type run for each item (``data_processing``).
        loop_config: Config of the per-item step.
        until: Condition checked after each iteration; stops the loop when
            true. It sees ``current_item``, ``iteration`` and ``last_result``.
    """

    def __init__(
        self, registry: "HandlerRegistry", max_iterations: int = DEFAULT_MAX_ITERATIONS
    ) -> None:
        self._registry = registry
        self._max_iterations = max_iterations

    def _items(self, step: Step, context: StepContext) -> List[Any]:
        items = step.config.get("items")
        if items is None:
            items_from = config_value(step.config, "items_from", "itemsFrom")
            if items_from:
                items = get_path(dict(context.results), items_from)
        if items is None:
            return []
        if isinstance(items, Mapping):
            return list(items.values())
        if isinstance(items, (list, tuple)):
            return list(items)
        return [items]

    async def execute(self, step: Step, context: StepContext) -> Dict[str, Any]:
        config = step.config
        raw_type = config_value(
            config, "loop_step_type", "loopStepType", default=StepType.DATA_PROCESSING
        )
        try:
            loop_type = StepType(raw_type)
        except ValueError:
            raise ConfigurationError(f"Unknown step type: {raw_type}") from None
        if loop_type == StepType.LOOP:
            raise ConfigurationError(f"Loop step {step.id} cannot nest another loop")

        max_iterations = int(
            config_value(config, "max_iterations", "maxIterations", default=self._max_iterations)
        )
        until = config.get("until")
        items = self._items(step, context)

        results: List[Dict[str, Any]] = []
        for iteration, item in enumerate(items[:max_iterations]):
            extra = {"current_item": item, "iteration": iteration}
            child = Step(
                id=f"{step.id}[{iteration}]",
                type=loop_type,
                name=f"{step.display_name()} #{iteration}",
                config=dict(config_value(config, "loop_config", "loopConfig", default={})),
                inputs={**step.inputs, **extra},
            )
            result = await self._registry.dispatch(child, context.for_step(child))
            results.append(result)

            if until is not None:
                namespace = context.namespace().new_child({**extra, "last_result": result})
                if evaluate_condition(until, namespace):
                    logger.debug(f"Loop {step.id} stopped after iteration {iteration}")
                    break

        return {"loop_results": results, "iterations": len(results)}


__all__ = ["LoopHandler"]
