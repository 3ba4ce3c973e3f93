from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, List

from pydantic import ValidationError

from ..errors import ConfigurationError
from ..models import Step
from .base import StepContext, StepHandler

if TYPE_CHECKING:
    from .registry import HandlerRegistry

logger = logging.getLogger(__name__)


class ParallelHandler(StepHandler):
    """Runs the fixed list of sub-steps in ``config["steps"]`` concurrently.

    Results are joined in definition order. The first sub-step error fails
    the whole parallel step and cancels the sub-steps still running.
    """

    def __init__(self, registry: "HandlerRegistry") -> None:
        self._registry = registry

    def _sub_steps(self, step: Step) -> List[Step]:
        sub_steps = []
        for index, raw in enumerate(step.config.get("steps") or []):
            if isinstance(raw, Step):
                sub_steps.append(raw)
                continue
            try:
                sub_steps.append(Step.model_validate({"id": f"{step.id}.{index}", **raw}))
            except (ValidationError, TypeError) as e:
                raise ConfigurationError(
                    f"Invalid sub-step {index} in parallel step {step.id}: {e}"
                ) from e
        return sub_steps

    async def execute(self, step: Step, context: StepContext) -> Dict[str, Any]:
        sub_steps = self._sub_steps(step)
        logger.debug(f"Parallel {step.id}: {len(sub_steps)} sub-steps")
        tasks = [
            asyncio.ensure_future(self._registry.dispatch(sub, context.for_step(sub)))
            for sub in sub_steps
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return {"parallel_results": list(results)}


__all__ = ["ParallelHandler"]
