from __future__ import annotations

import logging
from typing import Any, Dict

from ..conditions import evaluate_condition
from ..errors import ConfigurationError
from ..models import Step
from .base import StepContext, StepHandler, config_value

logger = logging.getLogger(__name__)


class DecisionHandler(StepHandler):
    """Evaluates ``config["condition"]`` and reports the chosen path.

    The graph is not altered; downstream steps read ``decision`` or ``path``
    from this step's result.
    """

    async def execute(self, step: Step, context: StepContext) -> Dict[str, Any]:
        condition = step.config.get("condition")
        if condition is None:
            raise ConfigurationError(f"Decision step {step.id} has no condition")

        decision = evaluate_condition(condition, context.namespace())
        if decision:
            path = config_value(step.config, "true_path", "truePath", "trueStep")
        else:
            path = config_value(step.config, "false_path", "falsePath", "falseStep")
        logger.info(f"Decision {step.id}: {condition!r} -> {decision}")
        return {"decision": decision, "condition": condition, "path": path}


__all__ = ["DecisionHandler"]
