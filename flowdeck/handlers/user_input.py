from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from ..models import Step
from .base import StepContext, StepHandler


class UserInputHandler(StepHandler):
    """Echoes the operator-supplied inputs once the step has been released."""

    async def execute(self, step: Step, context: StepContext) -> Dict[str, Any]:
        return {
            "user_input": dict(context.step_inputs),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


__all__ = ["UserInputHandler"]
