"""Mapping from step types to the handlers that execute them."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import FlowdeckConfig
from ..errors import ConfigurationError
from ..models import Step, StepType
from .base import StepContext, StepHandler

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Dispatches steps to handlers by ``step.type``."""

    def __init__(self) -> None:
        self._handlers: Dict[StepType, StepHandler] = {}

    def register(self, step_type: StepType | str, handler: StepHandler) -> None:
        step_type = StepType(step_type)
        if step_type in self._handlers:
            logger.debug(f"Replacing handler for {step_type.value}")
        self._handlers[step_type] = handler

    def supports(self, step_type: StepType | str) -> bool:
        try:
            return StepType(step_type) in self._handlers
        except ValueError:
            return False

    def get(self, step_type: StepType | str) -> StepHandler:
        """Return the handler for ``step_type``.

        Raises:
            ConfigurationError: If the type is unknown or has no handler.
        """
        try:
            key = StepType(step_type)
        except ValueError:
            raise ConfigurationError(f"Unknown step type: {step_type}") from None
        handler = self._handlers.get(key)
        if handler is None:
            raise ConfigurationError(f"No handler registered for step type: {key.value}")
        return handler

    async def dispatch(self, step: Step, context: StepContext) -> Dict[str, Any]:
        handler = self.get(step.type)
        logger.debug(f"Dispatching step {step.id} to {type(handler).__name__}")
        return await handler.execute(step, context)

    @classmethod
    def default(
        cls,
        settings: Optional[FlowdeckConfig] = None,
        ai_client: Optional[Any] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "HandlerRegistry":
        """Registry with the built-in handler for every step type."""
        from .ai_action import AIActionHandler, PydanticAIClient
        from .api_call import APICallHandler
        from .data_processing import DataProcessingHandler
        from .decision import DecisionHandler
        from .loop import LoopHandler
        from .parallel import ParallelHandler
        from .user_input import UserInputHandler

        config = settings or FlowdeckConfig()
        registry = cls()
        registry.register(
            StepType.AI_ACTION,
            AIActionHandler(ai_client or PydanticAIClient(config.ai), config.ai),
        )
        registry.register(StepType.API_CALL, APICallHandler(config.http, client=http_client))
        registry.register(StepType.DATA_PROCESSING, DataProcessingHandler())
        registry.register(StepType.USER_INPUT, UserInputHandler())
        registry.register(StepType.DECISION, DecisionHandler())
        registry.register(
            StepType.LOOP, LoopHandler(registry, max_iterations=config.engine.max_iterations)
        )
        registry.register(StepType.PARALLEL, ParallelHandler(registry))
        return registry


__all__ = ["HandlerRegistry"]
