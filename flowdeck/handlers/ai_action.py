"""``ai_action`` steps: forward a prompt and context to an AI model."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.settings import ModelSettings

from ..config import AIConfig
from ..errors import HandlerError
from ..models import Step
from .base import StepContext, StepHandler, config_value, sanitize

logger = logging.getLogger(__name__)


class AIRequest(BaseModel):
    """Parameters forwarded to the inference collaborator."""

    prompt: str
    model: str
    temperature: float
    max_tokens: int
    task_type: str = "general"
    context: Dict[str, Any] = Field(default_factory=dict)


class AIResponse(BaseModel):
    result: Any
    usage: Dict[str, int] = Field(default_factory=dict)


class AIClient(Protocol):
    """Inference collaborator used by ``AIActionHandler``."""

    async def generate(self, request: AIRequest) -> AIResponse:
        """Run the request and return the model output."""


def build_prompt(prompt: str, context: Dict[str, Any]) -> str:
    """Prefix ``prompt`` with a rendering of ``context``."""
    if not context:
        return prompt
    lines = [
        f"{key}: {value if isinstance(value, str) else json.dumps(value, default=str)}"
        for key, value in context.items()
    ]
    return "Context:\n" + "\n".join(lines) + f"\n\nTask: {prompt}"


class PydanticAIClient:
    """Runs requests through a ``pydantic_ai.Agent`` per model."""

    def __init__(self, config: Optional[AIConfig] = None) -> None:
        self._config = config or AIConfig()
        self._agents: Dict[str, Agent] = {}

    def _agent(self, model: str) -> Agent:
        if model not in self._agents:
            self._agents[model] = Agent(model)
        return self._agents[model]

    async def generate(self, request: AIRequest) -> AIResponse:
        agent = self._agent(request.model or self._config.default_model)
        result = await agent.run(
            build_prompt(request.prompt, request.context),
            model_settings=ModelSettings(
                temperature=request.temperature, max_tokens=request.max_tokens
            ),
        )
        usage = result.usage()
        return AIResponse(
            result=result.output,
            usage={
                "input_tokens": getattr(usage, "input_tokens", 0) or 0,
                "output_tokens": getattr(usage, "output_tokens", 0) or 0,
            },
        )


class AIActionHandler(StepHandler):
    """Builds the prompt context and delegates to an ``AIClient``."""

    def __init__(self, client: AIClient, config: Optional[AIConfig] = None) -> None:
        self._client = client
        self._config = config or AIConfig()

    def build_request(self, step: Step, context: StepContext) -> AIRequest:
        config = step.config
        return AIRequest(
            prompt=config_value(
                config, "prompt", default=f"Process the following task: {step.display_name()}"
            ),
            model=config_value(config, "model", default=self._config.default_model),
            temperature=config_value(config, "temperature", default=self._config.temperature),
            max_tokens=config_value(
                config, "max_tokens", "maxTokens", default=self._config.max_tokens
            ),
            task_type=config_value(config, "task_type", "taskType", default="general"),
            context={
                "step_inputs": sanitize(context.inputs),
                "step_results": sanitize(dict(context.results)),
                "workflow_context": {
                    "step_name": step.name,
                    "step_type": step.type.value,
                    "step_id": step.id,
                },
            },
        )

    async def execute(self, step: Step, context: StepContext) -> Dict[str, Any]:
        request = self.build_request(step, context)
        logger.info(f"AI action {step.id}: model={request.model} task={request.task_type}")
        try:
            response = await self._client.generate(request)
        except HandlerError:
            raise
        except Exception as e:
            raise HandlerError(f"AI action failed: {e}") from e

        return {
            "result": response.result,
            "task_type": request.task_type,
            "model": request.model,
            "usage": response.usage,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


__all__ = [
    "AIRequest",
    "AIResponse",
    "AIClient",
    "PydanticAIClient",
    "AIActionHandler",
    "build_prompt",
]
