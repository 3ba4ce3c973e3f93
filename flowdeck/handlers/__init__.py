"""Built-in step handlers and the registry that dispatches to them."""

from .ai_action import AIActionHandler, AIClient, AIRequest, AIResponse, PydanticAIClient
from .api_call import APICallHandler
from .base import StepContext, StepHandler, sanitize
from .data_processing import DataProcessingHandler
from .decision import DecisionHandler
from .loop import LoopHandler
from .parallel import ParallelHandler
from .registry import HandlerRegistry
from .user_input import UserInputHandler

__all__ = [
    "StepContext",
    "StepHandler",
    "sanitize",
    "HandlerRegistry",
    "AIActionHandler",
    "AIClient",
    "AIRequest",
    "AIResponse",
    "PydanticAIClient",
    "APICallHandler",
    "DataProcessingHandler",
    "DecisionHandler",
    "LoopHandler",
    "ParallelHandler",
    "UserInputHandler",
]
