from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_JITTER,
)


class EngineConfig(BaseModel):
    """Scheduling and retry settings."""

    retry_base_delay: float = Field(DEFAULT_RETRY_BASE_DELAY, ge=0)
    retry_jitter: float = Field(DEFAULT_RETRY_JITTER, ge=0)
    max_iterations: int = Field(DEFAULT_MAX_ITERATIONS, ge=1)


class AIConfig(BaseModel):
    """Defaults for ``ai_action`` steps."""

    default_model: str = "ollama:gemma3:1b"
    temperature: float = 0.7
    max_tokens: int = 1000


class HttpConfig(BaseModel):
    """Settings for ``api_call`` steps."""

    base_url: str = "http://localhost:3000"
    timeout: float = 30.0


class FlowdeckConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    engine: EngineConfig = EngineConfig()
    ai: AIConfig = AIConfig()
    http: HttpConfig = HttpConfig()


def load_config(path: Optional[str] = None) -> FlowdeckConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FLOWDECK_CONFIG env
            variable or 'flowdeck.yaml' in the current directory.
    """

    config_path = path or os.getenv("FLOWDECK_CONFIG", DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FlowdeckConfig(**data)
    else:
        config = FlowdeckConfig()

    env_db_url = os.getenv("FLOWDECK_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
