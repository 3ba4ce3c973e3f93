"""``api_call`` steps: HTTP requests through ``httpx``."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ..config import HttpConfig
from ..errors import ConfigurationError, HandlerError
from ..models import Step
from .base import StepContext, StepHandler, config_value

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429})


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUS_CODES or status >= 500


class APICallHandler(StepHandler):
    """Performs the request described by ``step.config``.

    Config keys: ``url`` (required), ``method`` (GET), ``headers``, ``body``
    and ``query_params``. Relative URLs are resolved against
    ``HttpConfig.base_url``.
    """

    def __init__(
        self, config: Optional[HttpConfig] = None, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._config = config or HttpConfig()
        self._client = client

    def resolve_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self._config.base_url.rstrip('/')}/{url.lstrip('/')}"

    async def execute(self, step: Step, context: StepContext) -> Dict[str, Any]:
        config = step.config
        url = config_value(config, "url")
        if not url:
            raise ConfigurationError(f"API call step {step.id} has no url")

        url = self.resolve_url(url)
        method = str(config_value(config, "method", default="GET")).upper()
        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}
        params = {
            key: value
            for key, value in (config_value(config, "query_params", "queryParams") or {}).items()
            if value is not None
        }
        body = config.get("body")

        logger.info(f"API call {step.id}: {method} {url}")
        try:
            if self._client is not None:
                response = await self._request(self._client, method, url, headers, params, body)
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout) as client:
                    response = await self._request(client, method, url, headers, params, body)
        except httpx.TimeoutException as e:
            raise HandlerError(f"API call timed out: {url}") from e
        except httpx.HTTPError as e:
            raise HandlerError(f"API call failed: {e}") from e

        if response.is_error:
            raise HandlerError(
                f"API call failed: {response.status_code} {response.reason_phrase}",
                retryable=is_retryable_status(response.status_code),
            )

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text

        return {
            "success": True,
            "status": response.status_code,
            "data": data,
            "url": str(response.request.url),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        headers: Dict[str, str],
        params: Dict[str, Any],
        body: Any,
    ) -> httpx.Response:
        kwargs: Dict[str, Any] = {"headers": headers, "params": params}
        if body is not None and method not in ("GET", "HEAD"):
            kwargs["json"] = body
        return await client.request(method, url, **kwargs)


__all__ = ["APICallHandler", "RETRYABLE_STATUS_CODES", "is_retryable_status"]
