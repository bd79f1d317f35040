"""OpenAI provider adapter.

Uses the hosted chat-completions REST API with a bearer API key. The model
catalog is a short curated list rather than the account's full catalog so
that the model picker stays manageable.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from ..errors import ProviderError
from ..utils.correlation import get_request_id
from .base import (
    STATUS_HEALTHY,
    STATUS_UNHEALTHY,
    ChatMessage,
    ChatOptions,
    ChatResponse,
    ModelInfo,
    ModelProvider,
    ProviderStatus,
    TokenUsage,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 500

_BASE_CAPABILITIES = ["text-generation", "conversation"]
_ADVANCED_CAPABILITIES = _BASE_CAPABILITIES + ["complex-reasoning", "code-generation"]

CURATED_MODELS: List[ModelInfo] = [
    ModelInfo(
        id="gpt-3.5-turbo",
        name="GPT-3.5 Turbo",
        description="Fast and cost-effective for most tasks",
        capabilities=_BASE_CAPABILITIES,
    ),
    ModelInfo(
        id="gpt-4",
        name="GPT-4",
        description="Most capable model, slower and more expensive",
        capabilities=_ADVANCED_CAPABILITIES,
    ),
    ModelInfo(
        id="gpt-4-turbo",
        name="GPT-4 Turbo",
        description="Enhanced GPT-4 with improved speed",
        capabilities=_ADVANCED_CAPABILITIES,
    ),
]


class OpenAIProvider(ModelProvider):
    """Adapter for the OpenAI chat-completions API.

    Parameters
    ----------
    api_key: str
        Secret key sent as ``Authorization: Bearer <key>``.
    base_url: str
        API root; override for OpenAI-compatible gateways.
    timeout: int
        Request timeout in seconds.
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: int = 60,
    ) -> None:
        if not api_key:
            raise ValueError("OpenAI provider requires an API key")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )
        logger.info(
            "openai.provider.init",
            extra={"base_url": base_url, "timeout_seconds": timeout},
        )

    def inject_http_client_for_testing(self, client: Any) -> None:
        """Replace underlying HTTP client (testing only)."""
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def is_healthy(self) -> bool:
        # Listing models is the cheapest call that also validates the key
        try:
            resp = await self._client.get("/models")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("openai.health.failed", extra={"error": str(exc)})
            return False
        return True

    async def get_available_models(self) -> List[ModelInfo]:
        return list(CURATED_MODELS)

    async def get_status(self) -> ProviderStatus:
        healthy = await self.is_healthy()
        return ProviderStatus(
            name=self.name,
            status=STATUS_HEALTHY if healthy else STATUS_UNHEALTHY,
            models=await self.get_available_models(),
            error=None if healthy else "API key invalid or service unreachable",
        )

    async def chat(
        self, messages: List[ChatMessage], options: ChatOptions
    ) -> ChatResponse:
        payload: Dict[str, Any] = {
            "model": options.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": (
                options.temperature
                if options.temperature is not None
                else DEFAULT_TEMPERATURE
            ),
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": False,
        }
        try:
            resp = await self._client.post("/chat/completions", json=payload)
            resp.raise_for_status()
            data = resp.json()
            choices = data.get("choices") or []
            message = (choices[0].get("message") or {}) if choices else {}
            content = message.get("content")
            if not content:
                raise ProviderError("No response content received from OpenAI")
        except (httpx.HTTPError, ValueError, ProviderError) as exc:
            logger.error(
                "openai.chat.failed",
                extra={
                    "req_id": get_request_id(),
                    "model": options.model,
                    "error": str(exc),
                },
            )
            raise ProviderError(f"OpenAI chat failed: {exc}", self.name) from exc

        usage = data.get("usage") or {}
        return ChatResponse(
            content=content,
            model=options.model,
            provider=self.name,
            tokens=TokenUsage(
                input=int(usage.get("prompt_tokens") or 0),
                output=int(usage.get("completion_tokens") or 0),
            ),
        )
