"""Ollama provider adapter.

Talks to a locally reachable Ollama runtime over its REST API. Models are
discovered live from ``/api/tags`` and decorated with display metadata from a
lookup table keyed on the model's base name (the part before ``:``).

Notes
-----
- Chat errors are categorized: a 404 from the runtime surfaces as
  :class:`ModelNotFoundError`, everything else as
  :class:`TransientProviderError`. Status codes and response bodies are
  logged but never copied into the raised message.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ModelNotFoundError, ProviderError, TransientProviderError
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
    format_model_size,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 500

_DISPLAY_NAMES: Dict[str, str] = {
    "llama2": "Llama 2",
    "llama3": "Llama 3",
    "codellama": "Code Llama",
    "mistral": "Mistral",
    "mixtral": "Mixtral",
    "neural-chat": "Neural Chat",
    "starling-lm": "Starling",
    "vicuna": "Vicuna",
    "wizard-vicuna-uncensored": "Wizard Vicuna",
    "orca-mini": "Orca Mini",
    "phi": "Phi",
    "qwen": "Qwen",
    "gemma": "Gemma",
}

_DESCRIPTIONS: Dict[str, str] = {
    "llama2": "Meta's Llama 2 language model",
    "llama3": "Meta's latest Llama 3 language model",
    "codellama": "Code-specialized version of Llama",
    "mistral": "Mistral AI's efficient language model",
    "mixtral": "Mistral's mixture of experts model",
    "neural-chat": "Intel's neural chat model",
    "starling-lm": "Starling reinforcement learning model",
    "vicuna": "UC Berkeley's Vicuna model",
    "wizard-vicuna-uncensored": "Uncensored version of Wizard Vicuna",
    "orca-mini": "Microsoft's Orca Mini model",
    "phi": "Microsoft's Phi small language model",
    "qwen": "Alibaba's Qwen language model",
    "gemma": "Google's Gemma language model",
}

_REASONING_MODELS = ("llama3", "mixtral", "qwen")
_DIALOGUE_MODELS = ("neural-chat", "starling-lm", "vicuna")
_VERSION_SUFFIX = re.compile(r"[\d.]+")


def _base_name(model_name: str) -> str:
    return model_name.split(":", 1)[0]


def _family(base: str) -> Optional[str]:
    """Table key naming the model family of ``base``.

    Exact match first, then the longest key followed only by a version
    suffix (``llama3.1`` -> ``llama3``, ``gemma2`` -> ``gemma``). Other
    names sharing a prefix (``phind-codellama``) have no family.
    """
    if base in _DISPLAY_NAMES:
        return base
    candidates = [
        key
        for key in _DISPLAY_NAMES
        if base.startswith(key) and _VERSION_SUFFIX.fullmatch(base[len(key) :])
    ]
    if not candidates:
        return None
    return max(candidates, key=len)


def model_display_name(model_name: str) -> str:
    """Human-friendly name, e.g. ``llama3:8b`` -> ``Llama 3``."""
    base = _base_name(model_name)
    family = _family(base)
    if family is not None:
        return _DISPLAY_NAMES[family]
    return " ".join(word[:1].upper() + word[1:] for word in base.split("-"))


def model_description(model_name: str) -> str:
    family = _family(_base_name(model_name))
    return _DESCRIPTIONS.get(family or "", "Local language model")


def model_capabilities(model_name: str) -> List[str]:
    base = _base_name(model_name)
    family = _family(base)
    capabilities = ["text-generation", "conversation"]
    if "code" in base:
        capabilities.extend(["code-generation", "programming"])
    if family in _REASONING_MODELS:
        capabilities.append("complex-reasoning")
    if family in _DIALOGUE_MODELS:
        capabilities.extend(["dialogue", "instruction-following"])
    return capabilities


class OllamaProvider(ModelProvider):
    """Adapter for an Ollama runtime.

    Parameters
    ----------
    base_url: str
        Root URL of the runtime (e.g., "http://localhost:11434").
    timeout: int
        Request timeout in seconds; generation can be slow on local hardware.
    max_retries: int
        Extra attempts made when the runtime refuses the connection.

    Attributes
    ----------
    _client: httpx.AsyncClient
        Shared async client configured with base URL, timeout, and headers.
    """

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: int = 60,
        *,
        max_retries: int = 1,
        backoff_initial_ms: int = 200,
    ) -> None:
        self._base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )
        self._max_retries = max(0, int(max_retries))
        self._backoff_initial_ms = max(0, int(backoff_initial_ms))
        logger.info(
            "ollama.provider.init",
            extra={"base_url": base_url, "timeout_seconds": timeout},
        )

    def inject_http_client_for_testing(self, client: Any) -> None:
        """Replace underlying HTTP client (testing only)."""
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _fetch_tags(self) -> List[Dict[str, Any]]:
        resp = await self._client.get("/api/tags")
        resp.raise_for_status()
        return list(resp.json().get("models") or [])

    async def is_healthy(self) -> bool:
        try:
            resp = await self._client.get("/api/tags")
        except httpx.HTTPError as exc:
            logger.error(
                "ollama.health.failed",
                extra={
                    "base_url": self._base_url,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return False
        return resp.status_code == 200

    async def get_available_models(self) -> List[ModelInfo]:
        try:
            tags = await self._fetch_tags()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("ollama.models.failed", extra={"error": str(exc)})
            return []
        return [
            ModelInfo(
                id=tag["name"],
                name=model_display_name(tag["name"]),
                size=format_model_size(tag.get("size")),
                description=model_description(tag["name"]),
                capabilities=model_capabilities(tag["name"]),
            )
            for tag in tags
            if tag.get("name")
        ]

    async def get_status(self) -> ProviderStatus:
        healthy = await self.is_healthy()
        models = await self.get_available_models() if healthy else []
        return ProviderStatus(
            name=self.name,
            status=STATUS_HEALTHY if healthy else STATUS_UNHEALTHY,
            models=models,
            error=None if healthy else "Ollama service unreachable",
        )

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST JSON and return the parsed body, retrying refused connections.

        Raises
        ------
        httpx.HTTPError
            On transport errors or non-2xx responses.
        """
        attempt = 0
        while True:
            try:
                resp = await self._client.post(path, json=payload)
                resp.raise_for_status()
                return resp.json()
            except httpx.ConnectError:
                if attempt >= self._max_retries:
                    raise
                await asyncio.sleep((self._backoff_initial_ms / 1000.0) * (2**attempt))
                attempt += 1

    async def chat(
        self, messages: List[ChatMessage], options: ChatOptions
    ) -> ChatResponse:
        """Run a non-streaming chat completion against ``/api/chat``.

        Raises
        ------
        ModelNotFoundError
            When the runtime answers 404 for the requested model.
        TransientProviderError
            On any other failure, including an empty completion.
        """
        payload = {
            "model": options.model,
            "messages": [m.to_dict() for m in messages],
            "stream": False,
            "options": {
                "temperature": (
                    options.temperature
                    if options.temperature is not None
                    else DEFAULT_TEMPERATURE
                ),
                "num_predict": options.max_tokens or DEFAULT_MAX_TOKENS,
            },
        }
        try:
            data = await self._post_json("/api/chat", payload)
            content = ((data.get("message") or {}).get("content")) or ""
            if not content:
                raise ProviderError("No response content received from Ollama")
        except httpx.HTTPStatusError as exc:
            logger.error(
                "ollama.chat.status_error",
                extra={
                    "req_id": get_request_id(),
                    "model": options.model,
                    "status": exc.response.status_code,
                },
            )
            if exc.response.status_code == 404:
                raise ModelNotFoundError(self.name) from exc
            raise TransientProviderError(self.name) from exc
        except (httpx.HTTPError, ValueError, ProviderError) as exc:
            logger.error(
                "ollama.chat.failed",
                extra={
                    "req_id": get_request_id(),
                    "model": options.model,
                    "error": str(exc),
                },
            )
            raise TransientProviderError(self.name) from exc

        return ChatResponse(
            content=content,
            model=options.model,
            provider=self.name,
            tokens=TokenUsage(
                input=int(data.get("prompt_eval_count") or 0),
                output=int(data.get("eval_count") or 0),
            ),
        )
