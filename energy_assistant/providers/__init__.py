"""LLM provider abstraction.

- base.py: shared message/status types and the ``ModelProvider`` contract
- openai_provider.py / ollama_provider.py: concrete adapters over httpx
- registry.py: named plugins that build adapters from validated config
- factory.py: the active provider set, default selection, status polling
"""

from .base import (
    ChatMessage,
    ChatOptions,
    ChatResponse,
    ModelInfo,
    ModelProvider,
    ProviderStatus,
    TokenUsage,
    format_model_size,
)
from .factory import PRIMARY_PROVIDER, ProviderFactory
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider
from .registry import ConfigSchema, ProviderPlugin, ProviderRegistry

__all__ = [
    "ChatMessage",
    "ChatOptions",
    "ChatResponse",
    "ConfigSchema",
    "ModelInfo",
    "ModelProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "PRIMARY_PROVIDER",
    "ProviderFactory",
    "ProviderPlugin",
    "ProviderRegistry",
    "ProviderStatus",
    "TokenUsage",
    "format_model_size",
]
