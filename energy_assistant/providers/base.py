"""Provider abstraction shared by every LLM backend adapter.

Each adapter implements the same capability set (health probe, model
listing, status snapshot, chat completion) so the factory and orchestrator
never need to know which backend they are talking to.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

STATUS_HEALTHY = "healthy"
STATUS_UNHEALTHY = "unhealthy"
STATUS_UNKNOWN = "unknown"

_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB"]


@dataclass
class ChatMessage:
    """Message in an LLM conversation."""

    role: str  # "user", "assistant", or "system"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatOptions:
    """Per-call generation options."""

    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output


@dataclass
class ChatResponse:
    """Completion returned by a provider."""

    content: str
    model: str
    provider: str
    tokens: Optional[TokenUsage] = None


@dataclass
class ModelInfo:
    """Display data for a model; ``id`` is the only authoritative field."""

    id: str
    name: str
    size: Optional[str] = None
    description: Optional[str] = None
    capabilities: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "name": self.name}
        if self.size is not None:
            data["size"] = self.size
        if self.description is not None:
            data["description"] = self.description
        if self.capabilities is not None:
            data["capabilities"] = list(self.capabilities)
        return data


@dataclass
class ProviderStatus:
    """Point-in-time health snapshot of one provider."""

    name: str
    status: str
    models: List[ModelInfo] = field(default_factory=list)
    last_checked: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "status": self.status,
            "models": [m.to_dict() for m in self.models],
            "lastChecked": self.last_checked.isoformat().replace("+00:00", "Z"),
        }
        if self.error is not None:
            data["error"] = self.error
        return data


def format_model_size(num_bytes: Optional[int]) -> Optional[str]:
    """Render a byte count with base-1024 units and two decimals.

    >>> format_model_size(3825819519)
    '3.56 GB'
    >>> format_model_size(0)
    '0 B'
    """
    if num_bytes is None:
        return None
    if num_bytes <= 0:
        return "0 B"
    exponent = 0
    while num_bytes >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = round(num_bytes / (1024**exponent), 2)
    # "1 KB", "1.5 KB", "3.56 GB"
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[exponent]}"


class ModelProvider(ABC):
    """Abstract base class for LLM provider adapters."""

    name: str = ""

    def get_name(self) -> str:
        return self.name

    @abstractmethod
    async def is_healthy(self) -> bool:
        """Cheap reachability probe; must not raise."""

    @abstractmethod
    async def get_available_models(self) -> List[ModelInfo]:
        """List models this provider can serve."""

    @abstractmethod
    async def get_status(self) -> ProviderStatus:
        """Combine health and model listing into a timestamped snapshot."""

    @abstractmethod
    async def chat(
        self, messages: List[ChatMessage], options: ChatOptions
    ) -> ChatResponse:
        """Run one chat completion.

        Raises
        ------
        ProviderError
            When the backend call fails or returns no content.
        """

    async def has_model(self, model_id: str) -> bool:
        """Return True if ``model_id`` is among the available models."""
        try:
            models = await self.get_available_models()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "providers.has_model.failed",
                extra={"provider": self.name, "model": model_id, "error": str(exc)},
            )
            return False
        return any(m.id == model_id for m in models)

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
