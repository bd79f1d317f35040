"""Active provider set: construction, selection, and status polling.

The factory owns the map of instantiated providers. The map is built once
from a validated configuration and replaced wholesale by
:meth:`ProviderFactory.reload_providers`; readers take a snapshot under the
lock so they always see either the old or the new map, never a mix.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ..config.models import ProvidersConfig
from .base import STATUS_UNHEALTHY, ModelProvider, ProviderStatus
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)

PRIMARY_PROVIDER = "openai"
DEFAULT_STATUS_TIMEOUT_SECONDS = 10.0

ProvidersInput = Union[ProvidersConfig, Mapping[str, Mapping[str, Any]]]


def _config_entries(config: ProvidersInput) -> Iterable[Tuple[str, Mapping[str, Any]]]:
    if isinstance(config, ProvidersConfig):
        return list(config.items())
    return [(name, cfg) for name, cfg in config.items() if cfg is not None]


class ProviderFactory:
    """Owns the active providers and picks one for each chat turn.

    Parameters
    ----------
    config: ProvidersConfig | Mapping
        Provider name to config mapping; entries need ``enabled`` truthy and
        must pass the plugin validator to be instantiated.
    registry: ProviderRegistry | None
        Plugin registry to build from; a fresh one with built-ins by default.
    status_timeout: float
        Per-provider bound, in seconds, for :meth:`get_all_provider_statuses`.
    """

    def __init__(
        self,
        config: ProvidersInput,
        registry: Optional[ProviderRegistry] = None,
        *,
        status_timeout: float = DEFAULT_STATUS_TIMEOUT_SECONDS,
    ) -> None:
        self._registry = registry or ProviderRegistry()
        self._status_timeout = status_timeout
        self._lock = threading.Lock()
        self._providers: Dict[str, ModelProvider] = self._build_providers(config)

    def _build_providers(self, config: ProvidersInput) -> Dict[str, ModelProvider]:
        providers: Dict[str, ModelProvider] = {}
        for name, cfg in _config_entries(config):
            if not cfg or not cfg.get("enabled"):
                logger.info("providers.factory.disabled", extra={"provider": name})
                continue
            provider = self._registry.create_provider(name, cfg)
            if provider is not None:
                providers[name] = provider
                logger.info("providers.factory.initialized", extra={"provider": name})
        if not providers:
            logger.warning(
                "providers.factory.none_active",
                extra={"hint": "No AI providers initialized. Check configuration."},
            )
        return providers

    def _snapshot(self) -> Dict[str, ModelProvider]:
        with self._lock:
            return self._providers

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def get_registry(self) -> ProviderRegistry:
        return self._registry

    def get_provider(self, name: str) -> Optional[ModelProvider]:
        return self._snapshot().get(name)

    def get_all_providers(self) -> List[ModelProvider]:
        return list(self._snapshot().values())

    def get_provider_names(self) -> List[str]:
        return list(self._snapshot().keys())

    async def get_healthy_provider(self) -> Optional[ModelProvider]:
        """Return the first provider, in registration order, that is healthy."""
        for provider in self._snapshot().values():
            if await provider.is_healthy():
                return provider
        return None

    async def get_default_provider(self) -> Optional[ModelProvider]:
        """Prefer the primary provider when healthy, else any healthy one."""
        primary = self.get_provider(PRIMARY_PROVIDER)
        if primary is not None and await primary.is_healthy():
            return primary
        return await self.get_healthy_provider()

    async def _status_with_timeout(self, provider: ModelProvider) -> ProviderStatus:
        try:
            # wait_for cancels the status call when the timeout wins
            return await asyncio.wait_for(provider.get_status(), self._status_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "providers.status.timeout",
                extra={
                    "provider": provider.get_name(),
                    "timeout_seconds": self._status_timeout,
                },
            )
            return ProviderStatus(
                name=provider.get_name(),
                status=STATUS_UNHEALTHY,
                models=[],
                error="Status check timeout",
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "providers.status.failed",
                extra={"provider": provider.get_name(), "error": str(exc)},
            )
            return ProviderStatus(
                name=provider.get_name(),
                status=STATUS_UNHEALTHY,
                models=[],
                error=str(exc) or "Unknown error",
            )

    async def get_all_provider_statuses(self) -> List[ProviderStatus]:
        """Poll every active provider concurrently, each under its own timeout.

        Total latency is bounded by the slowest single timeout. Results are
        returned in registration order.
        """
        providers = self.get_all_providers()
        if not providers:
            return []
        return list(
            await asyncio.gather(*(self._status_with_timeout(p) for p in providers))
        )

    async def has_model(self, provider_name: str, model_id: str) -> bool:
        provider = self.get_provider(provider_name)
        if provider is None:
            return False
        try:
            return await provider.has_model(model_id)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "providers.has_model.failed",
                extra={"provider": provider_name, "model": model_id, "error": str(exc)},
            )
            return False

    async def find_provider_for_model(self, model_id: str) -> Optional[ModelProvider]:
        for provider in self.get_all_providers():
            try:
                if await provider.has_model(model_id):
                    return provider
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "providers.has_model.failed",
                    extra={
                        "provider": provider.get_name(),
                        "model": model_id,
                        "error": str(exc),
                    },
                )
        return None

    def reload_providers(self, new_config: ProvidersInput) -> None:
        """Replace the whole active-provider map from ``new_config``.

        The new map is fully built before the swap. Providers dropped by the
        swap are not closed here because in-flight turns may still hold them.
        """
        new_providers = self._build_providers(new_config)
        with self._lock:
            previous = self._providers
            self._providers = new_providers
        logger.info(
            "providers.factory.reloaded",
            extra={
                "previous": sorted(previous),
                "active": sorted(new_providers),
            },
        )

    async def aclose(self) -> None:
        """Close every active provider's network resources."""
        for provider in self.get_all_providers():
            try:
                await provider.aclose()
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "providers.close.failed",
                    extra={"provider": provider.get_name(), "error": str(exc)},
                )
