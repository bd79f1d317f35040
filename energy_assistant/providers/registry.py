"""Provider plugin registry.

A plugin bundles a construction factory with a config schema and a
validator. The registry turns ``(name, config)`` into a ready adapter and
never raises: unknown plugins, invalid config, and factory failures are
logged and reported as ``None``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..config.models import is_valid_http_url
from .base import ModelProvider
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

ProviderConfigMap = Mapping[str, Any]


@dataclass(frozen=True)
class ConfigSchema:
    required: List[str] = field(default_factory=list)
    optional: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"required": list(self.required), "optional": list(self.optional)}


@dataclass(frozen=True)
class ProviderPlugin:
    """A named, pluggable provider definition."""

    name: str
    factory: Callable[[ProviderConfigMap], ModelProvider]
    config_schema: ConfigSchema
    is_config_valid: Callable[[Any], bool]


def _openai_config_valid(config: Any) -> bool:
    if not isinstance(config, Mapping):
        return False
    api_key = config.get("api_key")
    return isinstance(api_key, str) and len(api_key) > 0


def _ollama_config_valid(config: Any) -> bool:
    if not isinstance(config, Mapping):
        return False
    return is_valid_http_url(config.get("base_url"))


def _build_openai(config: ProviderConfigMap) -> ModelProvider:
    kwargs: Dict[str, Any] = {"api_key": config["api_key"]}
    if config.get("base_url"):
        kwargs["base_url"] = config["base_url"]
    if config.get("timeout_seconds"):
        kwargs["timeout"] = config["timeout_seconds"]
    return OpenAIProvider(**kwargs)


def _build_ollama(config: ProviderConfigMap) -> ModelProvider:
    kwargs: Dict[str, Any] = {"base_url": config["base_url"]}
    if config.get("timeout_seconds"):
        kwargs["timeout"] = config["timeout_seconds"]
    return OllamaProvider(**kwargs)


BUILTIN_PLUGINS = (
    ProviderPlugin(
        name="openai",
        factory=_build_openai,
        config_schema=ConfigSchema(
            required=["api_key"], optional=["enabled", "base_url", "timeout_seconds"]
        ),
        is_config_valid=_openai_config_valid,
    ),
    ProviderPlugin(
        name="ollama",
        factory=_build_ollama,
        config_schema=ConfigSchema(
            required=["base_url"], optional=["enabled", "timeout_seconds"]
        ),
        is_config_valid=_ollama_config_valid,
    ),
)


class ProviderRegistry:
    """Registry of provider plugins keyed by name.

    Built-in ``openai`` and ``ollama`` plugins are registered on
    construction; callers may register more or overwrite them.
    """

    def __init__(self) -> None:
        self._plugins: Dict[str, ProviderPlugin] = {}
        for plugin in BUILTIN_PLUGINS:
            self.register_provider(plugin)
        logger.info("providers.registry.builtins_registered")

    def register_provider(self, plugin: ProviderPlugin) -> None:
        """Register ``plugin``; an existing entry of the same name is replaced."""
        if plugin.name in self._plugins:
            logger.warning(
                "providers.registry.overwrite", extra={"provider": plugin.name}
            )
        self._plugins[plugin.name] = plugin
        logger.info("providers.registry.registered", extra={"provider": plugin.name})

    def get_provider_names(self) -> List[str]:
        return list(self._plugins.keys())

    def get_plugin(self, name: str) -> Optional[ProviderPlugin]:
        return self._plugins.get(name)

    def create_provider(
        self, name: str, config: Optional[ProviderConfigMap]
    ) -> Optional[ModelProvider]:
        """Build an adapter from ``config``, or return ``None`` on any failure."""
        plugin = self._plugins.get(name)
        if plugin is None:
            logger.error("providers.registry.unknown", extra={"provider": name})
            return None

        try:
            valid = bool(plugin.is_config_valid(config))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "providers.registry.validator_failed",
                extra={"provider": name, "error": str(exc)},
            )
            valid = False
        if not valid:
            logger.error("providers.registry.invalid_config", extra={"provider": name})
            return None

        try:
            return plugin.factory(config)  # type: ignore[arg-type]
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "providers.registry.create_failed",
                extra={"provider": name, "error": str(exc)},
                exc_info=True,
            )
            return None

    def get_config_schema(self, name: str) -> Optional[ConfigSchema]:
        plugin = self._plugins.get(name)
        return plugin.config_schema if plugin else None

    def validate_config(self, name: str, config: Any) -> bool:
        plugin = self._plugins.get(name)
        if plugin is None:
            return False
        try:
            return bool(plugin.is_config_valid(config))
        except Exception:  # noqa: BLE001
            return False

    def list_providers(self) -> List[Dict[str, Any]]:
        """Return ``[{"name": ..., "schema": {...}}]`` for every plugin."""
        return [
            {"name": name, "schema": plugin.config_schema.to_dict()}
            for name, plugin in self._plugins.items()
        ]
