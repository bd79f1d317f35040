"""Tests for provider factory selection and concurrent status polling."""

from __future__ import annotations

import asyncio
import time

import pytest
from helpers import FakeProvider

from energy_assistant.config.models import OllamaConfig, ProvidersConfig
from energy_assistant.providers.base import STATUS_UNHEALTHY
from energy_assistant.providers.factory import ProviderFactory
from energy_assistant.providers.registry import (
    ConfigSchema,
    ProviderPlugin,
    ProviderRegistry,
)


class SlowProvider(FakeProvider):
    async def get_status(self):
        await asyncio.sleep(5)
        return await super().get_status()


class FailingStatusProvider(FakeProvider):
    async def get_status(self):
        raise RuntimeError("boom")


def _registry_with(**providers) -> ProviderRegistry:
    """Registry whose plugins hand back the given provider instances."""
    registry = ProviderRegistry()
    for name, instance in providers.items():
        registry.register_provider(
            ProviderPlugin(
                name=name,
                factory=lambda cfg, inst=instance: inst,
                config_schema=ConfigSchema(),
                is_config_valid=lambda cfg: True,
            )
        )
    return registry


def _factory(status_timeout: float = 10.0, **providers) -> ProviderFactory:
    config = {name: {"enabled": True} for name in providers}
    return ProviderFactory(
        config, _registry_with(**providers), status_timeout=status_timeout
    )


def test_builds_only_enabled_entries():
    factory = _factory(openai=FakeProvider("openai"))
    assert factory.get_provider_names() == ["openai"]

    disabled = ProviderFactory(
        {"openai": {"enabled": False, "api_key": "sk-1234567890"}}
    )
    assert disabled.get_all_providers() == []


def test_accepts_providers_config_model():
    factory = ProviderFactory(
        ProvidersConfig(ollama=OllamaConfig(base_url="http://localhost:11434"))
    )
    assert factory.get_provider_names() == ["ollama"]
    assert factory.get_registry() is factory.registry


@pytest.mark.asyncio
async def test_default_prefers_healthy_primary():
    factory = _factory(openai=FakeProvider("openai"), ollama=FakeProvider("ollama"))
    provider = await factory.get_default_provider()
    assert provider.get_name() == "openai"


@pytest.mark.asyncio
async def test_default_falls_back_to_any_healthy():
    factory = _factory(
        openai=FakeProvider("openai", healthy=False),
        ollama=FakeProvider("ollama"),
    )
    provider = await factory.get_default_provider()
    assert provider.get_name() == "ollama"


@pytest.mark.asyncio
async def test_default_none_when_all_unhealthy():
    factory = _factory(
        openai=FakeProvider("openai", healthy=False),
        ollama=FakeProvider("ollama", healthy=False),
    )
    assert await factory.get_default_provider() is None


@pytest.mark.asyncio
async def test_statuses_bounded_by_per_provider_timeout():
    factory = _factory(
        status_timeout=0.05,
        openai=FakeProvider("openai"),
        ollama=SlowProvider("ollama"),
    )
    started = time.monotonic()
    statuses = await factory.get_all_provider_statuses()
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert [s.name for s in statuses] == ["openai", "ollama"]
    assert statuses[0].status == "healthy"
    assert statuses[1].status == STATUS_UNHEALTHY
    assert statuses[1].error == "Status check timeout"
    assert statuses[1].models == []


@pytest.mark.asyncio
async def test_status_exception_becomes_unhealthy_entry():
    factory = _factory(ollama=FailingStatusProvider("ollama"))
    [status] = await factory.get_all_provider_statuses()
    assert status.status == STATUS_UNHEALTHY
    assert status.error == "boom"


@pytest.mark.asyncio
async def test_statuses_empty_without_providers():
    assert await ProviderFactory({}).get_all_provider_statuses() == []


@pytest.mark.asyncio
async def test_has_model_and_find_provider():
    factory = _factory(
        openai=FakeProvider("openai", models=["gpt-4"]),
        ollama=FakeProvider("ollama", models=["llama3:8b"]),
    )
    assert await factory.has_model("openai", "gpt-4") is True
    assert await factory.has_model("openai", "llama3:8b") is False
    assert await factory.has_model("missing", "gpt-4") is False
    found = await factory.find_provider_for_model("llama3:8b")
    assert found.get_name() == "ollama"
    assert await factory.find_provider_for_model("nope") is None


@pytest.mark.asyncio
async def test_reload_swaps_whole_map():
    old = FakeProvider("openai")
    new = FakeProvider("ollama")
    registry = _registry_with(openai=old, ollama=new)
    factory = ProviderFactory({"openai": {"enabled": True}}, registry)
    held = factory.get_provider("openai")

    factory.reload_providers({"ollama": {"enabled": True}})

    assert factory.get_provider_names() == ["ollama"]
    assert factory.get_provider("openai") is None
    # A reference taken before the swap is still usable
    assert held is old and old.closed is False


@pytest.mark.asyncio
async def test_aclose_closes_all():
    a, b = FakeProvider("openai"), FakeProvider("ollama")
    factory = _factory(openai=a, ollama=b)
    await factory.aclose()
    assert a.closed and b.closed
