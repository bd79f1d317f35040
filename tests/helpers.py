"""Shared test doubles and fixture data.

Two users with three devices between them, hourly readings over the first
two days of the week starting Monday 2024-06-03, and a scripted in-memory
model provider.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import insert

from energy_assistant.providers.base import (
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
from energy_assistant.storage.schema import devices, telemetry_data, users

ALICE_ID = "00000000-0000-0000-0000-00000000a11c"
BOB_ID = "00000000-0000-0000-0000-000000000b0b"
ALICE_AC_ID = "10000000-0000-0000-0000-000000000001"
ALICE_FRIDGE_ID = "10000000-0000-0000-0000-000000000002"
BOB_AC_ID = "20000000-0000-0000-0000-000000000001"

# Monday 2024-06-03 00:00 UTC
WEEK_START = datetime(2024, 6, 3, tzinfo=timezone.utc)


class FakeProvider(ModelProvider):
    """Scripted provider: returns queued replies and records every call."""

    def __init__(
        self,
        name: str = "openai",
        replies: Optional[List[Any]] = None,
        healthy: bool = True,
        models: Optional[List[str]] = None,
    ) -> None:
        self.name = name
        self.replies: List[Any] = list(replies or [])
        self.healthy = healthy
        self.model_ids = list(models if models is not None else ["gpt-3.5-turbo"])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def is_healthy(self) -> bool:
        return self.healthy

    async def get_available_models(self) -> List[ModelInfo]:
        return [ModelInfo(id=m, name=m) for m in self.model_ids]

    async def get_status(self) -> ProviderStatus:
        return ProviderStatus(
            name=self.name,
            status=STATUS_HEALTHY if self.healthy else STATUS_UNHEALTHY,
            models=await self.get_available_models(),
        )

    async def chat(
        self, messages: List[ChatMessage], options: ChatOptions
    ) -> ChatResponse:
        self.calls.append({"messages": list(messages), "options": options})
        if not self.replies:
            raise AssertionError("unexpected chat call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResponse(
            content=reply,
            model=options.model,
            provider=self.name,
            tokens=TokenUsage(input=10, output=5),
        )

    async def aclose(self) -> None:
        self.closed = True


def seed_telemetry(engine) -> None:
    """Two users, three devices, hourly readings over the first two days."""
    with engine.begin() as conn:
        conn.execute(
            insert(users),
            [
                {"id": ALICE_ID, "email": "alice@example.com"},
                {"id": BOB_ID, "email": "bob@example.com"},
            ],
        )
        conn.execute(
            insert(devices),
            [
                {
                    "id": ALICE_AC_ID,
                    "name": "Living Room AC",
                    "type": "air_conditioner",
                    "user_id": ALICE_ID,
                },
                {
                    "id": ALICE_FRIDGE_ID,
                    "name": "Kitchen Fridge",
                    "type": "refrigerator",
                    "user_id": ALICE_ID,
                },
                {
                    "id": BOB_AC_ID,
                    "name": "Bedroom AC",
                    "type": "air_conditioner",
                    "user_id": BOB_ID,
                },
            ],
        )
        rows = []
        for hour in range(48):
            ts = WEEK_START + timedelta(hours=hour)
            rows.append(
                {
                    "device_id": ALICE_AC_ID,
                    "timestamp": ts,
                    "power_consumption": 1.0,
                    "voltage": 230.0,
                    "current": None,
                }
            )
            rows.append(
                {
                    "device_id": ALICE_FRIDGE_ID,
                    "timestamp": ts,
                    "power_consumption": 0.25,
                    "voltage": 229.0,
                    "current": 1.5,
                }
            )
            rows.append(
                {
                    "device_id": BOB_AC_ID,
                    "timestamp": ts,
                    "power_consumption": 100.0,
                    "voltage": 240.0,
                    "current": 4.0,
                }
            )
        conn.execute(insert(telemetry_data), rows)


