"""Test HTTP endpoint functionality."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from helpers import ALICE_AC_ID, ALICE_ID, BOB_AC_ID, FakeProvider
from fastapi.testclient import TestClient
from jose import jwt

from energy_assistant.config.models import EnvSettings
from energy_assistant.errors import ConfigurationError, TransientProviderError
from energy_assistant.llm.orchestrator import APOLOGY_MESSAGE
from energy_assistant.providers.factory import ProviderFactory
from energy_assistant.providers.registry import (
    ConfigSchema,
    ProviderPlugin,
    ProviderRegistry,
)
from energy_assistant.server.http import create_app

SECRET = "test-secret"

AC_LAST_WEEK = json.dumps(
    {
        "needsTelemetry": True,
        "device": "AC",
        "timeRange": {"start": "2024-06-03T00:00:00Z", "end": "2024-06-10T00:00:00Z"},
        "metrics": ["energyConsumption"],
    }
)


def _token(user_id: str = ALICE_ID, expires_in: int = 3600) -> str:
    claims = {
        "id": user_id,
        "email": "alice@example.com",
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(claims, SECRET, algorithm="HS256")


def _auth(user_id: str = ALICE_ID) -> dict:
    return {"Authorization": f"Bearer {_token(user_id)}"}


def _settings(**overrides) -> EnvSettings:
    values = {
        "JWT_SECRET": SECRET,
        "OPENAI_ENABLED": False,
        "OLLAMA_ENABLED": False,
        "RATE_LIMIT_ENABLED": False,
    }
    values.update(overrides)
    return EnvSettings(**values)


def _factory(provider: FakeProvider) -> ProviderFactory:
    registry = ProviderRegistry()
    registry.register_provider(
        ProviderPlugin(
            name=provider.name,
            factory=lambda cfg: provider,
            config_schema=ConfigSchema(),
            is_config_valid=lambda cfg: True,
        )
    )
    return ProviderFactory({provider.name: {"enabled": True}}, registry)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(sqlite_engine, provider):
    app = create_app(
        settings=_settings(), engine=sqlite_engine, provider_factory=_factory(provider)
    )
    with TestClient(app) as test_client:
        yield test_client


def test_health_endpoint_no_auth(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["x-correlation-id"]


def test_ready_endpoint_no_auth(client):
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"x-correlation-id": "abc-123"})
    assert response.headers["x-correlation-id"] == "abc-123"


def test_app_refuses_to_start_without_jwt_secret(sqlite_engine, provider):
    with pytest.raises(ConfigurationError, match="JWT_SECRET"):
        create_app(
            settings=_settings(JWT_SECRET=None),
            engine=sqlite_engine,
            provider_factory=_factory(provider),
        )


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get("/api/chat/models")
        assert response.status_code == 401
        detail = response.json()["detail"]
        assert detail["error_type"] == "unauthorized"
        assert detail["detail"] == "No token provided"

    def test_expired_token(self, client):
        token = _token(expires_in=-60)
        response = client.get(
            "/api/chat/models", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401
        assert response.json()["detail"]["detail"] == "Token expired"

    def test_wrong_secret(self, client):
        token = jwt.encode({"id": ALICE_ID, "email": "a@b.c"}, "other", "HS256")
        response = client.get(
            "/api/telemetry/query", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401
        assert response.json()["detail"]["detail"] == "Invalid token"


class TestChat:
    def test_telemetry_turn_and_session(self, client, provider):
        provider.replies = [AC_LAST_WEEK, "Your AC used 24 kWh."]
        first = client.post(
            "/api/chat/message",
            json={"message": "What was my AC usage last week"},
            headers=_auth(),
        )
        assert first.status_code == 200
        body = first.json()
        assert body["response"] == "Your AC used 24 kWh."
        session_id = body["sessionId"]

        provider.replies = ['{"needsTelemetry": false}', "You're welcome."]
        second = client.post(
            "/api/chat/message",
            json={"message": "Thanks", "sessionId": session_id},
            headers=_auth(),
        )
        assert second.status_code == 200
        assert second.json() == {"response": "You're welcome."}

        # Prior turn is replayed as history, without duplicating "Thanks"
        sent = [(m.role, m.content) for m in provider.calls[-1]["messages"]]
        assert sent[1:] == [
            ("user", "What was my AC usage last week"),
            ("assistant", "Your AC used 24 kWh."),
            ("user", "Thanks"),
        ]

    def test_provider_failure_is_still_200(self, client, provider):
        provider.replies = [TransientProviderError("openai")]
        response = client.post(
            "/api/chat/message", json={"message": "hi"}, headers=_auth()
        )
        assert response.status_code == 200
        assert response.json()["response"] == APOLOGY_MESSAGE

    def test_blank_message_rejected(self, client):
        response = client.post(
            "/api/chat/message", json={"message": "   "}, headers=_auth()
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error_type"] == "validation_error"

    def test_missing_message_field_rejected(self, client):
        response = client.post("/api/chat/message", json={}, headers=_auth())
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error_type"] == "validation_error"
        assert detail["errors"][0]["field"] == "message"

    def test_too_long_message_rejected(self, client):
        response = client.post(
            "/api/chat/message", json={"message": "x" * 2001}, headers=_auth()
        )
        assert response.status_code == 400

    def test_rate_limited(self, sqlite_engine):
        provider = FakeProvider(replies=['{"needsTelemetry": false}', "hi"])
        app = create_app(
            settings=_settings(
                RATE_LIMIT_ENABLED=True, RATE_LIMIT_REQUESTS_PER_WINDOW=1
            ),
            engine=sqlite_engine,
            provider_factory=_factory(provider),
        )
        with TestClient(app) as c:
            ok = c.post("/api/chat/message", json={"message": "a"}, headers=_auth())
            limited = c.post(
                "/api/chat/message", json={"message": "b"}, headers=_auth()
            )
        assert ok.status_code == 200
        assert limited.status_code == 429
        assert limited.json()["detail"]["error_type"] == "rate_limited"


def test_models_endpoint(client):
    response = client.get("/api/chat/models", headers=_auth())
    assert response.status_code == 200
    [entry] = response.json()["providers"]
    assert entry["name"] == "openai"
    assert entry["status"] == "healthy"
    assert entry["models"][0]["id"] == "gpt-3.5-turbo"
    assert entry["lastChecked"].endswith("Z")


def test_history_endpoint(client, provider):
    provider.replies = ['{"needsTelemetry": false}', "Hello!"]
    client.post("/api/chat/message", json={"message": "hi"}, headers=_auth())

    response = client.get("/api/chat/history", params={"limit": 1}, headers=_auth())
    assert response.status_code == 200
    body = response.json()
    assert body["hasMore"] is True
    assert body["messages"][0]["role"] == "assistant"
    assert body["messages"][0]["content"] == "Hello!"

    bad = client.get("/api/chat/history", params={"limit": 0}, headers=_auth())
    assert bad.status_code == 400


class TestTelemetryQuery:
    def test_daily_query(self, client):
        response = client.get(
            "/api/telemetry/query",
            params={
                "metrics": ["power_consumption"],
                "startDate": "2024-06-03T00:00:00Z",
                "endDate": "2024-06-09T00:00:00Z",
                "deviceType": "air_conditioner",
                "functions": "sum,max",
            },
            headers=_auth(),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["aggregation"] == "daily"
        assert body["timeRange"]["start"] == "2024-06-03T00:00:00Z"
        assert body["data"][0]["metrics"] == {
            "power_consumption": {"sum": 24.0, "max": 1.0}
        }

    def test_empty_range_is_200(self, client):
        response = client.get(
            "/api/telemetry/query",
            params={
                "metrics": "voltage",
                "startDate": "2020-01-01T00:00:00Z",
                "endDate": "2020-01-02T00:00:00Z",
            },
            headers=_auth(),
        )
        assert response.status_code == 200
        assert response.json()["data"] == []

    def test_validation_error_lists_fields(self, client):
        response = client.get(
            "/api/telemetry/query",
            params={"metrics": "temperature", "limit": "lots"},
            headers=_auth(),
        )
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error_type"] == "validation_error"
        fields = {e["field"] for e in detail["errors"]}
        assert {"startDate", "endDate", "limit"} <= fields

    def test_foreign_device_id_forbidden(self, client):
        response = client.get(
            "/api/telemetry/query",
            params={
                "metrics": "voltage",
                "startDate": "2024-06-03T00:00:00Z",
                "endDate": "2024-06-04T00:00:00Z",
                "deviceId": BOB_AC_ID,
            },
            headers=_auth(),
        )
        assert response.status_code == 403
        assert response.json()["detail"]["error_type"] == "authorization_mismatch"


class TestTelemetrySummary:
    def test_all_devices(self, client):
        response = client.get(
            "/api/telemetry/devices/summary",
            params={"startDate": "2024-06-03", "endDate": "2024-06-04"},
            headers=_auth(),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["totalDevices"] == 2
        assert body["totalConsumption"] == 60.0
        assert {d["deviceName"] for d in body["devices"]} == {
            "Kitchen Fridge",
            "Living Room AC",
        }

    def test_one_device(self, client):
        response = client.get(
            f"/api/telemetry/summary/device/{ALICE_AC_ID}",
            params={"startDate": "2024-06-03", "endDate": "2024-06-03"},
            headers=_auth(),
        )
        assert response.status_code == 200
        [device] = response.json()["devices"]
        assert device["totalConsumption"] == 24.0
        assert device["dataPoints"][0]["readingsCount"] == 24

    def test_foreign_device_forbidden(self, client):
        response = client.get(
            f"/api/telemetry/summary/device/{BOB_AC_ID}", headers=_auth()
        )
        assert response.status_code == 403
        assert response.json()["detail"]["detail"] == (
            "Device not found or access denied"
        )

    def test_bad_date_is_400(self, client):
        response = client.get(
            "/api/telemetry/devices/summary",
            params={"endDate": "yesterday-ish"},
            headers=_auth(),
        )
        assert response.status_code == 400
        assert response.json()["detail"]["errors"] == [
            {"field": "endDate", "message": "Invalid timestamp"}
        ]

    def test_requires_auth(self, client):
        response = client.get("/api/telemetry/devices/summary")
        assert response.status_code == 401
