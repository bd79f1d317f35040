"""Tests for the per-user sliding-window rate limiter."""

from __future__ import annotations

from unittest.mock import patch

from energy_assistant.server.rate_limiter import RateLimitConfig, RateLimiter


def _limiter(limit: int = 2, window: int = 60, enabled: bool = True) -> RateLimiter:
    return RateLimiter(
        RateLimitConfig(
            requests_per_window=limit,
            window_size_seconds=window,
            enable_rate_limiting=enabled,
        )
    )


def test_defaults():
    config = RateLimitConfig()
    assert config.requests_per_window == 100
    assert config.window_size_seconds == 900


def test_blocks_after_limit():
    limiter = _limiter(limit=2)
    for _ in range(2):
        allowed, _msg = limiter.check_rate_limit("alice")
        assert allowed
        limiter.record_request("alice")

    allowed, msg = limiter.check_rate_limit("alice")
    assert allowed is False
    assert "Too many requests" in msg
    # Other users have their own window
    assert limiter.check_rate_limit("bob") == (True, None)


def test_window_slides():
    limiter = _limiter(limit=1, window=60)
    with patch("energy_assistant.server.rate_limiter.time.time", return_value=1000.0):
        limiter.record_request("alice")
        assert limiter.check_rate_limit("alice")[0] is False
    with patch("energy_assistant.server.rate_limiter.time.time", return_value=1061.0):
        assert limiter.check_rate_limit("alice") == (True, None)


def test_disabled_always_allows():
    limiter = _limiter(limit=1, enabled=False)
    limiter.record_request("alice")
    limiter.record_request("alice")
    assert limiter.check_rate_limit("alice") == (True, None)


def test_client_stats():
    limiter = _limiter(limit=5)
    limiter.record_request("alice")
    assert limiter.get_client_stats("alice") == {
        "requests_remaining": 4,
        "requests_limit": 5,
        "window_seconds": 60,
    }


def test_idle_clients_are_forgotten():
    limiter = _limiter(limit=1, window=60)
    with patch("energy_assistant.server.rate_limiter.time.time", return_value=1000.0):
        limiter.record_request("alice")
        limiter.check_rate_limit("bob")
        limiter.get_client_stats("carol")
    assert list(limiter.clients) == ["alice"]

    with patch("energy_assistant.server.rate_limiter.time.time", return_value=1061.0):
        assert limiter.check_rate_limit("alice") == (True, None)
    assert limiter.clients == {}
