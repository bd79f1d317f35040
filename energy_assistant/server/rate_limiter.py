"""Rate limiting for chat endpoints.

Per-user sliding window over request timestamps, held in memory.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    requests_per_window: int = 100
    window_size_seconds: int = 900
    enable_rate_limiting: bool = True


class RateLimiter:
    """In-memory rate limiter with sliding window.

    Tracks per-client request timestamps over the configured window.
    """

    def __init__(self, config: RateLimitConfig):
        """Initialize rate limiter.

        Args:
            config: Rate limiting configuration.
        """
        self.config = config
        self.clients: Dict[str, Deque[float]] = {}
        logger.info(
            "rate_limiter.init",
            extra={
                "requests_per_window": config.requests_per_window,
                "window_seconds": config.window_size_seconds,
                "enabled": config.enable_rate_limiting,
            },
        )

    def check_rate_limit(self, client_id: str) -> Tuple[bool, Optional[str]]:
        """Check whether ``client_id`` may make another request.

        Returns:
            Tuple of (allowed, error_message). ``error_message`` explains the
            limit when ``allowed`` is False.
        """
        if not self.config.enable_rate_limiting:
            return True, None

        now = time.time()
        timestamps = self._active_timestamps(client_id, now)

        if len(timestamps) >= self.config.requests_per_window:
            retry_after = max(
                0, int(timestamps[0] + self.config.window_size_seconds - now)
            )
            logger.warning(
                "rate_limiter.exceeded",
                extra={
                    "client_id": client_id,
                    "requests": len(timestamps),
                    "limit": self.config.requests_per_window,
                    "retry_after_seconds": retry_after,
                },
            )
            return (
                False,
                f"Too many requests ({self.config.requests_per_window} per "
                f"{self.config.window_size_seconds}s). "
                f"Retry after {retry_after} seconds.",
            )
        return True, None

    def record_request(self, client_id: str) -> None:
        self.clients.setdefault(client_id, deque()).append(time.time())

    def get_client_stats(self, client_id: str) -> Dict[str, int]:
        """Get current usage stats for a client."""
        timestamps = self._active_timestamps(client_id, time.time())
        return {
            "requests_remaining": max(
                0, self.config.requests_per_window - len(timestamps)
            ),
            "requests_limit": self.config.requests_per_window,
            "window_seconds": self.config.window_size_seconds,
        }

    def _active_timestamps(self, client_id: str, now: float) -> Deque[float]:
        """Timestamps still inside the window; idle clients are forgotten."""
        timestamps = self.clients.get(client_id)
        if timestamps is None:
            return deque()
        window_start = now - self.config.window_size_seconds
        while timestamps and timestamps[0] < window_start:
            timestamps.popleft()
        if not timestamps:
            del self.clients[client_id]
        return timestamps
