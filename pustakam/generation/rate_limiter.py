"""Client-side request throttling per provider."""

import logging
import threading
import time
from collections.abc import Callable

from pustakam.config import RateLimitConfig

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window request counter plus provider cooldowns.

    A cooldown is recorded when a provider answers with a rate-limit
    status; until it expires every request to that provider is refused.

    Args:
        config: Limits per provider and the window length.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._requests: dict[str, list[float]] = {}
        self._cooldowns: dict[str, tuple[float, float]] = {}  # provider -> (hit_at, seconds)
        self._lock = threading.Lock()

    def limit_for(self, provider: str) -> int:
        return self.config.requests_per_minute.get(provider, self.config.default_requests_per_minute)

    def remaining_cooldown(self, provider: str) -> float:
        """Seconds left before ``provider`` accepts requests again."""
        with self._lock:
            return self._remaining_cooldown(provider)

    def _remaining_cooldown(self, provider: str) -> float:
        cooldown = self._cooldowns.get(provider)
        if cooldown is None:
            return 0.0
        hit_at, seconds = cooldown
        remaining = seconds - (self._clock() - hit_at)
        if remaining <= 0:
            del self._cooldowns[provider]
            return 0.0
        return remaining

    def try_acquire(self, provider: str) -> bool:
        """Record a request if the provider is not throttled.

        Returns:
            True if the request may go out now.
        """
        if not self.config.enabled:
            return True
        with self._lock:
            if self._remaining_cooldown(provider) > 0:
                return False
            now = self._clock()
            window = self.config.window_seconds
            recent = [t for t in self._requests.get(provider, []) if now - t < window]
            if len(recent) >= self.limit_for(provider):
                self._requests[provider] = recent
                return False
            recent.append(now)
            self._requests[provider] = recent
            return True

    def seconds_until_available(self, provider: str) -> float:
        """Best estimate of the wait before ``try_acquire`` can succeed."""
        with self._lock:
            cooldown = self._remaining_cooldown(provider)
            now = self._clock()
            window = self.config.window_seconds
            recent = [t for t in self._requests.get(provider, []) if now - t < window]
            if len(recent) < self.limit_for(provider):
                return cooldown
            return max(cooldown, window - (now - recent[0]))

    def record_rate_limit(self, provider: str, retry_after: float | None = None) -> None:
        seconds = retry_after if retry_after is not None else self.config.default_cooldown_seconds
        logger.warning("Rate limit recorded for %s, cooling down %.0fs", provider, seconds)
        with self._lock:
            self._cooldowns[provider] = (self._clock(), seconds)

    def clear_cooldown(self, provider: str) -> None:
        with self._lock:
            self._cooldowns.pop(provider, None)

    def clear(self, provider: str | None = None) -> None:
        with self._lock:
            if provider is None:
                self._cooldowns.clear()
                self._requests.clear()
            else:
                self._cooldowns.pop(provider, None)
                self._requests.pop(provider, None)
