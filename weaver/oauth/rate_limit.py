"""Per-access-token request budget for outbound provider calls.

Fixed 60-second windows keyed by a digest of the access token. The in-memory
limiter suits a single API process; the Valkey limiter shares counters across
instances.
"""

from __future__ import annotations

import hashlib
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from weaver.config import get_settings
from weaver.valkey import get_valkey

settings = get_settings()

WINDOW_SECONDS = 60


def token_key(access_token: str) -> str:
    """Derive a counter key without keeping the raw token around."""
    return hashlib.sha256(access_token.encode()).hexdigest()


class TokenRateLimiter(ABC):
    """Fixed-window request counter."""

    def __init__(self, limit: int, window_seconds: int = WINDOW_SECONDS):
        self.limit = limit
        self.window_seconds = window_seconds

    @abstractmethod
    async def try_acquire(self, key: str) -> bool:
        """Consume one request from ``key``'s budget; False when exhausted."""


class _Window:
    __slots__ = ("count", "reset_at")

    def __init__(self, reset_at: float):
        self.count = 0
        self.reset_at = reset_at


class MemoryTokenRateLimiter(TokenRateLimiter):
    """In-process counters guarded by a lock."""

    def __init__(
        self,
        limit: int,
        window_seconds: int = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(limit, window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, _Window] = {}
        self._next_purge = 0.0

    async def try_acquire(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            if now >= self._next_purge:
                self._purge_reset(now)
                self._next_purge = now + self.window_seconds
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                window = _Window(now + self.window_seconds)
                self._windows[key] = window
            if window.count >= self.limit:
                return False
            window.count += 1
            return True

    def cleanup(self) -> int:
        """Drop windows that already reset. Returns count removed."""
        with self._lock:
            return self._purge_reset(self._clock())

    def _purge_reset(self, now: float) -> int:
        stale = [k for k, w in self._windows.items() if now >= w.reset_at]
        for k in stale:
            del self._windows[k]
        return len(stale)


class ValkeyTokenRateLimiter(TokenRateLimiter):
    """Shared counters using INCR with a window-length expiry."""

    PREFIX = "provider_rate:"

    async def try_acquire(self, key: str) -> bool:
        client = await get_valkey()
        redis_key = f"{self.PREFIX}{key}"
        pipe = client.pipeline(transaction=True)
        pipe.incr(redis_key)
        pipe.expire(redis_key, self.window_seconds, nx=True)
        count, _ = await pipe.execute()
        return int(count) <= self.limit


_memory_limiters: dict[int, MemoryTokenRateLimiter] = {}


def get_token_rate_limiter(limit: int) -> TokenRateLimiter:
    """Return the configured limiter backend for a per-minute budget."""
    if settings.PROVIDER_RATE_LIMIT_BACKEND == "memory":
        if limit not in _memory_limiters:
            _memory_limiters[limit] = MemoryTokenRateLimiter(limit)
        return _memory_limiters[limit]
    return ValkeyTokenRateLimiter(limit)
