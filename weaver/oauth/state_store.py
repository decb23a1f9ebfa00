"""Short-lived server-side storage for OAuth state across the redirect."""

from __future__ import annotations

import json
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from weaver.config import get_settings
from weaver.valkey import get_valkey

from .errors import StateNotFoundError

settings = get_settings()


@dataclass(frozen=True)
class OAuthStateRecord:
    """Everything the callback needs to finish one connection attempt."""

    state: str
    platform: str
    code_verifier: str
    user_id: str
    browser_binding: str
    mode: str = "redirect"
    redirect_to: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> OAuthStateRecord:
        return cls(**json.loads(raw))


class OAuthStateStore(ABC):
    """Ephemeral keyed store with TTL, keyed by the CSRF state token."""

    @abstractmethod
    async def put(self, record: OAuthStateRecord, ttl: int | None = None) -> None:
        """Store a record for ``ttl`` seconds."""

    @abstractmethod
    async def take(self, state: str) -> OAuthStateRecord:
        """Atomically remove and return the record for ``state``.

        Raises StateNotFoundError when the state is unknown, already consumed
        or expired.
        """

    async def discard(self, state: str) -> None:
        """Remove a record if present."""
        try:
            await self.take(state)
        except StateNotFoundError:
            pass


class ValkeyOAuthStateStore(OAuthStateStore):
    """OAuth state management using Valkey, shared across API instances."""

    PREFIX = "oauth_state:"

    async def put(self, record: OAuthStateRecord, ttl: int | None = None) -> None:
        client = await get_valkey()
        await client.setex(
            f"{self.PREFIX}{record.state}",
            ttl or settings.OAUTH_STATE_TTL,
            record.to_json(),
        )

    async def take(self, state: str) -> OAuthStateRecord:
        client = await get_valkey()
        key = f"{self.PREFIX}{state}"

        # GET and DEL run inside one MULTI/EXEC transaction
        pipe = client.pipeline(transaction=True)
        pipe.get(key)
        pipe.delete(key)
        results = await pipe.execute()

        data = results[0]
        if not data:
            raise StateNotFoundError(state)
        return OAuthStateRecord.from_json(data)


class MemoryOAuthStateStore(OAuthStateStore):
    """Process-local state store for single-instance deployments and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, tuple[OAuthStateRecord, float]] = {}

    async def put(self, record: OAuthStateRecord, ttl: int | None = None) -> None:
        expires_at = self._clock() + (ttl or settings.OAUTH_STATE_TTL)
        with self._lock:
            self._purge_expired()
            self._records[record.state] = (record, expires_at)

    async def take(self, state: str) -> OAuthStateRecord:
        with self._lock:
            entry = self._records.pop(state, None)
        if entry is None:
            raise StateNotFoundError(state)
        record, expires_at = entry
        if self._clock() >= expires_at:
            raise StateNotFoundError(state)
        return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._records.items() if now >= expires_at]
        for key in expired:
            del self._records[key]


_memory_store: MemoryOAuthStateStore | None = None


def get_state_store() -> OAuthStateStore:
    """Dependency returning the configured state store backend."""
    global _memory_store
    if settings.STATE_STORE_BACKEND == "memory":
        if _memory_store is None:
            _memory_store = MemoryOAuthStateStore()
        return _memory_store
    return ValkeyOAuthStateStore()
