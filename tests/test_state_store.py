"""Tests for the ephemeral OAuth state store."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from weaver.oauth.errors import StateNotFoundError
from weaver.oauth.state_store import (
    MemoryOAuthStateStore,
    OAuthStateRecord,
    ValkeyOAuthStateStore,
)


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_record(state: str = "state-abc", **overrides) -> OAuthStateRecord:
    values = {
        "state": state,
        "platform": "tiktok",
        "code_verifier": "v" * 128,
        "user_id": "user-1",
        "browser_binding": "binding-nonce",
    }
    values.update(overrides)
    return OAuthStateRecord(**values)


class TestOAuthStateRecord:
    """Tests for record serialization."""

    def test_json_round_trip_keeps_optional_fields(self):
        record = make_record(mode="popup", redirect_to="/dashboard/reports")

        restored = OAuthStateRecord.from_json(record.to_json())

        assert restored == record
        assert restored.mode == "popup"
        assert restored.redirect_to == "/dashboard/reports"


class TestMemoryOAuthStateStore:
    """Tests for the in-process store."""

    @pytest.mark.asyncio
    async def test_take_returns_stored_record(self):
        store = MemoryOAuthStateStore()
        record = make_record()
        await store.put(record, ttl=600)

        assert await store.take("state-abc") == record

    @pytest.mark.asyncio
    async def test_take_is_single_use(self):
        store = MemoryOAuthStateStore()
        await store.put(make_record(), ttl=600)

        await store.take("state-abc")
        with pytest.raises(StateNotFoundError):
            await store.take("state-abc")

    @pytest.mark.asyncio
    async def test_unknown_state_not_found(self):
        store = MemoryOAuthStateStore()

        with pytest.raises(StateNotFoundError):
            await store.take("never-issued")

    @pytest.mark.asyncio
    async def test_record_available_just_before_ttl(self):
        clock = FakeClock()
        store = MemoryOAuthStateStore(clock=clock)
        await store.put(make_record(), ttl=600)

        clock.now += 599

        assert (await store.take("state-abc")).state == "state-abc"

    @pytest.mark.asyncio
    async def test_record_gone_after_ttl(self):
        clock = FakeClock()
        store = MemoryOAuthStateStore(clock=clock)
        await store.put(make_record(), ttl=600)

        clock.now += 601

        with pytest.raises(StateNotFoundError):
            await store.take("state-abc")

    @pytest.mark.asyncio
    async def test_record_gone_at_exact_ttl(self):
        clock = FakeClock()
        store = MemoryOAuthStateStore(clock=clock)
        await store.put(make_record(), ttl=600)

        clock.now += 600

        with pytest.raises(StateNotFoundError):
            await store.take("state-abc")

    @pytest.mark.asyncio
    async def test_put_purges_expired_records(self):
        clock = FakeClock()
        store = MemoryOAuthStateStore(clock=clock)
        await store.put(make_record("old"), ttl=600)

        clock.now += 700
        await store.put(make_record("new"), ttl=600)

        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_discard_is_idempotent(self):
        store = MemoryOAuthStateStore()
        await store.put(make_record(), ttl=600)

        await store.discard("state-abc")
        await store.discard("state-abc")

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_concurrent_takes_have_one_winner(self):
        store = MemoryOAuthStateStore()
        await store.put(make_record(), ttl=600)

        results = await asyncio.gather(
            *(store.take("state-abc") for _ in range(20)),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, OAuthStateRecord)]
        losers = [r for r in results if isinstance(r, StateNotFoundError)]
        assert len(winners) == 1
        assert len(losers) == 19

    def test_takes_from_threads_have_one_winner(self):
        store = MemoryOAuthStateStore()
        asyncio.run(store.put(make_record(), ttl=600))

        def take_once():
            try:
                return asyncio.run(store.take("state-abc"))
            except StateNotFoundError:
                return None

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: take_once(), range(32)))

        assert sum(1 for r in results if r is not None) == 1


class TestValkeyOAuthStateStore:
    """Tests for the Valkey-backed store."""

    @staticmethod
    def mock_valkey(execute_result):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=execute_result)
        client = MagicMock()
        client.setex = AsyncMock(return_value=True)
        client.pipeline.return_value = pipe
        return client, pipe

    @pytest.mark.asyncio
    async def test_put_uses_setex_with_ttl(self):
        client, _ = self.mock_valkey([None, 0])
        record = make_record()

        with patch("weaver.oauth.state_store.get_valkey", AsyncMock(return_value=client)):
            await ValkeyOAuthStateStore().put(record, ttl=600)

        client.setex.assert_awaited_once_with("oauth_state:state-abc", 600, record.to_json())

    @pytest.mark.asyncio
    async def test_take_gets_and_deletes_in_one_transaction(self):
        record = make_record()
        client, pipe = self.mock_valkey([record.to_json(), 1])

        with patch("weaver.oauth.state_store.get_valkey", AsyncMock(return_value=client)):
            result = await ValkeyOAuthStateStore().take("state-abc")

        assert result == record
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.get.assert_called_once_with("oauth_state:state-abc")
        pipe.delete.assert_called_once_with("oauth_state:state-abc")

    @pytest.mark.asyncio
    async def test_take_missing_raises_not_found(self):
        client, _ = self.mock_valkey([None, 0])

        with patch("weaver.oauth.state_store.get_valkey", AsyncMock(return_value=client)):
            with pytest.raises(StateNotFoundError):
                await ValkeyOAuthStateStore().take("state-abc")
