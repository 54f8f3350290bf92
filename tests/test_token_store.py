"""Unit tests for token storage backends."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import json

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from oauth2rp.token_store import (
    MemoryTokenStore,
    RedisTokenStore,
    _deserialize_token,
    _serialize_token,
    create_token_store,
    get_token_store,
    reset_token_store,
)
from oauth2rp.types import AccessToken
from tests.constants import NOW


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def sample_token() -> AccessToken:
    """Create a sample token for testing."""
    return AccessToken(
        access_token="at_test_123",
        refresh_token="rt_test_456",
        scope="identify email",
        expires_in=3600,
        created_at=NOW,
        login="alice",
    )


@pytest.fixture()
def memory_store() -> MemoryTokenStore:
    """Create a MemoryTokenStore."""
    return MemoryTokenStore()


# ── Serialization ───────────────────────────────────────────────────


class TestSerialization:
    """Tests for token serialization helpers."""

    def test_round_trip(self, sample_token: AccessToken) -> None:
        """Tokens survive serialize then deserialize."""
        assert _deserialize_token(_serialize_token(sample_token)) == sample_token

    def test_serialize_is_json(self, sample_token: AccessToken) -> None:
        parsed = json.loads(_serialize_token(sample_token))
        assert parsed["access_token"] == "at_test_123"

    def test_deserialize_missing_fields(self) -> None:
        token = _deserialize_token(json.dumps({"access_token": "at_minimal"}))
        assert token.access_token == "at_minimal"
        assert token.refresh_token is None


# ── Subject id ──────────────────────────────────────────────────────


class TestSubjectId:
    """Tests for TokenStore.subject_id()."""

    @pytest.mark.parametrize(
        ("token", "expected"),
        [
            (AccessToken(access_token="X", login="alice"), "alice"),
            (AccessToken(access_token="X", extra={"user_id": 42}), "42"),
            (AccessToken(access_token="X", extra={"sub": "s-1"}), "s-1"),
            (AccessToken(access_token="X", extra={"id": "i-1"}), "i-1"),
            (AccessToken(access_token="X"), "default"),
        ],
    )
    def test_derivation(self, token: AccessToken, expected: str) -> None:
        assert MemoryTokenStore().subject_id(MagicMock(), "p", token) == expected


# ── MemoryTokenStore ────────────────────────────────────────────────


class TestMemoryTokenStore:
    """Tests for MemoryTokenStore."""

    def test_set_and_get(self, memory_store: MemoryTokenStore, sample_token: AccessToken) -> None:
        async def _run() -> AccessToken | None:
            await memory_store.set(MagicMock(), "discord", sample_token)
            return await memory_store.get(MagicMock(), "discord", "alice")

        assert asyncio.run(_run()) == sample_token

    def test_get_missing(self, memory_store: MemoryTokenStore) -> None:
        assert asyncio.run(memory_store.get(MagicMock(), "discord", "nobody")) is None

    def test_profiles_are_separate(
        self, memory_store: MemoryTokenStore, sample_token: AccessToken
    ) -> None:
        async def _run() -> AccessToken | None:
            await memory_store.set(MagicMock(), "discord", sample_token)
            return await memory_store.get(MagicMock(), "twitch", "alice")

        assert asyncio.run(_run()) is None

    def test_overwrite(self, memory_store: MemoryTokenStore, sample_token: AccessToken) -> None:
        newer = sample_token.merged({"access_token": "at_new"})

        async def _run() -> AccessToken | None:
            await memory_store.set(MagicMock(), "discord", sample_token)
            await memory_store.set(MagicMock(), "discord", newer)
            return await memory_store.get(MagicMock(), "discord", "alice")

        result = asyncio.run(_run())
        assert result is not None
        assert result.access_token == "at_new"

    def test_delete(self, memory_store: MemoryTokenStore, sample_token: AccessToken) -> None:
        async def _run() -> AccessToken | None:
            await memory_store.set(MagicMock(), "discord", sample_token)
            await memory_store.delete(MagicMock(), "discord", "alice")
            await memory_store.delete(MagicMock(), "discord", "alice")
            return await memory_store.get(MagicMock(), "discord", "alice")

        assert asyncio.run(_run()) is None

    def test_concurrent_writes(self, memory_store: MemoryTokenStore) -> None:
        """Concurrent writes with distinct keys are all kept."""

        async def _run() -> list[AccessToken | None]:
            await asyncio.gather(
                *(
                    memory_store.set(
                        MagicMock(), "discord", AccessToken(access_token=f"t{i}", login=f"u{i}")
                    )
                    for i in range(25)
                )
            )
            return [await memory_store.get(MagicMock(), "discord", f"u{i}") for i in range(25)]

        results = asyncio.run(_run())
        assert [t.access_token for t in results if t is not None] == [f"t{i}" for i in range(25)]


# ── RedisTokenStore ─────────────────────────────────────────────────


class TestRedisTokenStore:
    """Tests for RedisTokenStore against a mocked client."""

    @staticmethod
    def _store() -> tuple[RedisTokenStore, AsyncMock]:
        redis = AsyncMock()
        with patch("redis.asyncio.Redis.from_url", return_value=redis):
            store = RedisTokenStore(redis_url="redis://test:6379/0", prefix="t")
        return store, redis

    def test_set_with_ttl(self, sample_token: AccessToken) -> None:
        """Records outlive the token by five minutes."""
        store, redis = self._store()
        asyncio.run(store.set(MagicMock(), "discord", sample_token))
        key, ttl, data = redis.setex.call_args.args
        assert key == "t:oauth2:tokens:discord:alice"
        assert ttl == 3900
        assert json.loads(data)["access_token"] == "at_test_123"

    def test_set_without_expiry(self) -> None:
        store, redis = self._store()
        token = AccessToken(access_token="X", expires_in=None)
        asyncio.run(store.set(MagicMock(), "discord", token))
        redis.set.assert_awaited_once()
        redis.setex.assert_not_awaited()

    def test_get(self, sample_token: AccessToken) -> None:
        store, redis = self._store()
        redis.get.return_value = _serialize_token(sample_token)
        assert asyncio.run(store.get(MagicMock(), "discord", "alice")) == sample_token
        redis.get.assert_awaited_once_with("t:oauth2:tokens:discord:alice")

    def test_get_missing(self) -> None:
        store, redis = self._store()
        redis.get.return_value = None
        assert asyncio.run(store.get(MagicMock(), "discord", "alice")) is None

    def test_delete(self) -> None:
        store, redis = self._store()
        asyncio.run(store.delete(MagicMock(), "discord", "alice"))
        redis.delete.assert_awaited_once_with("t:oauth2:tokens:discord:alice")


# ── Factory ─────────────────────────────────────────────────────────


class TestCreateTokenStore:
    """Tests for the create_token_store() builder."""

    def test_new_instance_each_call(self) -> None:
        assert create_token_store("memory") is not create_token_store("memory")

    def test_redis_backend(self) -> None:
        with patch("redis.asyncio.Redis.from_url", return_value=AsyncMock()) as from_url:
            store = create_token_store("redis", redis_url="redis://test:6379/0", prefix="p")
        assert isinstance(store, RedisTokenStore)
        assert from_url.call_args.args[0] == "redis://test:6379/0"

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown token store backend"):
            create_token_store("sqlite")


class TestGetTokenStore:
    """Tests for the get_token_store() singleton factory."""

    def test_memory_singleton(self) -> None:
        first = get_token_store("memory")
        assert isinstance(first, MemoryTokenStore)
        assert get_token_store("memory") is first

    def test_first_backend_wins(self) -> None:
        first = get_token_store("memory")
        assert get_token_store("redis") is first

    def test_reset(self) -> None:
        first = get_token_store("memory")
        reset_token_store()
        assert get_token_store("memory") is not first

    def test_redis_backend(self) -> None:
        with patch("redis.asyncio.Redis.from_url", return_value=AsyncMock()):
            store = get_token_store("redis", redis_url="redis://test:6379/0")
        assert isinstance(store, RedisTokenStore)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown token store backend"):
            get_token_store("sqlite")
