"""Tests for the anti-CSRF state guards."""

from __future__ import annotations

import asyncio
import json

from unittest.mock import AsyncMock, MagicMock, patch

from oauth2rp.state import MemoryStateGuard, RedisStateGuard


def _request(host: str = "127.0.0.1") -> MagicMock:
    request = MagicMock()
    request.client.host = host
    return request


# ── MemoryStateGuard ────────────────────────────────────────────────


class TestMemoryStateGuard:
    """Tests for MemoryStateGuard."""

    def test_generate_then_check(self) -> None:
        guard = MemoryStateGuard()

        async def _run() -> bool:
            state = await guard.generate(_request(), "discord")
            return await guard.check(_request(), "discord", state)

        assert asyncio.run(_run()) is True

    def test_states_are_unique(self) -> None:
        guard = MemoryStateGuard()

        async def _run() -> set[str]:
            return {await guard.generate(_request(), "discord") for _ in range(20)}

        assert len(asyncio.run(_run())) == 20

    def test_single_use(self) -> None:
        """A state validates at most once."""
        guard = MemoryStateGuard()

        async def _run() -> tuple[bool, bool]:
            state = await guard.generate(_request(), "discord")
            first = await guard.check(_request(), "discord", state)
            second = await guard.check(_request(), "discord", state)
            return first, second

        assert asyncio.run(_run()) == (True, False)

    def test_profile_scoped(self) -> None:
        """A state issued for one profile fails for another and is consumed."""
        guard = MemoryStateGuard()

        async def _run() -> tuple[bool, bool]:
            state = await guard.generate(_request(), "discord")
            wrong = await guard.check(_request(), "twitch", state)
            right = await guard.check(_request(), "discord", state)
            return wrong, right

        assert asyncio.run(_run()) == (False, False)

    def test_unknown_and_empty_state(self) -> None:
        guard = MemoryStateGuard()
        assert asyncio.run(guard.check(_request(), "discord", "never-issued")) is False
        assert asyncio.run(guard.check(_request(), "discord", "")) is False

    def test_expired_state_rejected(self) -> None:
        guard = MemoryStateGuard(max_age=10)

        async def _run() -> bool:
            with patch("oauth2rp.state.time.time", return_value=1000.0):
                state = await guard.generate(_request(), "discord")
            with patch("oauth2rp.state.time.time", return_value=1011.0):
                return await guard.check(_request(), "discord", state)

        assert asyncio.run(_run()) is False

    def test_capacity_drops_oldest(self) -> None:
        guard = MemoryStateGuard(max_pending=2)

        async def _run() -> tuple[int, bool, bool]:
            with patch("oauth2rp.state.time.time", return_value=1000.0):
                first = await guard.generate(_request(), "discord")
            with patch("oauth2rp.state.time.time", return_value=1001.0):
                await guard.generate(_request(), "discord")
                last = await guard.generate(_request(), "discord")
                size = await guard.size()
                return (
                    size,
                    await guard.check(_request(), "discord", first),
                    await guard.check(_request(), "discord", last),
                )

        assert asyncio.run(_run()) == (2, False, True)

    def test_bind_client(self) -> None:
        guard = MemoryStateGuard(bind_client=True)

        async def _run() -> tuple[bool, bool]:
            a = await guard.generate(_request("10.0.0.1"), "discord")
            b = await guard.generate(_request("10.0.0.1"), "discord")
            other = await guard.check(_request("10.0.0.2"), "discord", a)
            same = await guard.check(_request("10.0.0.1"), "discord", b)
            return other, same

        assert asyncio.run(_run()) == (False, True)

    def test_concurrent_checks_validate_once(self) -> None:
        """Concurrent callbacks with the same state succeed exactly once."""
        guard = MemoryStateGuard()

        async def _run() -> list[bool]:
            state = await guard.generate(_request(), "discord")
            return await asyncio.gather(
                *(guard.check(_request(), "discord", state) for _ in range(10))
            )

        assert sum(asyncio.run(_run())) == 1


# ── RedisStateGuard ─────────────────────────────────────────────────


class TestRedisStateGuard:
    """Tests for RedisStateGuard against a mocked client."""

    @staticmethod
    def _guard() -> tuple[RedisStateGuard, AsyncMock]:
        redis = AsyncMock()
        with patch("redis.asyncio.Redis.from_url", return_value=redis):
            guard = RedisStateGuard(redis_url="redis://test:6379/0", prefix="t", max_age=60)
        return guard, redis

    def test_generate_sets_with_ttl(self) -> None:
        guard, redis = self._guard()
        state = asyncio.run(guard.generate(_request(), "discord"))
        key, data = redis.set.call_args.args
        assert key == f"t:oauth2:state:{state}"
        assert json.loads(data)["profile"] == "discord"
        assert redis.set.call_args.kwargs == {"ex": 60, "nx": True}

    def test_check_consumes_atomically(self) -> None:
        guard, redis = self._guard()
        redis.getdel.return_value = json.dumps({"profile": "discord", "created_at": 0})
        assert asyncio.run(guard.check(_request(), "discord", "s1")) is True
        redis.getdel.assert_awaited_once_with("t:oauth2:state:s1")

    def test_check_wrong_profile(self) -> None:
        guard, redis = self._guard()
        redis.getdel.return_value = json.dumps({"profile": "twitch", "created_at": 0})
        assert asyncio.run(guard.check(_request(), "discord", "s1")) is False

    def test_check_missing(self) -> None:
        guard, redis = self._guard()
        redis.getdel.return_value = None
        assert asyncio.run(guard.check(_request(), "discord", "s1")) is False

    def test_close(self) -> None:
        guard, redis = self._guard()
        asyncio.run(guard.close())
        redis.aclose.assert_awaited_once()
