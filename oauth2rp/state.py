"""Anti-CSRF state guards.

A state guard issues the ``state`` value sent with the authorization
request and validates it on the callback, as described in
RFC 6749 section 10.12. Issued states are profile-scoped, expiring and
single-use.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from starlette.requests import Request


logger = logging.getLogger("oauth2rp.state")


def _client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class StateGuard(ABC):
    """Temporary state storage used to prevent cross-site request forgery.

    Implementations must be safe for concurrent calls from multiple
    in-flight requests.
    """

    @abstractmethod
    async def generate(self, request: Request, name: str) -> str:
        """Issue a new state for profile ``name``.

        Parameters
        ----------
        request : Request
            The login request.
        name : str
            The profile the state is scoped to.

        Returns
        -------
        str
            An unguessable state value.
        """

    @abstractmethod
    async def check(self, request: Request, name: str, state: str) -> bool:
        """Validate and consume ``state`` for profile ``name``.

        Parameters
        ----------
        request : Request
            The callback request.
        name : str
            The profile named by the callback path.
        state : str
            The ``state`` query parameter.

        Returns
        -------
        bool
            True only the first time a state issued for ``name`` is checked
            within its lifetime.
        """


class MemoryStateGuard(StateGuard):
    """Bounded, TTL-enforced in-process state guard.

    Thread-safe via ``asyncio.Lock``. Evicts expired entries on every
    call and enforces a hard capacity limit to prevent memory exhaustion.

    Parameters
    ----------
    max_pending : int
        Maximum number of concurrent pending states.
    max_age : float
        Maximum age of a pending state in seconds.
    bind_client : bool
        Also require the callback to come from the client address that
        started the login. Leave off behind proxies that rewrite it.
    """

    def __init__(
        self,
        max_pending: int = 1000,
        max_age: float = 600.0,
        bind_client: bool = False,
    ) -> None:
        self._store: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._max_pending = max_pending
        self._max_age = max_age
        self._bind_client = bind_client

    async def generate(self, request: Request, name: str) -> str:
        """Issue and remember a new state."""
        state = secrets.token_urlsafe(32)
        entry: dict[str, Any] = {"profile": name, "created_at": time.time()}
        if self._bind_client:
            entry["client"] = _client_address(request)
        async with self._lock:
            self._evict_expired()
            if len(self._store) >= self._max_pending:
                oldest_key = min(self._store, key=lambda k: self._store[k]["created_at"])
                del self._store[oldest_key]
            self._store[state] = entry
        return state

    async def check(self, request: Request, name: str, state: str) -> bool:
        """Consume ``state`` and report whether it was valid for ``name``."""
        if not state:
            return False
        async with self._lock:
            self._evict_expired()
            entry = self._store.pop(state, None)
        if entry is None or entry["profile"] != name:
            return False
        if self._bind_client and entry.get("client") != _client_address(request):
            logger.warning("State for profile %s presented from a different client", name)
            return False
        return True

    async def size(self) -> int:
        """Return current number of pending states."""
        async with self._lock:
            return len(self._store)

    def _evict_expired(self) -> None:
        """Remove all expired entries (caller must hold lock)."""
        now = time.time()
        expired = [k for k, v in self._store.items() if now - v["created_at"] > self._max_age]
        for k in expired:
            del self._store[k]


class RedisStateGuard(StateGuard):
    """Redis-backed state guard for multi-worker deployments.

    States are stored with a TTL and consumed atomically with ``GETDEL``,
    so a state validates at most once across all workers.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "oauth2rp").
    max_age : int
        State lifetime in seconds.
    pool_size : int
        Connection pool size (default 10).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "oauth2rp",
        max_age: int = 600,
        pool_size: int = 10,
    ) -> None:
        from redis.asyncio import Redis as RedisClient

        self._prefix = prefix
        self._max_age = max_age
        self._redis: Any = RedisClient.from_url(
            redis_url,
            max_connections=pool_size,
            decode_responses=True,
        )

    def _key(self, state: str) -> str:
        return f"{self._prefix}:oauth2:state:{state}"

    async def generate(self, request: Request, name: str) -> str:
        """Issue a new state and store it with a TTL."""
        state = secrets.token_urlsafe(32)
        data = json.dumps({"profile": name, "created_at": time.time()})
        await self._redis.set(self._key(state), data, ex=self._max_age, nx=True)
        return state

    async def check(self, request: Request, name: str, state: str) -> bool:
        """Consume ``state`` atomically and compare its profile."""
        if not state:
            return False
        data = await self._redis.getdel(self._key(state))
        if data is None:
            return False
        return json.loads(data).get("profile") == name

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self._redis.aclose()
