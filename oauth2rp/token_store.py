"""Pluggable token storage backends.

Provides the TokenStore ABC and concrete implementations for in-memory
and Redis-backed token persistence. Tokens are keyed by profile name
and subject id; caching is left to the implementation.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from .types import AccessToken


if TYPE_CHECKING:
    from starlette.requests import Request


logger = logging.getLogger("oauth2rp.token_store")


class TokenStore(ABC):
    """Abstract base class for OAuth2 token storage.

    All methods are async to support both local and network-backed stores,
    and must be safe for concurrent calls with distinct keys.
    """

    def subject_id(self, request: Request, name: str, token: AccessToken) -> str:
        """Derive the subject id a token is stored under.

        Override to key tokens by an application user id instead.

        Parameters
        ----------
        request : Request
            The request that produced the token.
        name : str
            The profile name.
        token : AccessToken
            The token being stored.

        Returns
        -------
        str
            The provider login, user id or subject, else ``"default"``.
        """
        for candidate in (
            token.login,
            token.extra.get("user_id"),
            token.extra.get("sub"),
            token.extra.get("id"),
        ):
            if candidate:
                return str(candidate)
        return "default"

    @abstractmethod
    async def set(self, request: Request, name: str, token: AccessToken) -> None:
        """Write a token (most likely a login).

        Parameters
        ----------
        request : Request
            The current request.
        name : str
            The profile name.
        token : AccessToken
            The token to persist.
        """

    @abstractmethod
    async def get(self, request: Request, name: str, subject_id: str) -> AccessToken | None:
        """Read a token.

        Parameters
        ----------
        request : Request
            The current request.
        name : str
            The profile name.
        subject_id : str
            The subject the token belongs to.

        Returns
        -------
        AccessToken or None
            The stored token, or None if not found.
        """

    @abstractmethod
    async def delete(self, request: Request, name: str, subject_id: str) -> None:
        """Delete a token (most likely a logout).

        Parameters
        ----------
        request : Request
            The current request.
        name : str
            The profile name.
        subject_id : str
            The subject the token belongs to.
        """


def _serialize_token(token: AccessToken) -> str:
    """Serialize an AccessToken to JSON."""
    return json.dumps(token.to_dict())


def _deserialize_token(data: str) -> AccessToken:
    """Deserialize an AccessToken from JSON."""
    return AccessToken.from_dict(json.loads(data))


class MemoryTokenStore(TokenStore):
    """In-memory token store for development and single-process use.

    Safe for concurrent requests via asyncio.Lock.
    """

    def __init__(self) -> None:
        """Initialize the memory token store."""
        self._tokens: dict[tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    async def set(self, request: Request, name: str, token: AccessToken) -> None:
        """Save a token in memory."""
        key = (name, self.subject_id(request, name, token))
        async with self._lock:
            self._tokens[key] = _serialize_token(token)

    async def get(self, request: Request, name: str, subject_id: str) -> AccessToken | None:
        """Load a token from memory."""
        async with self._lock:
            data = self._tokens.get((name, subject_id))
        if data is None:
            return None
        return _deserialize_token(data)

    async def delete(self, request: Request, name: str, subject_id: str) -> None:
        """Delete a token from memory."""
        async with self._lock:
            self._tokens.pop((name, subject_id), None)


class RedisTokenStore(TokenStore):
    """Redis-backed token store for multi-worker deployments.

    Keys expire shortly after the token itself when it has an expiry.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "oauth2rp").
    pool_size : int
        Connection pool size (default 10).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "oauth2rp",
        pool_size: int = 10,
    ) -> None:
        """Initialize the Redis token store."""
        from redis.asyncio import Redis as RedisClient

        self._prefix = prefix
        self._redis: Any = RedisClient.from_url(
            redis_url,
            max_connections=pool_size,
            decode_responses=True,
        )

    def _key(self, name: str, subject_id: str) -> str:
        """Build a Redis key with prefix."""
        return f"{self._prefix}:oauth2:tokens:{name}:{subject_id}"

    async def set(self, request: Request, name: str, token: AccessToken) -> None:
        """Save a token to Redis with optional TTL."""
        redis_key = self._key(name, self.subject_id(request, name, token))
        data = _serialize_token(token)
        if token.expires_in is not None and token.expires_in > 0:
            # keep the record a little longer than the token to allow refresh
            ttl = int(token.expires_in) + 300
            await self._redis.setex(redis_key, ttl, data)
        else:
            await self._redis.set(redis_key, data)

    async def get(self, request: Request, name: str, subject_id: str) -> AccessToken | None:
        """Load a token from Redis."""
        data = await self._redis.get(self._key(name, subject_id))
        if data is None:
            return None
        return _deserialize_token(data)

    async def delete(self, request: Request, name: str, subject_id: str) -> None:
        """Delete a token from Redis."""
        await self._redis.delete(self._key(name, subject_id))

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self._redis.aclose()


_token_store_instance: TokenStore | None = None
_token_store_lock = threading.Lock()


def create_token_store(backend: str = "memory", **kwargs: Any) -> TokenStore:
    """Build a new token store for ``backend``.

    Parameters
    ----------
    backend : str
        Storage backend: "memory" or "redis".
    **kwargs : Any
        ``redis_url``, ``prefix`` and ``pool_size`` for the Redis backend.

    Raises
    ------
    ValueError
        If ``backend`` is unknown.
    """
    if backend == "memory":
        store: TokenStore = MemoryTokenStore()
    elif backend == "redis":
        store = RedisTokenStore(
            redis_url=kwargs.get("redis_url", "redis://localhost:6379/0"),
            prefix=kwargs.get("prefix", "oauth2rp"),
            pool_size=kwargs.get("pool_size", 10),
        )
    else:
        msg = f"Unknown token store backend: {backend}"
        raise ValueError(msg)
    logger.debug("Created %s token store", backend)
    return store


def get_token_store(backend: str = "memory", **kwargs: Any) -> TokenStore:
    """Process-wide shared token store.

    Returns a singleton instance; the first call decides the backend.
    Call ``reset_token_store()`` to clear the cached instance (e.g. in
    tests). Plugins build their own store with ``create_token_store``.

    Parameters
    ----------
    backend : str
        Storage backend: "memory" or "redis".
    **kwargs : Any
        Additional keyword arguments passed to the store constructor.

    Returns
    -------
    TokenStore
        A configured token store instance.
    """
    global _token_store_instance  # noqa: PLW0603

    with _token_store_lock:
        if _token_store_instance is None:
            _token_store_instance = create_token_store(backend, **kwargs)
        return _token_store_instance


def reset_token_store() -> None:
    """Reset the singleton token store instance.

    Useful for tests that need a fresh token store between runs.
    """
    global _token_store_instance  # noqa: PLW0603

    with _token_store_lock:
        _token_store_instance = None
