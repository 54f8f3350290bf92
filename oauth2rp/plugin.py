"""FastAPI plugin entry point.

``OAuth2`` resolves configuration once, builds every component and
exposes the router plus a per-request session dependency::

    oauth2 = OAuth2(
        {"github": {"provider": github_provider, "scope": ["user"]}},
        host="example.com",
    )
    app = FastAPI(lifespan=oauth2.lifespan)
    oauth2.install(app)
"""

from __future__ import annotations

import contextlib
import logging

from typing import TYPE_CHECKING, Any

from fastapi import Request, Response

from .config import OAuth2Settings
from .cookies import SessionCookies
from .flow import AuthFlowEngine
from .log import set_level
from .registry import ProfileRegistry
from .routes import create_oauth2_router
from .session import OAuth2Session
from .signing import SessionSigner
from .state import MemoryStateGuard
from .token_store import create_token_store
from .urls import UrlBuilder


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Mapping

    from fastapi import APIRouter, FastAPI

    from .state import StateGuard
    from .token_store import TokenStore
    from .types import Profile


logger = logging.getLogger("oauth2rp.plugin")


class OAuth2:
    """OAuth2 authorization code client for FastAPI applications.

    Parameters
    ----------
    profiles : Mapping, optional
        Profiles keyed by name (``Profile`` objects or
        ``{"provider": ..., "scope": [...]}`` dicts). When omitted the
        profiles declared in ``settings.profiles`` are used.
    state : StateGuard, optional
        CSRF state guard (default: ``MemoryStateGuard``).
    storage : TokenStore, optional
        Token store (default: ``settings.token_store_backend``).
    settings : OAuth2Settings, optional
        Resolved settings. Built from files, environment and
        ``**overrides`` when omitted.
    clock : callable, optional
        Time source, mainly for tests.
    **overrides : Any
        Keyword overrides for ``OAuth2Settings`` (e.g. ``host=...``).
    """

    def __init__(
        self,
        profiles: Mapping[str, Profile | Mapping[str, Any]] | None = None,
        *,
        state: StateGuard | None = None,
        storage: TokenStore | None = None,
        settings: OAuth2Settings | None = None,
        clock: Callable[[], float] | None = None,
        **overrides: Any,
    ) -> None:
        self.settings = settings or OAuth2Settings(**overrides)
        set_level(self.settings.log.level)

        if profiles is None:
            self.registry = ProfileRegistry.from_settings(
                self.settings.profiles, timeout=self.settings.http_timeout
            )
        else:
            self.registry = ProfileRegistry(profiles)

        self.urls = UrlBuilder(
            host=self.settings.host,
            prefix=self.settings.prefix,
            login=self.settings.login,
            authorized=self.settings.authorized,
            logout=self.settings.logout,
            redirect_to=self.settings.redirect_to,
        )
        self.state = state or MemoryStateGuard()
        self.storage = storage or create_token_store(
            self.settings.token_store_backend, redis_url=self.settings.redis_url
        )
        self.signer = SessionSigner(
            secret=self.settings.jwt.secret,
            algorithm=self.settings.jwt.algorithm,
            exp=self.settings.jwt.exp,
        )
        self.cookies = SessionCookies(self.settings.cookie)

        engine_kwargs: dict[str, Any] = {"delete_on_logout": self.settings.delete_on_logout}
        if clock is not None:
            engine_kwargs["clock"] = clock
        self.engine = AuthFlowEngine(
            registry=self.registry,
            urls=self.urls,
            state_guard=self.state,
            storage=self.storage,
            signer=self.signer,
            cookies=self.cookies,
            **engine_kwargs,
        )
        self._router: APIRouter | None = None
        logger.debug("OAuth2 plugin ready with profiles: %s", ", ".join(self.registry.names()))

    @property
    def router(self) -> APIRouter:
        """Router with the login, callback and logout routes."""
        if self._router is None:
            self._router = create_oauth2_router(self.engine, self.settings)
        return self._router

    def install(self, app: FastAPI) -> None:
        """Mount the routes on ``app`` and expose the plugin as ``app.state.oauth2``."""
        app.include_router(self.router)
        app.state.oauth2 = self

    async def session(self, request: Request, response: Response) -> OAuth2Session:
        """FastAPI dependency returning the request's ``OAuth2Session``.

        The session is also stored as ``request.state.oauth2``. Refreshed
        cookies are set on the dependency response, which FastAPI merges
        into the endpoint's response unless the endpoint returns its own
        ``Response``.
        """
        oauth_session = OAuth2Session(request, response, self.engine)
        request.state.oauth2 = oauth_session
        return oauth_session

    async def aclose(self) -> None:
        """Close provider HTTP clients and backend connections."""
        for provider in self.registry.providers():
            await provider.close()
        for backend in (self.state, self.storage):
            close = getattr(backend, "close", None)
            if close is not None:
                await close()

    @contextlib.asynccontextmanager
    async def lifespan(self, app: FastAPI) -> AsyncIterator[None]:  # pylint: disable=unused-argument
        """FastAPI lifespan that closes outbound clients on shutdown."""
        try:
            yield
        finally:
            await self.aclose()
