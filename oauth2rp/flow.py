"""OAuth2 authorization code flow engine.

Drives the relying-party side of RFC 6749 section 4.1 for any number of
named profiles::

    UNAUTHENTICATED -> LOGIN_REDIRECTED -> AWAITING_CALLBACK
        -> TOKEN_EXCHANGE_PENDING -> AUTHENTICATED -> LOGGED_OUT

The engine keeps no per-request state. Everything carried between the
login and the callback lives in the state guard; everything carried
between requests lives in the token store and the signed cookie.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import math
import time

from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import unquote

from .exceptions import (
    ProviderValidationFailed,
    RefreshFailed,
    StateMismatch,
)
from .types import AccessToken, FlowState


if TYPE_CHECKING:
    from collections.abc import Callable

    from starlette.requests import Request

    from .cookies import SessionCookies
    from .registry import ProfileRegistry
    from .signing import SessionSigner
    from .state import StateGuard
    from .token_store import TokenStore
    from .types import Profile
    from .urls import UrlBuilder


logger = logging.getLogger("oauth2rp.flow")


def cookie_max_age(token: AccessToken, default: int) -> int:
    """Cookie lifetime for ``token``: its ``expires_in``, else ``default``."""
    if token.expires_in is None:
        return default
    return math.ceil(token.expires_in)


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a successful callback.

    Attributes
    ----------
    token : AccessToken
        The stored token, certified when the provider validates tokens.
    cookie_value : str
        The signed session value.
    max_age : int
        Cookie lifetime in seconds (the token's ``expires_in``).
    redirect_url : str
        Where to send the user next.
    """

    token: AccessToken
    cookie_value: str
    max_age: int
    redirect_url: str


@dataclass(frozen=True)
class SessionCheck:
    """Outcome of verifying a profile's session.

    Attributes
    ----------
    ok : bool
        Whether the caller is authorized for the profile.
    token : AccessToken or None
        The verified (possibly refreshed) token.
    cookie_value : str or None
        A re-signed session value when a refresh happened.
    """

    ok: bool
    token: AccessToken | None = None
    cookie_value: str | None = None


class AuthFlowEngine:
    """Orchestrates login, callback, logout and session checks.

    Parameters
    ----------
    registry : ProfileRegistry
        Registered profiles.
    urls : UrlBuilder
        Builder for callback and redirect URLs.
    state_guard : StateGuard
        Issues and validates CSRF state.
    storage : TokenStore
        Authoritative token storage.
    signer : SessionSigner
        Signs and verifies the session cookie payload.
    cookies : SessionCookies
        Session cookie naming and attributes.
    clock : callable
        Returns the current unix time in seconds (default ``time.time``).
    delete_on_logout : bool
        Also delete the stored token on logout (default ``False``).
    """

    def __init__(
        self,
        registry: ProfileRegistry,
        urls: UrlBuilder,
        state_guard: StateGuard,
        storage: TokenStore,
        signer: SessionSigner,
        cookies: SessionCookies,
        clock: Callable[[], float] = time.time,
        delete_on_logout: bool = False,
    ) -> None:
        self.registry = registry
        self.urls = urls
        self.state_guard = state_guard
        self.storage = storage
        self.signer = signer
        self.cookies = cookies
        self.clock = clock
        self.delete_on_logout = delete_on_logout

    @staticmethod
    def _transition(name: str, source: FlowState, target: FlowState) -> None:
        logger.debug("Profile %s: %s -> %s", name, source.value, target.value)

    async def begin_login(self, request: Request, name: str) -> str:
        """Start the flow and return the provider authorization URL.

        Raises
        ------
        ProfileNotFound
            If ``name`` is not registered.
        """
        profile = self.registry.resolve(name)
        state = await self.state_guard.generate(request, name)
        url = profile.provider.build_authorize_url(
            redirect_uri=self.urls.callback_url(name),
            state=state,
            scope=profile.scope,
        )
        self._transition(name, FlowState.UNAUTHENTICATED, FlowState.LOGIN_REDIRECTED)
        return url

    async def complete_login(
        self,
        request: Request,
        name: str,
        code: str,
        state: str | None,
    ) -> LoginResult:
        """Handle the provider callback.

        State validation completes before the token exchange starts, and
        the exchange completes before the session is signed.

        Raises
        ------
        ProfileNotFound
            If ``name`` is not registered.
        StateMismatch
            If ``state`` is missing or does not validate. No token
            request is made.
        TokenExchangeFailed
            If the provider rejects the code.
        ProviderValidationFailed
            If the provider rejects the fresh token.
        SigningFailed
            If the session cannot be signed.
        """
        profile = self.registry.resolve(name)
        self._transition(name, FlowState.LOGIN_REDIRECTED, FlowState.AWAITING_CALLBACK)

        if not state or not await self.state_guard.check(request, name, state):
            logger.warning("State mismatch on callback for profile %s", name)
            raise StateMismatch(name)

        self._transition(name, FlowState.AWAITING_CALLBACK, FlowState.TOKEN_EXCHANGE_PENDING)
        provider = profile.provider
        # some providers (e.g. google) hand out codes that arrive double-encoded
        token = await provider.exchange_code(
            unquote(code),
            redirect_uri=self.urls.callback_url(name),
            now=self.clock(),
        )
        if provider.has_validation:
            certificate = await provider.validate(token)
            try:
                token = token.merged(certificate)
            except ValueError as exc:
                msg = f"Malformed validation response: {exc}"
                raise ProviderValidationFailed(msg, body=str(certificate), profile=name) from exc

        await self.storage.set(request, name, token)
        cookie_value = self.signer.sign(token, name, now=self.clock())
        self._transition(name, FlowState.TOKEN_EXCHANGE_PENDING, FlowState.AUTHENTICATED)
        logger.info("Profile %s authenticated", name)

        return LoginResult(
            token=token,
            cookie_value=cookie_value,
            max_age=cookie_max_age(token, self.cookies.settings.max_age),
            redirect_url=self.urls.redirect_to_url(name),
        )

    async def logout(self, request: Request, name: str) -> str:
        """End the session for ``name`` and return the redirect URL.

        The caller always clears the cookie. The stored token is only
        deleted when ``delete_on_logout`` is enabled.

        Raises
        ------
        ProfileNotFound
            If ``name`` is not registered.
        """
        self.registry.resolve(name)
        if self.delete_on_logout:
            token = self.signer.verify(self.cookies.read(request, name), name, now=self.clock())
            if token is not None:
                subject = self.storage.subject_id(request, name, token)
                await self.storage.delete(request, name, subject)
        self._transition(name, FlowState.AUTHENTICATED, FlowState.LOGGED_OUT)
        logger.info("Profile %s logged out", name)
        return self.urls.redirect_to_url(name)

    async def refresh(self, request: Request, profile: Profile, token: AccessToken) -> SessionCheck:
        """Refresh ``token`` once, persist it and re-sign the session.

        A failed refresh is reported as ``ok=False``, never raised.
        """
        try:
            fresh = await profile.provider.refresh_token(token, now=self.clock())
        except RefreshFailed as exc:
            logger.warning("Token refresh failed for profile %s: %s", profile.name, exc.status)
            return SessionCheck(ok=False)
        await self.storage.set(request, profile.name, fresh)
        cookie_value = self.signer.sign(fresh, profile.name, now=self.clock())
        logger.info("Token refreshed for profile %s", profile.name)
        return SessionCheck(ok=True, token=fresh, cookie_value=cookie_value)

    async def verify_session(
        self,
        request: Request,
        name: str,
        cookie_value: str | None,
    ) -> SessionCheck:
        """Decide whether the session cookie authorizes ``name``.

        Raises
        ------
        ProfileNotFound
            If ``name`` is not registered.
        SigningFailed
            If a refreshed session cannot be re-signed.
        """
        profile = self.registry.resolve(name)
        token = self.signer.verify(cookie_value, name, now=self.clock())
        if token is None:
            return SessionCheck(ok=False)

        provider = profile.provider
        if provider.has_validation:
            try:
                await provider.validate(token)
            except ProviderValidationFailed as exc:
                logger.warning("Live validation failed for profile %s: %s", name, exc.status)
            else:
                return SessionCheck(ok=True, token=token)
            if not token.refresh_token:
                return SessionCheck(ok=False)
            return await self.refresh(request, profile, token)

        if not token.is_expired(self.clock()):
            return SessionCheck(ok=True, token=token)
        if not token.refresh_token:
            return SessionCheck(ok=False)
        return await self.refresh(request, profile, token)
