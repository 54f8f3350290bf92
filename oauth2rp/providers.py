"""OAuth2 provider abstraction.

A provider is a capability set: authorize and token endpoints are
required, a profile endpoint is descriptive, and a validate endpoint is
optional. Providers that publish a validate endpoint are checked live
after code exchange and on every ``authorized()`` query.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from base64 import b64encode
from typing import TYPE_CHECKING, Any

import httpx

from .exceptions import (
    ProviderConfigError,
    ProviderError,
    ProviderValidationFailed,
    RefreshFailed,
    TokenExchangeFailed,
)
from .log import redact_sensitive_data
from .types import AccessToken, Endpoint
from .urls import build_url, merge_params


if TYPE_CHECKING:
    from collections.abc import Iterable


logger = logging.getLogger("oauth2rp.providers")


class OAuthProvider:
    """An OAuth2 authorization server and this client's credentials for it.

    Parameters
    ----------
    client_id : str
        The OAuth2 client ID.
    client_secret : str
        The OAuth2 client secret.
    auth : Endpoint
        The authorization endpoint.
    token : Endpoint
        The token exchange endpoint.
    profile : Endpoint, optional
        The user profile endpoint.
    validate : Endpoint, optional
        Token validation endpoint. When set, tokens are certified after
        exchange and checked live by ``authorized()``.
    validate_scheme : str
        Authorization header scheme for the validate call (default "OAuth").
    scope_separator : str
        Separator used to join scopes (default " ").
    scope_param : str
        Name of the scope query parameter (default "scope").
    timeout : float
        Timeout in seconds for outbound calls (default 30).
    http_client : httpx.AsyncClient, optional
        Client to use instead of a lazily created one.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        auth: Endpoint,
        token: Endpoint,
        profile: Endpoint | None = None,
        validate: Endpoint | None = None,
        *,
        validate_scheme: str = "OAuth",
        scope_separator: str = " ",
        scope_param: str = "scope",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize OAuth provider."""
        if not client_id or not client_secret:
            msg = "OAuth2 provider requires a non-empty client_id and client_secret"
            raise ProviderConfigError(msg, auth_url=auth.url)
        if not auth.url or not token.url:
            msg = "OAuth2 provider requires auth and token endpoint URLs"
            raise ProviderConfigError(msg, auth_url=auth.url, token_url=token.url)
        self.client_id = client_id
        self.client_secret = client_secret
        self.auth = auth
        self.token = token
        self.profile = profile
        self.validate_endpoint = validate
        self.validate_scheme = validate_scheme
        self.scope_separator = scope_separator
        self.scope_param = scope_param
        self.timeout = timeout
        self._http_client = http_client

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(client_id={self.client_id!r}, auth={self.auth.url!r})"

    @property
    def has_validation(self) -> bool:
        """Whether tokens must be validated live against the provider."""
        return self.validate_endpoint is not None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client. Call from app shutdown lifecycle."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def _basic_credentials(self) -> str:
        raw = f"{self.client_id}:{self.client_secret}".encode()
        return b64encode(raw).decode("ascii")

    def _token_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            # some providers (e.g. reddit) only accept client credentials this way
            "Authorization": f"Basic {self._basic_credentials()}",
        }

    def build_authorize_url(self, redirect_uri: str, state: str, scope: Iterable[str] = ()) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        redirect_uri : str
            The callback URL to redirect to after authorization.
        state : str
            CSRF protection nonce.
        scope : Iterable[str]
            Scopes requested by the profile.

        Returns
        -------
        str
            The full authorization URL.
        """
        params = merge_params(
            {
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "response_type": "code",
                "response_mode": "query",
                "state": state,
            },
            self.auth.params,
        )
        return build_url(self.auth.url, params, scope, self.scope_separator, self.scope_param)

    async def _post_token(self, data: dict[str, str]) -> httpx.Response:
        client = await self._get_client()
        return await client.post(
            self.token.url,
            data=merge_params(data, self.token.params),
            headers=self._token_headers(),
            timeout=self.timeout,
        )

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        now: float | None = None,
    ) -> AccessToken:
        """Exchange an authorization code for an access token.

        Parameters
        ----------
        code : str
            The (already URL-decoded) authorization code.
        redirect_uri : str
            The redirect URI used in the authorization request.
        now : float, optional
            Timestamp recorded as ``created_at``.

        Returns
        -------
        AccessToken
            The token, with ``expires_in`` defaulted to 3600.

        Raises
        ------
        TokenExchangeFailed
            On a transport error, a non-2xx status or a non-JSON body.
        """
        try:
            resp = await self._post_token(
                {
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                    "code": code,
                }
            )
        except httpx.HTTPError as exc:
            msg = f"Token exchange request failed: {exc}"
            raise TokenExchangeFailed(msg, body=str(exc)) from exc

        if not resp.is_success or not _is_json(resp):
            raise TokenExchangeFailed(
                "Token exchange failed",
                status=resp.status_code,
                status_text=resp.reason_phrase,
                body=resp.text,
            )

        raw = _json_object(resp, TokenExchangeFailed, "Token exchange")
        logger.debug("Token response from %s: %s", self.token.url, redact_sensitive_data(raw))
        try:
            return AccessToken.from_response(raw, now=now)
        except ValueError as exc:
            raise _malformed(resp, TokenExchangeFailed, "Token exchange", exc) from exc

    async def validate(self, token: AccessToken) -> dict[str, Any]:
        """Validate ``token`` live and return the provider's certificate.

        Returns an empty dict when the provider has no validate endpoint.

        Raises
        ------
        ProviderValidationFailed
            If the provider rejects the token or cannot be reached.
        """
        if self.validate_endpoint is None:
            return {}
        url = build_url(self.validate_endpoint.url, self.validate_endpoint.params)
        try:
            client = await self._get_client()
            resp = await client.get(
                url,
                headers={
                    "Authorization": f"{self.validate_scheme} {token.access_token}",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            msg = f"Token validation request failed: {exc}"
            raise ProviderValidationFailed(msg, body=str(exc)) from exc

        if not resp.is_success or not _is_json(resp):
            raise ProviderValidationFailed(
                "Token validation failed",
                status=resp.status_code,
                status_text=resp.reason_phrase,
                body=resp.text,
            )
        certificate = _json_object(resp, ProviderValidationFailed, "Token validation")
        logger.debug("Validation response: %s", redact_sensitive_data(certificate))
        return certificate

    async def refresh_token(self, token: AccessToken, now: float | None = None) -> AccessToken:
        """Refresh an expired or rejected access token.

        The old refresh token and identity fields are kept when the
        provider does not send new ones.

        Raises
        ------
        RefreshFailed
            If there is no refresh token or the provider rejects it.
        """
        if not token.refresh_token:
            msg = "No refresh token available"
            raise RefreshFailed(msg)

        try:
            resp = await self._post_token(
                {
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": token.refresh_token,
                    "grant_type": "refresh_token",
                }
            )
        except httpx.HTTPError as exc:
            msg = f"Token refresh request failed: {exc}"
            raise RefreshFailed(msg, body=str(exc)) from exc

        if not resp.is_success or not _is_json(resp):
            raise RefreshFailed(
                "Token refresh failed",
                status=resp.status_code,
                status_text=resp.reason_phrase,
                body=resp.text,
            )

        raw = _json_object(resp, RefreshFailed, "Token refresh")
        carried: dict[str, Any] = dict(token.extra)
        carried["refresh_token"] = token.refresh_token
        if token.login is not None:
            carried["login"] = token.login
        try:
            return AccessToken.from_response({**carried, **raw}, now=now)
        except ValueError as exc:
            raise _malformed(resp, RefreshFailed, "Token refresh", exc) from exc


def _is_json(resp: httpx.Response) -> bool:
    return resp.headers.get("Content-Type", "").startswith("application/json")


def _malformed(
    resp: httpx.Response,
    error: type[ProviderError],
    action: str,
    exc: Exception,
) -> ProviderError:
    return error(
        f"{action} returned a malformed response: {exc}",
        status=resp.status_code,
        status_text=resp.reason_phrase,
        body=resp.text,
    )


def _json_object(resp: httpx.Response, error: type[ProviderError], action: str) -> dict[str, Any]:
    """Decode a JSON object body or raise ``error`` with the response details."""
    try:
        body = resp.json()
    except ValueError as exc:
        raise _malformed(resp, error, action, exc) from exc
    if not isinstance(body, dict):
        exc = ValueError(f"expected a JSON object, got {type(body).__name__}")
        raise _malformed(resp, error, action, exc)
    return body


def create_provider_from_settings(settings: Any, timeout: float = 30.0) -> OAuthProvider:
    """Create an OAuthProvider instance from ProfileSettings.

    Parameters
    ----------
    settings : ProfileSettings
        The profile configuration.
    timeout : float
        Timeout for outbound calls.

    Returns
    -------
    OAuthProvider
        A configured provider instance.

    Raises
    ------
    ProviderConfigError
        If the provider type is unknown or settings are incomplete.
    """
    provider_type = getattr(settings, "provider", "custom")
    client_id = getattr(settings, "client_id", "")
    client_secret = getattr(settings, "client_secret", "")

    if provider_type == "twitch":
        return OAuthProvider(
            client_id=client_id,
            client_secret=client_secret,
            auth=Endpoint("https://id.twitch.tv/oauth2/authorize", dict(settings.auth_params)),
            token=Endpoint("https://id.twitch.tv/oauth2/token", dict(settings.token_params)),
            profile=Endpoint("https://api.twitch.tv/helix/users"),
            validate=Endpoint("https://id.twitch.tv/oauth2/validate"),
            timeout=timeout,
        )
    if provider_type == "custom":
        if not settings.auth_url or not settings.token_url:
            msg = "Custom provider requires auth_url and token_url"
            raise ProviderConfigError(msg, provider="custom")
        return OAuthProvider(
            client_id=client_id,
            client_secret=client_secret,
            auth=Endpoint(settings.auth_url, dict(settings.auth_params)),
            token=Endpoint(settings.token_url, dict(settings.token_params)),
            profile=Endpoint(settings.profile_url) if settings.profile_url else None,
            validate=Endpoint(settings.validate_url) if settings.validate_url else None,
            scope_separator=settings.scope_separator,
            timeout=timeout,
        )

    msg = f"Unknown OAuth2 provider type: {provider_type}"
    raise ProviderConfigError(msg, provider=provider_type)
