"""Type definitions for oauth2rp.

Shared value types used across the registry, flow engine, token stores
and session capability.
"""

from __future__ import annotations

import time

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .providers import OAuthProvider


DEFAULT_EXPIRES_IN = 3600

UrlParams = dict[str, "str | int | bool"]


def _seconds(value: Any, name: str) -> float:
    """Coerce a provider-sent number (``3599`` or ``"3599"``) to float."""
    if isinstance(value, bool):
        msg = f"{name} must be a number, got {value!r}"
        raise ValueError(msg)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        msg = f"{name} must be a number, got {value!r}"
        raise ValueError(msg) from exc


@dataclass(frozen=True)
class Endpoint:
    """A provider endpoint and its extra parameters.

    Attributes
    ----------
    url : str
        The endpoint URL.
    params : dict[str, str | int | bool]
        Provider-specific query (authorize) or form (token) parameters.
        Protocol parameters always win over these on conflict.
    """

    url: str
    params: UrlParams = field(default_factory=dict)


@dataclass(frozen=True)
class Profile:
    """A named binding of one provider and a requested scope set.

    Attributes
    ----------
    name : str
        Unique profile key, bound to ``:name`` in the route templates.
    provider : OAuthProvider
        The provider this profile authenticates against.
    scope : tuple[str, ...]
        Requested scopes, in order.
    """

    name: str
    provider: OAuthProvider
    scope: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProfileUrls:
    """Login, callback and logout URLs of a profile."""

    login: str
    callback: str
    logout: str

    def as_dict(self) -> dict[str, str]:
        """Return the URLs as a plain dict."""
        return {"login": self.login, "callback": self.callback, "logout": self.logout}


@dataclass(frozen=True)
class AccessToken:
    """OAuth2 access token as returned by a provider token endpoint.

    Numbers may be fractional (``expires_in=1.42`` is valid).

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    token_type : str
        Token type, typically "bearer".
    scope : str
        Space-separated list of granted scopes.
    expires_in : float or None
        Token lifetime in seconds from ``created_at``.
    created_at : float
        Unix timestamp (fractional seconds) when the token was received.
    refresh_token : str or None
        Optional refresh token for obtaining new access tokens.
    login : str or None
        Provider login of the token subject, when the provider reports it.
    extra : dict[str, Any]
        Every other field the provider returned.
    """

    access_token: str
    token_type: str = "bearer"  # noqa: S105
    scope: str = ""
    expires_in: float | None = DEFAULT_EXPIRES_IN
    created_at: float = field(default_factory=time.time)
    refresh_token: str | None = None
    login: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AccessToken:
        """Build a token from a flat mapping, keeping unknown keys in ``extra``."""
        known = {f.name for f in fields(cls)} - {"extra"}
        values = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known and k != "extra"}
        extra.update(data.get("extra") or {})
        scope = values.get("scope", "")
        if isinstance(scope, (list, tuple)):
            values["scope"] = " ".join(str(s) for s in scope)
        if "access_token" not in values:
            values["access_token"] = ""
        if values.get("expires_in") is not None:
            values["expires_in"] = _seconds(values["expires_in"], "expires_in")
        if "created_at" in values:
            values["created_at"] = _seconds(values["created_at"], "created_at")
        return cls(**values, extra=extra)

    @classmethod
    def from_response(cls, raw: Mapping[str, Any], now: float | None = None) -> AccessToken:
        """Build a token from a token endpoint JSON response.

        ``expires_in`` is not sent by some providers; a default of one
        hour is applied (RFC 6749 section 4.2.2 makes it optional).

        Raises
        ------
        ValueError
            If ``raw`` is not a JSON object or a numeric field is not a number.
        """
        if not isinstance(raw, Mapping):
            msg = f"Token response must be a JSON object, got {type(raw).__name__}"
            raise ValueError(msg)
        data = dict(raw)
        data.pop("extra", None)
        if data.get("expires_in") is None:
            data["expires_in"] = DEFAULT_EXPIRES_IN
        data["created_at"] = time.time() if now is None else now
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Flatten the token into a JSON-safe dict."""
        data = dict(self.extra)
        data.update(
            {
                "access_token": self.access_token,
                "token_type": self.token_type,
                "scope": self.scope,
                "expires_in": self.expires_in,
                "created_at": self.created_at,
            }
        )
        if self.refresh_token is not None:
            data["refresh_token"] = self.refresh_token
        if self.login is not None:
            data["login"] = self.login
        return data

    def merged(self, updates: Mapping[str, Any]) -> AccessToken:
        """Return a new token with ``updates`` shadowing the current fields."""
        return AccessToken.from_dict({**self.to_dict(), **updates})

    @property
    def expires_at(self) -> float | None:
        """Get the expiry timestamp, or None if no expiry."""
        if self.expires_in is None:
            return None
        return self.created_at + self.expires_in

    def is_expired(self, now: float | None = None) -> bool:
        """Check if the access token has expired."""
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return (time.time() if now is None else now) >= expires_at


class FlowState(str, Enum):
    """State of a profile's authorization code flow."""

    UNAUTHENTICATED = "unauthenticated"
    LOGIN_REDIRECTED = "login_redirected"
    AWAITING_CALLBACK = "awaiting_callback"
    TOKEN_EXCHANGE_PENDING = "token_exchange_pending"
    AUTHENTICATED = "authenticated"
    LOGGED_OUT = "logged_out"
