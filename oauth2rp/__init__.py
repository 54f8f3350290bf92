"""OAuth2 authorization code client plugin for FastAPI.

Redirects users to third-party identity providers, exchanges the
returned authorization code for an access token, persists it through a
pluggable token store and issues a signed session cookie. Request
handlers query authorization state through ``OAuth2Session``.
"""

from __future__ import annotations

from .config import CookieSettings, OAuth2Settings, ProfileSettings, SessionSigningSettings
from .exceptions import (
    OAuth2Error,
    ProfileNotFound,
    ProviderConfigError,
    ProviderError,
    ProviderValidationFailed,
    RefreshFailed,
    SigningFailed,
    StateMismatch,
    TokenExchangeFailed,
)
from .flow import AuthFlowEngine, LoginResult, SessionCheck
from .plugin import OAuth2
from .providers import OAuthProvider, create_provider_from_settings
from .registry import ProfileRegistry
from .session import OAuth2Session
from .signing import SessionSigner
from .state import MemoryStateGuard, RedisStateGuard, StateGuard
from .token_store import (
    MemoryTokenStore,
    RedisTokenStore,
    TokenStore,
    create_token_store,
    get_token_store,
    reset_token_store,
)
from .types import AccessToken, Endpoint, FlowState, Profile, ProfileUrls
from .urls import UrlBuilder


__all__ = [
    "AccessToken",
    "AuthFlowEngine",
    "CookieSettings",
    "Endpoint",
    "FlowState",
    "LoginResult",
    "MemoryStateGuard",
    "MemoryTokenStore",
    "OAuth2",
    "OAuth2Error",
    "OAuth2Session",
    "OAuth2Settings",
    "OAuthProvider",
    "Profile",
    "ProfileNotFound",
    "ProfileRegistry",
    "ProfileSettings",
    "ProfileUrls",
    "ProviderConfigError",
    "ProviderError",
    "ProviderValidationFailed",
    "RedisStateGuard",
    "RedisTokenStore",
    "RefreshFailed",
    "SessionCheck",
    "SessionSigner",
    "SessionSigningSettings",
    "SigningFailed",
    "StateGuard",
    "StateMismatch",
    "TokenExchangeFailed",
    "TokenStore",
    "UrlBuilder",
    "create_provider_from_settings",
    "create_token_store",
    "get_token_store",
    "reset_token_store",
]
