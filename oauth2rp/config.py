"""Configuration system for oauth2rp using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. Environment variables
3. pyproject.toml [tool.oauth2rp] section (project-level)
4. ./oauth2rp.toml (project-level, explicit)
5. The file named by OAUTH2RP_CONFIG_FILE
6. Keyword arguments (highest priority)

Environment variables use the OAUTH2RP_ prefix with nested delimiter __.
Example: OAUTH2RP_HOST=example.com, OAUTH2RP_JWT__SECRET=...

Settings are frozen once built; every component receives the same
resolved instance.
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


logger = logging.getLogger("oauth2rp.config")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    explicit = Path("oauth2rp.toml")
    if explicit.exists():
        files.append(explicit)

    env_config = os.environ.get("OAUTH2RP_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        # Handle pyproject.toml [tool.oauth2rp] section
        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("oauth2rp", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


_DURATION = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: int | str) -> int:
    """Parse ``3600``, ``"3600"``, ``"45s"``, ``"30m"``, ``"1h"`` or ``"2d"`` into seconds."""
    if isinstance(value, int):
        return value
    match = _DURATION.match(str(value))
    if not match:
        msg = f"Invalid duration: {value!r}"
        raise ValueError(msg)
    return int(match.group(1)) * _DURATION_UNITS[match.group(2)]


def _split_list(v: Any) -> Any:
    if isinstance(v, str):
        return [s for s in re.split(r"[\s,]+", v) if s]
    return v


class SessionSigningSettings(BaseSettings):
    """Session JWT signing settings.

    Environment prefix: OAUTH2RP_JWT__
    Example: OAUTH2RP_JWT__SECRET=change-me
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTH2RP_JWT__",
        extra="ignore",
        frozen=True,
    )

    secret: str = Field(
        default="",
        validate_default=True,
        description="HMAC secret for signing sessions (random per process when empty)",
    )
    algorithm: Literal["HS256", "HS384", "HS512"] = Field(
        default="HS256",
        description="JWT signing algorithm",
    )
    exp: int = Field(
        default=3600,
        gt=0,
        description="Session wrapper lifetime; seconds or a duration like '1h'",
    )

    @field_validator("secret")
    @classmethod
    def _default_secret(cls, v: str) -> str:
        if not v:
            logger.warning(
                "No session signing secret configured; generated a random one. "
                "Sessions will not survive a restart or span workers."
            )
            return secrets.token_hex(32)
        return v

    @field_validator("exp", mode="before")
    @classmethod
    def _parse_exp(cls, v: Any) -> int:
        return parse_duration(v)


class CookieSettings(BaseSettings):
    """Session cookie settings.

    Environment prefix: OAUTH2RP_COOKIE__
    Example: OAUTH2RP_COOKIE__SECURE=false
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTH2RP_COOKIE__",
        extra="ignore",
        frozen=True,
    )

    name: str = Field(default="authorize", description="Cookie name prefix")
    http_only: bool = True
    secure: bool = True
    max_age: int = Field(default=3600, ge=0, description="Fallback cookie lifetime in seconds")
    same_site: Literal["lax", "strict", "none"] = "lax"
    path: str = "/"
    domain: str | None = None


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: OAUTH2RP_LOG__
    Example: OAUTH2RP_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTH2RP_LOG__",
        extra="ignore",
        frozen=True,
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"


class ProfileSettings(BaseModel):
    """Declarative profile configuration.

    TOML section: [tool.oauth2rp.profiles.<name>]
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    provider: Literal["custom", "twitch"] = Field(
        default="custom",
        description="Provider type: twitch or custom",
    )
    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    auth_url: str = ""
    token_url: str = ""
    profile_url: str = ""
    validate_url: str = Field(
        default="",
        description="Token validation endpoint; enables live checks when set",
    )
    scope: list[str] = Field(default_factory=list)
    scope_separator: str = " "
    auth_params: dict[str, str | int | bool] = Field(default_factory=dict)
    token_params: dict[str, str | int | bool] = Field(default_factory=dict)

    @field_validator("scope", mode="before")
    @classmethod
    def _parse_scope(cls, v: Any) -> Any:
        return _split_list(v)


class OAuth2Settings(BaseSettings):
    """oauth2rp plugin configuration.

    Environment prefix: OAUTH2RP_
    Example: OAUTH2RP_HOST=example.com
    Example: OAUTH2RP_REDIRECT_TO=/dashboard

    TOML section: [tool.oauth2rp]
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTH2RP_",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    login: str = Field(default="/login/:name", description="Login path template")
    authorized: str = Field(
        default="/login/:name/authorized",
        description="Callback path template",
    )
    logout: str = Field(default="/logout/:name", description="Logout path template")
    host: str = Field(
        default="localhost:3000",
        description="External host (domain[:port]); localhost uses http, others https",
    )
    prefix: str = Field(default="", description="Application path prefix")
    redirect_to: str = Field(
        default="/user/:name/profile",
        description="Destination after login and logout",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for calls to providers",
    )
    delete_on_logout: bool = Field(
        default=False,
        description="Also delete the stored token on logout",
    )
    token_store_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Token storage backend used when no store is passed",
    )
    redis_url: str = "redis://localhost:6379/0"

    jwt: SessionSigningSettings = Field(default_factory=SessionSigningSettings)
    cookie: CookieSettings = Field(default_factory=CookieSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    profiles: dict[str, ProfileSettings] = Field(default_factory=dict)

    def __init__(self, **data: Any) -> None:
        # Explicit keyword arguments take precedence over TOML files
        merged = _deep_merge(_load_toml_config(), data)
        super().__init__(**merged)

    @field_validator("login", "authorized", "logout")
    @classmethod
    def _validate_template(cls, v: str) -> str:
        if not v.startswith("/") or ":name" not in v:
            msg = f"Path template must start with '/' and contain ':name', got {v!r}"
            raise ValueError(msg)
        return v

    @field_validator("host")
    @classmethod
    def _validate_host(cls, v: str) -> str:
        if "://" in v or "/" in v:
            msg = f"host must be domain[:port] without scheme or path, got {v!r}"
            raise ValueError(msg)
        return v

    @field_validator("prefix")
    @classmethod
    def _normalize_prefix(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if v and not v.startswith("/"):
            v = f"/{v}"
        return v


@lru_cache(maxsize=1)
def get_settings() -> OAuth2Settings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return OAuth2Settings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()
