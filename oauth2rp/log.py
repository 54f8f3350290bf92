"""Logging utilities for oauth2rp.

Modules log through ``logging.getLogger("oauth2rp.<area>")``. The parent
``oauth2rp`` logger gets one stderr handler, and provider payloads pass
through ``redact_sensitive_data`` before they reach a log line.
"""

from __future__ import annotations

import logging
import sys

from collections.abc import Mapping
from typing import Any


LOGGER_NAME = "oauth2rp"

REDACTED = "[REDACTED]"

# Substrings that mark a key as carrying a credential
_SENSITIVE_KEYS = frozenset(
    {
        "token",
        "secret",
        "password",
        "code",
        "authorization",
        "credential",
        "assertion",
    }
)

# Token metadata that is safe to log despite matching the above
_PUBLIC_KEYS = frozenset({"token_type", "expires_in", "scope"})


def get_logger(area: str | None = None) -> logging.Logger:
    """Return the ``oauth2rp`` logger, or its ``area`` child.

    The parent logger is given a stderr handler and a ``WARNING`` level
    the first time it is requested without handlers.
    """
    parent = logging.getLogger(LOGGER_NAME)
    if not parent.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(name)s - %(levelname)s - %(message)s"))
        parent.addHandler(handler)
        parent.setLevel(logging.WARNING)
    return parent.getChild(area) if area else parent


def set_level(level: int | str) -> None:
    """Set the level of the ``oauth2rp`` logger.

    Parameters
    ----------
    level : int or str
        A level number or name such as ``"DEBUG"`` (case-insensitive).

    Raises
    ------
    ValueError
        If ``level`` is not a known level name.
    """
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        if not isinstance(value, int):
            msg = f"Unknown log level: {level}"
            raise ValueError(msg)
        level = value
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Log flow state transitions and redacted provider payloads."""
    set_level(logging.DEBUG)


def _is_sensitive(key: Any) -> bool:
    name = str(key).lower()
    if name in _PUBLIC_KEYS:
        return False
    return any(part in name for part in _SENSITIVE_KEYS)


def redact_sensitive_data(data: Any, max_depth: int = 5) -> Any:
    """Return a copy of ``data`` with credential values replaced.

    Mappings (including ``httpx.Headers``) are walked recursively; any
    key containing a sensitive word, such as ``access_token``,
    ``client_secret`` or ``Authorization``, has its value replaced with
    ``"[REDACTED]"``. ``token_type``, ``expires_in`` and ``scope`` stay
    readable.

    Parameters
    ----------
    data : Any
        A provider payload, header mapping, list or scalar.
    max_depth : int, optional
        Nesting limit; deeper values become ``"[MAX_DEPTH]"``.

    Returns
    -------
    Any
        The redacted copy. The input is never modified.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, Mapping):
        return {
            k: REDACTED if _is_sensitive(k) else redact_sensitive_data(v, max_depth - 1)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    return data
