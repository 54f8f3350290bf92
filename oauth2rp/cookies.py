"""Session cookie handling.

Each profile gets its own cookie so that ``authorized("a", "b")`` can
verify both sessions independently.
"""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from .config import CookieSettings


class SessionCookies:
    """Set, clear and read per-profile session cookies.

    Parameters
    ----------
    settings : CookieSettings
        Cookie name prefix and attributes.
    """

    def __init__(self, settings: CookieSettings) -> None:
        self.settings = settings

    def name_for(self, profile: str) -> str:
        """Cookie name used for ``profile``."""
        return f"{self.settings.name}_{profile}"

    def set(self, response: Response, profile: str, value: str, max_age: int | None = None) -> None:
        """Write the signed session cookie for ``profile``."""
        response.set_cookie(
            key=self.name_for(profile),
            value=value,
            max_age=self.settings.max_age if max_age is None else max_age,
            path=self.settings.path,
            domain=self.settings.domain,
            secure=self.settings.secure,
            httponly=self.settings.http_only,
            samesite=self.settings.same_site,
        )

    def clear(self, response: Response, profile: str) -> None:
        """Invalidate the session cookie for ``profile`` on the client."""
        response.set_cookie(
            key=self.name_for(profile),
            value="",
            max_age=0,
            expires=0,
            path=self.settings.path,
            domain=self.settings.domain,
            secure=self.settings.secure,
            httponly=self.settings.http_only,
            samesite=self.settings.same_site,
        )

    def read(self, request: Request, profile: str) -> str | None:
        """Return the raw session cookie for ``profile``, if any."""
        return request.cookies.get(self.name_for(profile)) or None
