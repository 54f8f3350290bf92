"""Per-request OAuth2 session capability.

Application handlers receive an ``OAuth2Session`` through the
``OAuth2.session`` dependency and use it to ask whether the caller is
authorized, to list profile URLs and to build provider API headers::

    @app.get("/me")
    async def me(oauth: OAuth2Session = Depends(oauth2.session)):
        if not await oauth.authorized("github"):
            return RedirectResponse(oauth.profiles("github")["github"].login)
        ...
"""

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from .flow import cookie_max_age


if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from .flow import AuthFlowEngine
    from .types import ProfileUrls


logger = logging.getLogger("oauth2rp.session")


class OAuth2Session:
    """Authorization queries bound to one request.

    Parameters
    ----------
    request : Request
        The current request (its cookies carry the sessions).
    response : Response
        The dependency response; refreshed sessions are re-set on it.
    engine : AuthFlowEngine
        The shared flow engine.
    """

    def __init__(self, request: Request, response: Response, engine: AuthFlowEngine) -> None:
        self.request = request
        self.response = response
        self.engine = engine

    async def authorized(self, *profiles: str) -> bool:
        """Check that every given profile has a valid session.

        Stops at the first profile that is not authorized. Expired or
        rejected tokens are refreshed once when a refresh token exists.

        Parameters
        ----------
        *profiles : str
            Profile names; all must be authorized.

        Returns
        -------
        bool
            True if all profiles are authorized.

        Raises
        ------
        ProfileNotFound
            If a profile name is not registered.
        """
        cookies = self.engine.cookies
        for profile in profiles:
            check = await self.engine.verify_session(
                self.request, profile, cookies.read(self.request, profile)
            )
            if not check.ok:
                logger.debug("Profile %s is not authorized", profile)
                return False
            if check.cookie_value is not None and check.token is not None:
                cookies.set(
                    self.response,
                    profile,
                    check.cookie_value,
                    max_age=cookie_max_age(check.token, cookies.settings.max_age),
                )
        return True

    def profiles(self, *names: str) -> dict[str, ProfileUrls]:
        """Return login, callback and logout URLs per profile.

        Provide no argument to get the URLs of all registered profiles.

        Raises
        ------
        ProfileNotFound
            If a profile name is not registered.
        """
        registry = self.engine.registry
        selected = names or tuple(registry.names())
        result: dict[str, ProfileUrls] = {}
        for name in selected:
            registry.resolve(name)
            result[name] = self.engine.urls.profile_urls(name)
        return result

    async def token_headers(self, profile: str, subject_id: str) -> dict[str, str]:
        """Provide the authorization header with the stored bearer token.

        The token is not checked for validity and the header may carry
        an empty token; call ``authorized`` first.
        """
        token = await self.engine.storage.get(self.request, profile, subject_id)
        access_token = token.access_token if token is not None else ""
        return {"Authorization": f"Bearer {access_token}"}
