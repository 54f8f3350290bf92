"""FastAPI routes for the OAuth2 authorization code flow.

Provides login, callback and logout endpoints for every registered
profile. Path templates use ``:name`` for the profile placeholder.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from .exceptions import (
    ProfileNotFound,
    ProviderError,
    SigningFailed,
    StateMismatch,
)


if TYPE_CHECKING:
    from .config import OAuth2Settings
    from .flow import AuthFlowEngine


logger = logging.getLogger("oauth2rp.routes")


def route_path(template: str) -> str:
    """Convert a ``:name`` template into a FastAPI path."""
    return template.replace(":name", "{name}", 1)


def _not_found(name: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "not_found", "error_description": f"Unknown profile: {name}"},
    )


def create_oauth2_router(engine: AuthFlowEngine, settings: OAuth2Settings) -> APIRouter:
    """Create a FastAPI router with the OAuth2 routes.

    Routes are registered without ``settings.prefix``; the prefix only
    affects the URLs handed to providers and applications.

    Parameters
    ----------
    engine : AuthFlowEngine
        The configured flow engine.
    settings : OAuth2Settings
        Route templates.

    Returns
    -------
    APIRouter
        Router with login, callback and logout routes.
    """
    router = APIRouter(tags=["oauth2"])
    cookies = engine.cookies

    @router.get(route_path(settings.login), name="oauth2_login")
    async def oauth2_login(request: Request, name: str) -> Response:
        """Redirect the user to the provider's authorization page."""
        try:
            authorize_url = await engine.begin_login(request, name)
        except ProfileNotFound:
            return _not_found(name)
        return RedirectResponse(url=authorize_url, status_code=302)

    @router.get(route_path(settings.authorized), name="oauth2_authorized")
    async def oauth2_authorized(
        request: Request,
        name: str,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> Response:
        """Handle the provider callback.

        Validates the state parameter, exchanges the authorization code
        for a token, stores it, sets the session cookie and redirects.
        """
        if name not in engine.registry:
            return _not_found(name)

        if error:
            return JSONResponse(
                status_code=400,
                content={
                    "error": error,
                    "error_description": error_description or "Authorization denied",
                },
            )

        try:
            if not code:
                # consume the state anyway so it cannot be replayed
                if state:
                    await engine.state_guard.check(request, name, state)
                return JSONResponse(
                    status_code=400,
                    content={
                        "error": "missing_code",
                        "error_description": "Authorization code not provided",
                    },
                )
            result = await engine.complete_login(request, name, code, state)
        except StateMismatch:
            return JSONResponse(
                status_code=400,
                content={
                    "error": "invalid_state",
                    "error_description": "Invalid or expired state parameter",
                },
            )
        except ProviderError as exc:
            logger.exception("Token exchange failed for profile %s", name)
            return JSONResponse(
                status_code=502,
                content={
                    "error": "token_exchange_failed",
                    "status": exc.status,
                    "status_text": exc.status_text,
                    "detail": exc.body,
                },
            )
        except SigningFailed:
            logger.exception("Session signing failed for profile %s", name)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "session_signing_failed",
                    "error_description": "An internal error occurred",
                },
            )

        response = RedirectResponse(url=result.redirect_url, status_code=302)
        cookies.set(response, name, result.cookie_value, max_age=result.max_age)
        return response

    @router.get(route_path(settings.logout), name="oauth2_logout")
    async def oauth2_logout(request: Request, name: str) -> Response:
        """Clear the session cookie and redirect."""
        try:
            redirect_url = await engine.logout(request, name)
        except ProfileNotFound:
            return _not_found(name)
        response = RedirectResponse(url=redirect_url, status_code=302)
        cookies.clear(response, name)
        return response

    return router
