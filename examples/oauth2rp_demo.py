"""Demo: Discord and Twitch sign-in for a FastAPI app with oauth2rp.

Demonstrates the documented patterns:

- ``OAuthProvider`` + ``Endpoint`` for explicit provider configuration
- ``OAuth2(...).install(app)`` to mount the login, callback and logout routes
- ``Depends(oauth2.session)`` to query authorization inside handlers
- ``token_headers`` to call a provider API with the stored token

Setup
-----
1. Register an application with each provider and set the redirect URIs to
   ``http://localhost:3000/login/discord/authorized`` and
   ``http://localhost:3000/login/twitch/authorized``.
2. Export the credentials::

       export DISCORD_CLIENT_ID="..."
       export DISCORD_CLIENT_SECRET="..."
       export TWITCH_CLIENT_ID="..."
       export TWITCH_CLIENT_SECRET="..."
       export OAUTH2RP_JWT__SECRET="$(openssl rand -hex 32)"
       export OAUTH2RP_COOKIE__SECURE=false

3. Run with any ASGI server, for example::

       uvicorn examples.oauth2rp_demo:app --port 3000
"""

from __future__ import annotations

import os

from typing import Any

import httpx

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from oauth2rp import AccessToken, Endpoint, MemoryTokenStore, OAuth2, OAuth2Session, OAuthProvider


# ───────────────────────────────────────────────────────────
# Providers
# ───────────────────────────────────────────────────────────

discord = OAuthProvider(
    client_id=os.environ.get("DISCORD_CLIENT_ID", "discord-client-id"),
    client_secret=os.environ.get("DISCORD_CLIENT_SECRET", "discord-client-secret"),
    auth=Endpoint("https://discord.com/oauth2/authorize", {"prompt": "consent"}),
    token=Endpoint("https://discord.com/api/oauth2/token"),
    profile=Endpoint("https://discord.com/api/users/@me"),
)

twitch = OAuthProvider(
    client_id=os.environ.get("TWITCH_CLIENT_ID", "twitch-client-id"),
    client_secret=os.environ.get("TWITCH_CLIENT_SECRET", "twitch-client-secret"),
    auth=Endpoint("https://id.twitch.tv/oauth2/authorize", {"force_verify": True}),
    token=Endpoint("https://id.twitch.tv/oauth2/token"),
    profile=Endpoint("https://api.twitch.tv/helix/users"),
    validate=Endpoint("https://id.twitch.tv/oauth2/validate"),
)


# ───────────────────────────────────────────────────────────
# Application
# ───────────────────────────────────────────────────────────


class SingleUserTokenStore(MemoryTokenStore):
    """Keep one token per profile; the demo has no user accounts of its own."""

    def subject_id(self, request: Request, name: str, token: AccessToken) -> str:
        return "demo"


oauth2 = OAuth2(
    {
        "discord": {"provider": discord, "scope": ["identify", "email"]},
        "twitch": {"provider": twitch, "scope": ["user:read:email"]},
    },
    storage=SingleUserTokenStore(),
    redirect_to="/user/:name/profile",
)
app = FastAPI(lifespan=oauth2.lifespan)
oauth2.install(app)


@app.get("/", response_class=HTMLResponse)
async def index(oauth: OAuth2Session = Depends(oauth2.session)) -> str:  # noqa: B008
    rows = []
    for name, urls in oauth.profiles().items():
        state = "signed in" if await oauth.authorized(name) else "signed out"
        rows.append(
            f"<li>{name}: {state} "
            f'(<a href="{urls.login}">login</a> | <a href="{urls.logout}">logout</a>)</li>'
        )
    return f"<h1>oauth2rp demo</h1><ul>{''.join(rows)}</ul>"


@app.get("/user/{name}/profile", response_model=None)
async def profile(
    name: str, oauth: OAuth2Session = Depends(oauth2.session)  # noqa: B008
) -> Any:
    if not await oauth.authorized(name):
        return RedirectResponse(oauth.profiles(name)[name].login)
    provider = oauth2.registry.resolve(name).provider
    if provider.profile is None:
        return {"profile": name, "authorized": True}
    headers = await oauth.token_headers(name, "demo")
    if name == "twitch":
        headers["Client-Id"] = provider.client_id
    async with httpx.AsyncClient(timeout=provider.timeout) as client:
        resp = await client.get(provider.profile.url, headers=headers)
    return resp.json()
