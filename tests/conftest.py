"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
import os

from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from fastapi import Depends, FastAPI, Query
from fastapi.testclient import TestClient

from oauth2rp.plugin import OAuth2
from oauth2rp.providers import OAuthProvider
from oauth2rp.session import OAuth2Session
from oauth2rp.token_store import MemoryTokenStore, reset_token_store
from oauth2rp.types import Endpoint
from tests.constants import (
    DISCORD_AUTH,
    DISCORD_PROFILE,
    DISCORD_TOKEN,
    NOW,
    SIGNING_SECRET,
    TWITCH_AUTH,
    TWITCH_TOKEN,
    TWITCH_VALIDATE,
)


if TYPE_CHECKING:
    from collections.abc import Callable


def _bare_url(request: httpx.Request) -> str:
    return f"{request.url.scheme}://{request.url.host}{request.url.path}"


class FakeIdP:
    """Scripted identity provider behind an ``httpx.MockTransport``.

    Routes are keyed by ``(method, url-without-query)``; every request is
    recorded so tests can assert on call counts and payloads.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], tuple[int, str, str]] = {}
        self.requests: list[httpx.Request] = []

    def on(
        self,
        method: str,
        url: str,
        status: int = 200,
        payload: Any = None,
        text: str | None = None,
        content_type: str = "application/json",
    ) -> None:
        """Register the response for ``method url``."""
        if text is None:
            text = json.dumps(payload if payload is not None else {})
        self.routes[(method, url)] = (status, text, content_type)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, _bare_url(request)))
        if route is None:
            return httpx.Response(404, text="not found", headers={"Content-Type": "text/plain"})
        status, text, content_type = route
        return httpx.Response(status, text=text, headers={"Content-Type": content_type})

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        """Requests recorded for ``method url``."""
        return [r for r in self.requests if r.method == method and _bare_url(r) == url]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture()
def idp() -> FakeIdP:
    """A fresh scripted identity provider."""
    return FakeIdP()


@pytest.fixture()
def make_discord(idp: FakeIdP) -> Callable[..., OAuthProvider]:
    """Factory for a provider without live validation."""

    def _make(**kwargs: Any) -> OAuthProvider:
        kwargs.setdefault("http_client", idp.client())
        return OAuthProvider(
            client_id="discord-id",
            client_secret="discord-secret",
            auth=Endpoint(DISCORD_AUTH, kwargs.pop("auth_params", {"prompt": "consent"})),
            token=Endpoint(DISCORD_TOKEN, kwargs.pop("token_params", {})),
            profile=Endpoint(DISCORD_PROFILE),
            **kwargs,
        )

    return _make


@pytest.fixture()
def make_twitch(idp: FakeIdP) -> Callable[..., OAuthProvider]:
    """Factory for a provider with a live validation endpoint."""

    def _make(**kwargs: Any) -> OAuthProvider:
        kwargs.setdefault("http_client", idp.client())
        return OAuthProvider(
            client_id="twitch-id",
            client_secret="twitch-secret",
            auth=Endpoint(TWITCH_AUTH),
            token=Endpoint(TWITCH_TOKEN),
            validate=Endpoint(TWITCH_VALIDATE),
            **kwargs,
        )

    return _make


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host OAUTH2RP_* variables out of settings and reset singletons."""
    for key in list(os.environ):
        if key.startswith("OAUTH2RP_"):
            monkeypatch.delenv(key, raising=False)
    reset_token_store()


class Clock:
    """Manually advanced time source."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def clock() -> Clock:
    """A clock frozen at ``NOW`` until a test advances it."""
    return Clock()


@pytest.fixture()
def make_plugin(
    make_discord: Callable[..., OAuthProvider],
    make_twitch: Callable[..., OAuthProvider],
    clock: Clock,
) -> Callable[..., OAuth2]:
    """Factory for a plugin with discord and twitch profiles."""

    def _make(**overrides: Any) -> OAuth2:
        overrides.setdefault("jwt", {"secret": SIGNING_SECRET})
        return OAuth2(
            {
                "discord": {"provider": make_discord(), "scope": ["identify", "email"]},
                "twitch": {"provider": make_twitch(), "scope": ["user:read:email"]},
            },
            storage=MemoryTokenStore(),
            clock=clock,
            **overrides,
        )

    return _make


@pytest.fixture()
def plugin(make_plugin: Callable[..., OAuth2]) -> OAuth2:
    """Plugin with default settings."""
    return make_plugin()


@pytest.fixture()
def app(plugin: OAuth2) -> FastAPI:
    """Application with the OAuth2 routes and a few protected endpoints."""
    application = FastAPI()
    plugin.install(application)

    @application.get("/me")
    async def me(
        oauth: OAuth2Session = Depends(plugin.session),  # noqa: B008
        profile: list[str] = Query(default=["discord"]),  # noqa: B008
    ) -> dict[str, Any]:
        return {"authorized": await oauth.authorized(*profile)}

    @application.get("/urls")
    async def urls(oauth: OAuth2Session = Depends(plugin.session)) -> dict[str, Any]:  # noqa: B008
        return {name: u.as_dict() for name, u in oauth.profiles().items()}

    @application.get("/headers/{name}/{subject}")
    async def headers(
        name: str, subject: str, oauth: OAuth2Session = Depends(plugin.session)  # noqa: B008
    ) -> dict[str, str]:
        return await oauth.token_headers(name, subject)

    return application


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    """Test client that does not follow redirects."""
    return TestClient(app, follow_redirects=False)


def session_cookie(response: httpx.Response) -> tuple[str, str]:
    """Name and value of the first cookie set by ``response``."""
    pair = response.headers["set-cookie"].split(";", 1)[0]
    name, _, value = pair.partition("=")
    return name, value.strip('"')


def login(client: TestClient, idp: FakeIdP, name: str = "discord", **token: Any) -> httpx.Response:
    """Run the login and callback routes and return the callback response."""
    token_url = TWITCH_TOKEN if name == "twitch" else DISCORD_TOKEN
    idp.on("POST", token_url, payload={"access_token": "X", **token})
    start = client.get(f"/login/{name}")
    state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
    return client.get(f"/login/{name}/authorized", params={"code": "C", "state": state})
