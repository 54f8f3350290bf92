"""URL construction for the OAuth2 endpoints.

Builds the plugin's own login, callback and logout URLs from path
templates, and the provider authorization URL with merged query
parameters. Everything here is pure and deterministic so that the
``redirect_uri`` sent to a provider always matches the one registered.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from .types import ProfileUrls


if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


# Parameters owned by the protocol; provider extras never override these.
RESERVED_PARAMS = frozenset(
    {
        "client_id",
        "redirect_uri",
        "response_type",
        "response_mode",
        "grant_type",
        "code",
        "state",
    }
)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def merge_params(
    protocol: Mapping[str, Any],
    extras: Mapping[str, Any] | None = None,
) -> dict[str, str]:
    """Merge provider extras under protocol parameters.

    Extras named in ``RESERVED_PARAMS`` are dropped even when the
    protocol mapping does not carry them for this request.

    Parameters
    ----------
    protocol : Mapping[str, Any]
        Protocol-mandated parameters; these win on conflict.
    extras : Mapping[str, Any], optional
        Provider-supplied extra parameters.

    Returns
    -------
    dict[str, str]
        The merged parameters, extras first, as strings.
    """
    merged = {
        k: _stringify(v)
        for k, v in (extras or {}).items()
        if k not in protocol and k not in RESERVED_PARAMS
    }
    merged.update({k: _stringify(v) for k, v in protocol.items()})
    return merged


def build_url(
    base: str,
    params: Mapping[str, Any],
    scope: Iterable[str] = (),
    separator: str = " ",
    scope_param: str = "scope",
) -> str:
    """Append query parameters and a joined scope to ``base``.

    Query parameters already present on ``base`` are kept unless
    ``params`` sets the same key.

    Parameters
    ----------
    base : str
        The endpoint URL, optionally with a query string.
    params : Mapping[str, Any]
        Query parameters to add.
    scope : Iterable[str]
        Scopes to join with ``separator``; omitted when empty.
    separator : str
        Scope separator (``" "`` per RFC 6749, ``","`` for some providers).
    scope_param : str
        Name of the scope query parameter.

    Returns
    -------
    str
        The full URL.
    """
    parts = urlsplit(base)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update({k: _stringify(v) for k, v in params.items()})
    scopes = list(scope)
    if scopes:
        query[scope_param] = separator.join(scopes)
    encoded = urlencode(query, quote_via=quote)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, encoded, parts.fragment))


class UrlBuilder:
    """Build the plugin's own URLs for a profile.

    Parameters
    ----------
    host : str
        External host (domain and optional port). The scheme is ``http``
        for hosts starting with ``localhost`` and ``https`` otherwise.
    prefix : str
        Application path prefix ("" for none).
    login : str
        Login path template containing ``:name``.
    authorized : str
        Callback path template containing ``:name``.
    logout : str
        Logout path template containing ``:name``.
    redirect_to : str
        Post-login/logout destination template.
    """

    def __init__(
        self,
        host: str = "localhost:3000",
        prefix: str = "",
        login: str = "/login/:name",
        authorized: str = "/login/:name/authorized",
        logout: str = "/logout/:name",
        redirect_to: str = "/user/:name/profile",
    ) -> None:
        self.host = host
        self.prefix = prefix or ""
        self.login = login
        self.authorized = authorized
        self.logout = logout
        self.redirect_to = redirect_to
        self.protocol = "http" if host.startswith("localhost") else "https"

    def build(self, template: str, name: str, external: bool = True) -> str:
        """Substitute ``name`` into ``template`` and qualify it.

        Parameters
        ----------
        template : str
            Path template containing a ``:name`` placeholder.
        name : str
            The profile name.
        external : bool
            Return ``scheme://host/prefix/path`` when True, else
            ``prefix/path``.

        Returns
        -------
        str
            The built URL.
        """
        uri = template.replace(":name", name, 1)
        if external:
            return f"{self.protocol}://{self.host}{self.prefix}{uri}"
        return f"{self.prefix}{uri}"

    def login_url(self, name: str, external: bool = True) -> str:
        """URL of the login endpoint."""
        return self.build(self.login, name, external)

    def logout_url(self, name: str, external: bool = True) -> str:
        """URL of the logout endpoint."""
        return self.build(self.logout, name, external)

    def callback_url(self, name: str) -> str:
        """Absolute callback URL, sent to providers as ``redirect_uri``."""
        return self.build(self.authorized, name, True)

    def redirect_to_url(self, name: str) -> str:
        """Absolute post-login/logout destination."""
        return self.build(self.redirect_to, name, True)

    def profile_urls(self, name: str) -> ProfileUrls:
        """Login, callback and logout URLs of ``name``."""
        return ProfileUrls(
            login=self.login_url(name),
            callback=self.callback_url(name),
            logout=self.logout_url(name),
        )
