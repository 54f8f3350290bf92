"""oauth2rp exception hierarchy.

All oauth2rp-specific exceptions inherit from OAuth2Error, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class OAuth2Error(Exception):
    """Base exception for all oauth2rp errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize oauth2rp exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (profile, status, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ProviderConfigError(OAuth2Error):
    """Provider or profile configuration is invalid.

    Raised at construction time, never while serving a request.
    """


class ProfileNotFound(OAuth2Error):
    """The requested profile name is not registered.

    HTTP handlers map this to a 404 response.
    """

    def __init__(self, profile: str, **context: Any) -> None:
        """Initialize profile lookup error.

        Parameters
        ----------
        profile : str
            The unknown profile name.
        **context : Any
            Additional context.
        """
        super().__init__(f"Unknown OAuth2 profile: {profile}", profile=profile, **context)
        self.profile = profile


class StateMismatch(OAuth2Error):
    """The callback ``state`` did not validate.

    Raised before any token exchange takes place.
    """

    def __init__(self, profile: str, **context: Any) -> None:
        """Initialize state mismatch error.

        Parameters
        ----------
        profile : str
            The profile whose callback failed the state check.
        **context : Any
            Additional context.
        """
        super().__init__("State mismatch", profile=profile, **context)
        self.profile = profile


class ProviderError(OAuth2Error):
    """Base exception for failed calls to a provider endpoint.

    Carries the upstream status, status text and response body so
    the failure can be diagnosed without re-running the flow.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        status_text: str = "",
        body: str = "",
        profile: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize provider error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status : int, optional
            The upstream HTTP status code (``None`` for transport errors).
        status_text : str
            The upstream reason phrase.
        body : str
            The upstream response body.
        profile : str, optional
            The profile the call was made for.
        **context : Any
            Additional context.
        """
        super().__init__(message, status=status, profile=profile, **context)
        self.status = status
        self.status_text = status_text
        self.body = body
        self.profile = profile

    def __str__(self) -> str:
        """Format as ``status: status_text: body``."""
        return f"{self.status}: {self.status_text}: {self.body}"


class TokenExchangeFailed(ProviderError):
    """Authorization code exchange failed.

    Raised for a non-2xx or non-JSON token endpoint response.
    Never retried, since the authorization code is single-use.
    """


class ProviderValidationFailed(ProviderError):
    """The provider's token validation endpoint rejected the token."""


class RefreshFailed(ProviderError):
    """Refreshing an access token failed.

    Recovered to ``False`` by ``OAuth2Session.authorized``.
    """


class SigningFailed(OAuth2Error):
    """Signing the session cookie failed."""
