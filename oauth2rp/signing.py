"""Session signing.

The session cookie carries a JWT whose claims are a snapshot of the
access token. The cookie is opaque to the client and is only trusted
after signature and expiry verification.
"""

from __future__ import annotations

import logging
import time

from typing import Any

from authlib.jose import JsonWebToken  # type: ignore[import-untyped]
from authlib.jose.errors import JoseError  # type: ignore[import-untyped]

from .exceptions import SigningFailed
from .types import AccessToken


logger = logging.getLogger("oauth2rp.signing")

# Claims owned by the session wrapper rather than the token snapshot.
_WRAPPER_CLAIMS = ("profile", "iat", "exp")


class SessionSigner:
    """Sign and verify session JWTs.

    Parameters
    ----------
    secret : str
        HMAC signing secret.
    algorithm : str
        One of HS256, HS384, HS512 (default HS256).
    exp : int
        Lifetime of the signed wrapper in seconds (default 3600).
    """

    def __init__(self, secret: str, algorithm: str = "HS256", exp: int = 3600) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._exp = exp
        self._jwt = JsonWebToken([algorithm])

    def sign(self, token: AccessToken, profile: str, now: float | None = None) -> str:
        """Sign ``token`` for ``profile`` into a compact JWT.

        Raises
        ------
        SigningFailed
            If the payload cannot be signed. No partial value is returned.
        """
        issued = int(time.time() if now is None else now)
        claims: dict[str, Any] = token.to_dict()
        claims.update({"profile": profile, "iat": issued, "exp": issued + self._exp})
        try:
            value = self._jwt.encode({"alg": self._algorithm}, claims, self._secret)
        except (JoseError, TypeError, ValueError) as exc:
            msg = "Failed to sign session"
            raise SigningFailed(msg, profile=profile) from exc
        return value.decode("ascii")

    def verify(
        self,
        value: str | None,
        profile: str,
        now: float | None = None,
    ) -> AccessToken | None:
        """Verify a session JWT and return its token snapshot.

        Returns None for an absent value, a bad signature, an expired
        wrapper, a profile mismatch or a malformed payload.
        """
        if not value:
            return None
        try:
            claims = self._jwt.decode(value, self._secret)
            claims.validate(now=int(time.time() if now is None else now))
        except (JoseError, ValueError) as exc:
            logger.debug("Session for profile %s rejected: %s", profile, exc)
            return None

        data = dict(claims)
        if data.get("profile") != profile or not data.get("access_token"):
            return None
        for claim in _WRAPPER_CLAIMS:
            data.pop(claim, None)
        try:
            return AccessToken.from_dict(data)
        except ValueError as exc:
            logger.debug("Session for profile %s has a malformed payload: %s", profile, exc)
            return None
