"""HMAC-signed bearer tokens as caller identity.

Token format: ``<user_id>.<hex hmac-sha256 of user_id>``. Issuing tokens is
someone else's job; we only verify them.
"""

import hashlib
import hmac

from trackforge.domain.exceptions import AuthenticationError
from trackforge.domain.ports import IIdentityProvider


def parse_bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer ...`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class SignedTokenIdentityProvider(IIdentityProvider):
    """Verifies ``user_id.signature`` bearer tokens with a shared secret."""

    def __init__(self, secret: str) -> None:
        self._secret = secret.encode()

    def sign(self, user_id: str) -> str:
        """Issue a token for a user (tests and admin tooling)."""
        signature = hmac.new(self._secret, user_id.encode(), hashlib.sha256).hexdigest()
        return f"{user_id}.{signature}"

    def identify(self, authorization: str | None) -> str:
        token = parse_bearer_token(authorization)
        if token is None:
            raise AuthenticationError("Missing bearer token")

        user_id, _, signature = token.rpartition(".")
        if not user_id or not signature:
            raise AuthenticationError("Malformed bearer token")

        expected = hmac.new(self._secret, user_id.encode(), hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected, signature):
            raise AuthenticationError("Invalid bearer token")
        return user_id
