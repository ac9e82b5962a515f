"""Caller identity adapters."""

from .signed_token import SignedTokenIdentityProvider, parse_bearer_token

__all__ = ["SignedTokenIdentityProvider", "parse_bearer_token"]
