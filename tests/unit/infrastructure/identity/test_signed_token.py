"""Tests for bearer token identity."""

import pytest

from trackforge.domain.exceptions import AuthenticationError
from trackforge.infrastructure.identity import SignedTokenIdentityProvider
from trackforge.infrastructure.identity.signed_token import parse_bearer_token


@pytest.fixture
def provider() -> SignedTokenIdentityProvider:
    return SignedTokenIdentityProvider("s3cret")


class TestParseBearerToken:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer abc", "abc"),
            ("bearer  abc ", "abc"),
            ("Basic abc", None),
            ("Bearer", None),
            (None, None),
        ],
    )
    def test_parse(self, header: str | None, expected: str | None) -> None:
        assert parse_bearer_token(header) == expected


class TestSignedTokenIdentityProvider:
    def test_round_trip(self, provider: SignedTokenIdentityProvider) -> None:
        token = provider.sign("user-1")

        assert provider.identify(f"Bearer {token}") == "user-1"

    def test_user_ids_with_dots_survive(self, provider: SignedTokenIdentityProvider) -> None:
        token = provider.sign("first.last")

        assert provider.identify(f"Bearer {token}") == "first.last"

    def test_tampered_user_is_rejected(self, provider: SignedTokenIdentityProvider) -> None:
        _, _, signature = provider.sign("user-1").rpartition(".")

        with pytest.raises(AuthenticationError):
            provider.identify(f"Bearer user-2.{signature}")

    def test_other_secret_is_rejected(self, provider: SignedTokenIdentityProvider) -> None:
        token = SignedTokenIdentityProvider("other").sign("user-1")

        with pytest.raises(AuthenticationError):
            provider.identify(f"Bearer {token}")

    @pytest.mark.parametrize("header", [None, "", "Bearer nodot", "Token x.y"])
    def test_missing_or_malformed(
        self, provider: SignedTokenIdentityProvider, header: str | None
    ) -> None:
        with pytest.raises(AuthenticationError):
            provider.identify(header)
