"""
Tests for ClerkTokenVerifier.

Tokens are signed with a throwaway RSA key; verification uses the PEM path
so no network is involved.
"""

import time
from unittest.mock import MagicMock

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from app.exceptions import AuthenticationError
from app.services.clerk_auth import ClerkTokenVerifier


@pytest.fixture(scope="module")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def public_pem(rsa_key) -> str:
    return (
        rsa_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )


@pytest.fixture
def make_token(rsa_key):
    def _make(**overrides) -> str:
        now = int(time.time())
        claims = {
            "sub": "user_2abc",
            "sid": "sess_1",
            "azp": "https://canvas.example.com",
            "iat": now,
            "nbf": now,
            "exp": now + 60,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, rsa_key, algorithm="RS256")

    return _make


class TestConstruction:
    """Tests for verifier construction."""

    def test_requires_key_or_jwks(self):
        with pytest.raises(ValueError):
            ClerkTokenVerifier(jwt_key="", jwks_url="")

    def test_jwks_client_built_without_pem(self):
        verifier = ClerkTokenVerifier(jwks_url="https://api.clerk.com/v1/jwks", secret_key="sk_test")

        assert verifier._jwks_client is not None


class TestVerify:
    """Tests for ClerkTokenVerifier.verify."""

    async def test_valid_token(self, public_pem, make_token):
        verifier = ClerkTokenVerifier(jwt_key=public_pem)

        token = await verifier.verify(make_token())

        assert token.subject == "user_2abc"
        assert token.session_id == "sess_1"
        assert token.expires_at is not None

    async def test_expired_token(self, public_pem, make_token):
        verifier = ClerkTokenVerifier(jwt_key=public_pem)
        now = int(time.time())

        with pytest.raises(AuthenticationError, match="expired"):
            await verifier.verify(make_token(iat=now - 120, nbf=now - 120, exp=now - 60))

    async def test_leeway_accepts_slightly_expired(self, public_pem, make_token):
        verifier = ClerkTokenVerifier(jwt_key=public_pem, leeway=5)

        token = await verifier.verify(make_token(exp=int(time.time()) - 2))

        assert token.subject == "user_2abc"

    async def test_wrong_key(self, make_token):
        other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        other_pem = (
            other.public_key()
            .public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
            .decode()
        )
        verifier = ClerkTokenVerifier(jwt_key=other_pem)

        with pytest.raises(AuthenticationError):
            await verifier.verify(make_token())

    async def test_garbage_token(self, public_pem):
        verifier = ClerkTokenVerifier(jwt_key=public_pem)

        with pytest.raises(AuthenticationError):
            await verifier.verify("not.a.jwt")

    async def test_empty_token(self, public_pem):
        with pytest.raises(AuthenticationError, match="Missing"):
            await ClerkTokenVerifier(jwt_key=public_pem).verify("")

    async def test_missing_subject(self, public_pem, make_token):
        verifier = ClerkTokenVerifier(jwt_key=public_pem)

        with pytest.raises(AuthenticationError):
            await verifier.verify(make_token(sub=None))

    async def test_hs256_rejected(self, public_pem):
        """Only RS256 is accepted."""
        token = jwt.encode({"sub": "user_1", "exp": int(time.time()) + 60}, "x" * 32, algorithm="HS256")

        with pytest.raises(AuthenticationError):
            await ClerkTokenVerifier(jwt_key=public_pem).verify(token)

    async def test_authorized_party_enforced(self, public_pem, make_token):
        verifier = ClerkTokenVerifier(
            jwt_key=public_pem, authorized_parties=["https://canvas.example.com"]
        )

        assert (await verifier.verify(make_token())).subject == "user_2abc"
        with pytest.raises(AuthenticationError, match="Unauthorized party"):
            await verifier.verify(make_token(azp="https://evil.example.com"))

    async def test_jwks_lookup(self, rsa_key, make_token):
        """Signing key is resolved through the JWKS client."""
        verifier = ClerkTokenVerifier(jwks_url="https://api.clerk.com/v1/jwks")
        verifier._jwks_client = MagicMock()
        verifier._jwks_client.get_signing_key_from_jwt.return_value = MagicMock(key=rsa_key.public_key())

        token = await verifier.verify(make_token())

        assert token.subject == "user_2abc"

    async def test_jwks_failure(self, make_token):
        verifier = ClerkTokenVerifier(jwks_url="https://api.clerk.com/v1/jwks")
        verifier._jwks_client = MagicMock()
        verifier._jwks_client.get_signing_key_from_jwt.side_effect = jwt.PyJWKClientError("unreachable")

        with pytest.raises(AuthenticationError, match="Signing key lookup failed"):
            await verifier.verify(make_token())
