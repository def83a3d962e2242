"""
Clerk session token verification.

Session tokens are RS256 JWTs. With CLERK_JWT_KEY (PEM public key) set,
verification is networkless; otherwise the signing key is fetched from the
Clerk JWKS endpoint and cached by PyJWKClient.
"""

import asyncio
from typing import Any, Protocol

import jwt
from structlog import get_logger

from app.exceptions import AuthenticationError
from app.models.domain import VerifiedToken

logger = get_logger(__name__)

ALGORITHMS = ["RS256"]


class TokenVerifier(Protocol):
    """Verifies a bearer credential and returns its subject."""

    async def verify(self, token: str) -> VerifiedToken:
        """
        Raises:
            AuthenticationError: If the token is invalid, expired or untrusted
        """
        ...


class ClerkTokenVerifier:
    """Verifies Clerk session JWTs with PyJWT."""

    def __init__(
        self,
        jwt_key: str = "",
        jwks_url: str = "",
        secret_key: str = "",
        authorized_parties: list[str] | None = None,
        leeway: int = 5,
    ) -> None:
        self.jwt_key = jwt_key
        self.authorized_parties = authorized_parties or []
        self.leeway = leeway
        self._jwks_client: jwt.PyJWKClient | None = None

        if not jwt_key:
            if not jwks_url:
                raise ValueError("Either a PEM JWT key or a JWKS URL is required")
            headers = {"Authorization": f"Bearer {secret_key}"} if secret_key else None
            self._jwks_client = jwt.PyJWKClient(jwks_url, headers=headers)

    async def verify(self, token: str) -> VerifiedToken:
        """Verify signature, expiry and authorized party."""
        if not token:
            raise AuthenticationError("Missing token")

        try:
            key = await self._signing_key(token)
            claims: dict[str, Any] = jwt.decode(
                token,
                key,
                algorithms=ALGORITHMS,
                leeway=self.leeway,
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.info("clerk_token_expired")
            raise AuthenticationError("Token expired") from exc
        except jwt.PyJWKClientError as exc:
            logger.warning("clerk_jwks_lookup_failed", error=str(exc))
            raise AuthenticationError(f"Signing key lookup failed: {exc}") from exc
        except jwt.InvalidTokenError as exc:
            logger.warning("clerk_token_invalid", error=str(exc))
            raise AuthenticationError(f"Invalid token: {exc}") from exc

        azp = claims.get("azp")
        if self.authorized_parties and azp and azp not in self.authorized_parties:
            logger.warning("clerk_token_unauthorized_party", azp=azp)
            raise AuthenticationError(f"Unauthorized party: {azp}")

        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError("Token has no subject")

        return VerifiedToken(
            subject=str(subject),
            session_id=claims.get("sid"),
            expires_at=claims.get("exp"),
        )

    async def _signing_key(self, token: str) -> Any:
        if self._jwks_client is None:
            return self.jwt_key
        # JWKS fetch is blocking network I/O
        signing_key = await asyncio.to_thread(self._jwks_client.get_signing_key_from_jwt, token)
        return signing_key.key
