"""Signed session tokens (JWT) for authenticated API access.

Tokens are stateless: the server keeps no record of what it has issued, so
validity is decided entirely by the signature and the embedded expiry.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import jwt as pyjwt

from .config import AuthSettings
from .models import TokenClaims, User

logger = logging.getLogger("authservice.tokens")

Clock = Callable[[], datetime]

_REQUIRED_CLAIMS = ("userId", "email", "name", "iat", "exp")


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenInvalidError(TokenError):
    """Raised when a token is malformed or its signature does not validate."""


class TokenExpiredError(TokenError):
    """Raised when a correctly signed token is past its expiry."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issue and verify HMAC-signed identity tokens."""

    def __init__(self, settings: AuthSettings, *, clock: Optional[Clock] = None) -> None:
        if not settings.jwt_secret or not settings.jwt_secret.strip():
            raise ValueError("A JWT signing secret must be provided")
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self._issuer = settings.jwt_issuer
        self._ttl = settings.token_ttl
        self._clock = clock or _utcnow

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, user: User) -> str:
        issued_at = self._clock()
        payload: Dict[str, object] = {
            "userId": user.id,
            "email": user.email,
            "name": user.name,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self._ttl).timestamp()),
        }
        if self._issuer:
            payload["iss"] = self._issuer
        return pyjwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Decode ``token`` and return its claims.

        Raises:
            TokenInvalidError: bad signature, malformed structure or missing claims.
            TokenExpiredError: the signature is valid but ``exp`` has passed.
        """

        options = {
            "require": list(_REQUIRED_CLAIMS),
            # Expiry is checked against the injected clock below.
            "verify_exp": False,
            "verify_iat": False,
        }
        try:
            payload = pyjwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options=options,
            )
        except pyjwt.InvalidTokenError as exc:
            logger.debug("Rejected session token: %s", exc)
            raise TokenInvalidError(str(exc)) from exc

        try:
            claims = TokenClaims(
                user_id=self._string_claim(payload, "userId"),
                email=self._string_claim(payload, "email"),
                name=self._string_claim(payload, "name"),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise TokenInvalidError("Token claims are malformed") from exc

        if claims.expires_at <= self._clock():
            raise TokenExpiredError("Token has expired")
        return claims

    @staticmethod
    def _string_claim(payload: Dict[str, object], key: str) -> str:
        value = payload[key]
        if not isinstance(value, str) or not value:
            raise ValueError(f"Claim {key!r} must be a non-empty string")
        return value


__all__ = [
    "TokenExpiredError",
    "TokenInvalidError",
    "TokenError",
    "TokenService",
]
