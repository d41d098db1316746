"""Security helpers for the authentication API."""
from __future__ import annotations

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .models import TokenClaims
from .tokens import TokenError, TokenService

MISSING_TOKEN_MESSAGE = "Access token required"
INVALID_TOKEN_MESSAGE = "Invalid or expired token"


class BearerTokenAuth:
    """Gate protected routes behind a verified session token.

    A missing token is rejected with 401 before the token service is consulted;
    a token that fails verification is rejected with 403.
    """

    def __init__(self, tokens: TokenService) -> None:
        self._tokens = tokens
        self._bearer = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> TokenClaims:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials.strip():
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=MISSING_TOKEN_MESSAGE)

        try:
            claims = self._tokens.verify(credentials.credentials.strip())
        except TokenError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=INVALID_TOKEN_MESSAGE) from exc

        request.state.user = claims
        return claims


__all__ = ["BearerTokenAuth", "INVALID_TOKEN_MESSAGE", "MISSING_TOKEN_MESSAGE"]
