"""Domain models shared by the credential store and token service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the credential database."""

    id: str
    email: str
    name: str
    created_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    """Identity claims recovered from a verified session token."""

    user_id: str
    email: str
    name: str
    issued_at: datetime
    expires_at: datetime


__all__ = ["TokenClaims", "User"]
