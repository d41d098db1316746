"""SQLite-backed credential store for user accounts."""
from __future__ import annotations

import re
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from passlib.context import CryptContext

from .models import User

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_NAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 6


class UserValidationError(ValueError):
    """Raised when user input fails validation; carries one message per field."""

    def __init__(self, messages: List[str]) -> None:
        super().__init__("; ".join(messages))
        self.messages = list(messages)


class DuplicateEmailError(ValueError):
    """Raised when a user with the same email address already exists."""

    def __init__(self, email: str) -> None:
        super().__init__("User with this email already exists")
        self.email = email


class StorageUnavailableError(RuntimeError):
    """Raised when the underlying database cannot service a request."""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the credential database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "auth.sqlite3").resolve(strict=False)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def validate_new_user(email: Optional[str], name: Optional[str], password: Optional[str]) -> List[str]:
    """Return one error message per violated field (empty when valid)."""

    errors: List[str] = []

    normalized_email = normalize_email(email) if email else ""
    if not normalized_email:
        errors.append("Email is required")
    elif not EMAIL_PATTERN.match(normalized_email):
        errors.append("Please enter a valid email")

    stripped_name = name.strip() if name else ""
    if not stripped_name:
        errors.append("Name is required")
    elif len(stripped_name) < MIN_NAME_LENGTH:
        errors.append(f"Name must be at least {MIN_NAME_LENGTH} characters long")

    if not password:
        errors.append("Password is required")
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    elif "\x00" in password:
        # bcrypt cannot hash NUL bytes.
        errors.append("Password must not contain null characters")

    return errors


class CredentialStore:
    """Persist user accounts with salted password hashes and unique emails."""

    def __init__(self, path: Path, *, password_rounds: int = 12) -> None:
        _ensure_directory(path)
        self._path = path
        self._pwd_context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=password_rounds,
        )
        self._dummy_hash: Optional[str] = None

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._path, check_same_thread=False, timeout=5.0)
        except sqlite3.Error as exc:
            raise StorageUnavailableError(f"Could not open credential database at {self._path}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        id TEXT PRIMARY KEY,
                        email TEXT NOT NULL UNIQUE,
                        name TEXT NOT NULL,
                        password_hash TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    );
                    """
                )
        except sqlite3.DatabaseError as exc:
            raise StorageUnavailableError("Failed to initialise the credential database") from exc

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------
    def hash_password(self, password: str) -> str:
        return self._pwd_context.hash(password)

    def _verify_hash(self, password: str, hashed: str) -> bool:
        if not hashed:
            return False
        try:
            return self._pwd_context.verify(password, hashed)
        except (ValueError, TypeError):
            return False

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(self, email: Optional[str], name: Optional[str], password: Optional[str]) -> User:
        """Validate, hash the password and insert a new user.

        Email uniqueness is left to the ``UNIQUE`` constraint so that two
        concurrent registrations cannot both succeed.
        """

        errors = validate_new_user(email, name, password)
        if errors:
            raise UserValidationError(errors)

        user = User(
            id=uuid.uuid4().hex,
            email=normalize_email(email or ""),
            name=(name or "").strip(),
            created_at=_current_timestamp(),
        )
        password_hash = self.hash_password(password or "")

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users (id, email, name, password_hash, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        user.id,
                        user.email,
                        user.name,
                        password_hash,
                        _serialize_datetime(user.created_at),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateEmailError(user.email) from exc
        except sqlite3.DatabaseError as exc:
            raise StorageUnavailableError("Failed to store user record") from exc

        return user

    def get_user(self, user_id: str) -> Optional[User]:
        row = self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        row = self._fetch_one("SELECT * FROM users WHERE email = ?", (normalize_email(email),))
        if row is None:
            return None
        return self._row_to_user(row)

    def verify_password(self, user: User, password: str) -> bool:
        """Return ``True`` if the supplied password matches the stored hash."""

        row = self._fetch_one("SELECT password_hash FROM users WHERE id = ?", (user.id,))
        if row is None:
            return False
        return self._verify_hash(password, str(row["password_hash"] or ""))

    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the matching user, or ``None`` for an unknown email or wrong password."""

        row = self._fetch_one("SELECT * FROM users WHERE email = ?", (normalize_email(email),))
        if row is None:
            # Equalise timing with the known-email path.
            self._verify_hash(password, self._get_dummy_hash())
            return None
        if not self._verify_hash(password, str(row["password_hash"] or "")):
            return None
        return self._row_to_user(row)

    def delete_user(self, user_id: str) -> bool:
        try:
            with self._connect() as conn:
                cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
                return cursor.rowcount > 0
        except sqlite3.DatabaseError as exc:
            raise StorageUnavailableError("Failed to delete user record") from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _fetch_one(self, query: str, params: tuple) -> Optional[sqlite3.Row]:
        try:
            with self._connect() as conn:
                return conn.execute(query, params).fetchone()
        except sqlite3.DatabaseError as exc:
            raise StorageUnavailableError("Failed to query credential database") from exc

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.hash_password(uuid.uuid4().hex)
        return self._dummy_hash

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=str(row["id"]),
            email=str(row["email"]),
            name=str(row["name"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = [
    "CredentialStore",
    "DuplicateEmailError",
    "StorageUnavailableError",
    "UserValidationError",
    "normalize_email",
    "resolve_database_path",
    "validate_new_user",
]
