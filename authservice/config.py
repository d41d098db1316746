"""Configuration management for the authentication service."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

from .database import resolve_database_path

logger = logging.getLogger("authservice.config")

DEFAULT_TOKEN_TTL = timedelta(days=7)
DEVELOPMENT_SECRET = "your-secret-key-change-in-production"

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "": "seconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


def parse_duration(value: str | int) -> timedelta:
    """Parse ``"7d"``, ``"12h"``, ``"30m"``, ``"45s"`` or a bare number of seconds."""

    if isinstance(value, int):
        if value <= 0:
            raise ValueError("Duration must be positive")
        return timedelta(seconds=value)

    match = _DURATION_PATTERN.match(str(value))
    if match is None:
        raise ValueError(f"Invalid duration: {value!r}")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError("Duration must be positive")
    unit = _DURATION_UNITS[match.group(2).lower()]
    return timedelta(**{unit: amount})


def _parse_list(value: object) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value]
    else:
        items = [item.strip() for item in str(value).split(",")]
    values = tuple(item for item in items if item)
    return values or ("*",)


def _default_database_path() -> Path:
    return resolve_database_path(None)


@dataclass(frozen=True)
class AuthSettings:
    """Process-wide settings, read-only once the service has started."""

    jwt_secret: str
    token_ttl: timedelta = DEFAULT_TOKEN_TTL
    jwt_algorithm: str = "HS256"
    jwt_issuer: Optional[str] = None
    database_path: Path = field(default_factory=_default_database_path)
    password_rounds: int = 12
    cors_origins: Tuple[str, ...] = ("*",)
    trusted_proxies: Tuple[str, ...] = ("127.0.0.1",)
    host: str = "0.0.0.0"
    port: int = 8080

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "AuthSettings":
        """Create :class:`AuthSettings` from raw mapping data (YAML or env)."""

        secret = data.get("jwt_secret")
        if not secret:
            logger.warning("No JWT secret configured; falling back to the development secret")
            secret = DEVELOPMENT_SECRET

        kwargs: Dict[str, object] = {"jwt_secret": str(secret)}

        if data.get("jwt_expire") is not None:
            kwargs["token_ttl"] = parse_duration(data["jwt_expire"])  # type: ignore[arg-type]
        if data.get("jwt_algorithm"):
            kwargs["jwt_algorithm"] = str(data["jwt_algorithm"])
        if data.get("jwt_issuer"):
            kwargs["jwt_issuer"] = str(data["jwt_issuer"])
        if data.get("database_path"):
            raw_path = Path(str(data["database_path"])).expanduser()
            if not raw_path.is_absolute() and base_path is not None:
                raw_path = base_path / raw_path
            kwargs["database_path"] = raw_path.resolve(strict=False)
        if data.get("password_rounds") is not None:
            kwargs["password_rounds"] = int(data["password_rounds"])  # type: ignore[arg-type]
        if data.get("cors_origins") is not None:
            kwargs["cors_origins"] = _parse_list(data["cors_origins"])
        if data.get("trusted_proxies") is not None:
            kwargs["trusted_proxies"] = _parse_list(data["trusted_proxies"])
        if data.get("host"):
            kwargs["host"] = str(data["host"])
        if data.get("port") is not None:
            kwargs["port"] = int(data["port"])  # type: ignore[arg-type]

        return AuthSettings(**kwargs)  # type: ignore[arg-type]


_ENV_KEYS = {
    "AUTH_JWT_SECRET": "jwt_secret",
    "AUTH_JWT_EXPIRE": "jwt_expire",
    "AUTH_JWT_ALGORITHM": "jwt_algorithm",
    "AUTH_JWT_ISSUER": "jwt_issuer",
    "AUTH_DB_PATH": "database_path",
    "AUTH_PASSWORD_ROUNDS": "password_rounds",
    "AUTH_CORS_ORIGINS": "cors_origins",
    "AUTH_TRUSTED_PROXIES": "trusted_proxies",
    "AUTH_HOST": "host",
    "AUTH_PORT": "port",
}


def _load_yaml_section(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping")
    section = raw.get("auth", {}) or {}
    if not isinstance(section, dict):
        raise ValueError("The 'auth' key of the configuration file must be a mapping")
    return dict(section)


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AuthSettings:
    """Load settings from an optional YAML file, overlaid by ``AUTH_*`` variables."""

    env = os.environ if environ is None else environ

    if config_path is None and env.get("AUTH_CONFIG_PATH"):
        config_path = Path(env["AUTH_CONFIG_PATH"]).expanduser()

    data: Dict[str, object] = {}
    base_path: Path | None = None
    if config_path is not None:
        data.update(_load_yaml_section(config_path))
        base_path = config_path.resolve(strict=False).parent

    for env_name, key in _ENV_KEYS.items():
        value = env.get(env_name)
        if value is not None and value.strip():
            data[key] = value.strip()

    return AuthSettings.from_dict(data, base_path=base_path)


__all__ = [
    "AuthSettings",
    "DEFAULT_TOKEN_TTL",
    "DEVELOPMENT_SECRET",
    "load_settings",
    "parse_duration",
]
