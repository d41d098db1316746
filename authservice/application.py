"""Application factory that wires settings, storage and token signing together."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from .api import create_app
from .config import AuthSettings, load_settings
from .database import CredentialStore
from .tokens import TokenService

logger = logging.getLogger("authservice.application")


def create_application(
    *,
    settings: Optional[AuthSettings] = None,
    config_path: Optional[Path] = None,
) -> FastAPI:
    """Create the ASGI application from explicit or environment-derived settings."""

    if settings is None:
        settings = load_settings(config_path)

    store = CredentialStore(settings.database_path, password_rounds=settings.password_rounds)
    tokens = TokenService(settings)
    app = create_app(store=store, tokens=tokens, settings=settings, initialize_database=True)
    logger.info("Credential database ready at %s", settings.database_path)
    app.state.settings = settings
    return app


__all__ = ["create_application"]
