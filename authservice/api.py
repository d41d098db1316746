"""FastAPI application exposing registration, login and profile endpoints."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Dict, List, Optional, Type, TypeVar

import anyio
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import AuthSettings, load_settings
from .database import CredentialStore, DuplicateEmailError, StorageUnavailableError, UserValidationError
from .models import TokenClaims, User
from .security import BearerTokenAuth
from .tokens import TokenService

logger = logging.getLogger("authservice.api")

INTERNAL_ERROR_MESSAGE = "Internal server error"

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

ModelT = TypeVar("ModelT", bound=BaseModel)


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None

    @field_validator("name", "email")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip()


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip()


class PublicUser(BaseModel):
    id: str
    email: str
    name: str


class ProfileUser(PublicUser):
    createdAt: datetime


class AuthResponse(BaseModel):
    success: bool = True
    message: str
    token: str
    user: PublicUser


class ProfileResponse(BaseModel):
    success: bool = True
    user: ProfileUser


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def user_to_public(user: User) -> PublicUser:
    return PublicUser(id=user.id, email=user.email, name=user.name)


def user_to_profile(user: User) -> ProfileUser:
    return ProfileUser(id=user.id, email=user.email, name=user.name, createdAt=user.created_at)


def error_payload(message: str, errors: Optional[List[str]] = None) -> Dict[str, object]:
    payload: Dict[str, object] = {"success": False, "message": message}
    if errors:
        payload["errors"] = list(errors)
    return payload


def _format_validation_error(error: Dict[str, object]) -> str:
    location = [str(part) for part in error.get("loc", ()) if part != "body"]  # type: ignore[union-attr]
    message = str(error.get("msg", "Invalid value"))
    if location:
        return f"{'.'.join(location)}: {message}"
    return message


async def read_body(request: Request, model: Type[ModelT]) -> ModelT:
    """Parse a JSON or form-encoded request body into ``model``.

    An empty body yields a model with every field unset.
    """

    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(_FORM_CONTENT_TYPES):
        form = await request.form()
        data: object = {key: value for key, value in form.items() if isinstance(value, str)}
    else:
        raw = await request.body()
        if not raw.strip():
            data = {}
        else:
            try:
                data = json.loads(raw)
            except ValueError as exc:
                raise RequestValidationError(
                    [{"type": "json_invalid", "loc": ("body",), "msg": "Request body is not valid JSON"}]
                ) from exc
            if data is None:
                data = {}

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


async def register_body(request: Request) -> RegisterRequest:
    return await read_body(request, RegisterRequest)


async def login_body(request: Request) -> LoginRequest:
    return await read_body(request, LoginRequest)


def create_app(
    *,
    store: CredentialStore | None = None,
    tokens: TokenService | None = None,
    settings: AuthSettings | None = None,
    initialize_database: bool = False,
) -> FastAPI:
    if settings is None:
        settings = load_settings()

    if store is None:
        store = CredentialStore(settings.database_path, password_rounds=settings.password_rounds)
        store.initialize()
    elif initialize_database:
        store.initialize()

    if tokens is None:
        tokens = TokenService(settings)

    auth = BearerTokenAuth(tokens)

    app = FastAPI(
        title="Auth Service",
        description="Username/password authentication with stateless session tokens",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=list(settings.trusted_proxies))
    app.state.store = store
    app.state.tokens = tokens

    def get_store() -> CredentialStore:
        return store

    async def get_current_claims(request: Request) -> TokenClaims:
        return await auth(request)

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/ping")
    async def ping() -> Dict[str, str]:
        return {"message": "pong"}

    router = APIRouter(prefix="/api/auth", tags=["auth"])

    @router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
    async def register(
        payload: RegisterRequest = Depends(register_body),
        db: CredentialStore = Depends(get_store),
    ) -> AuthResponse:
        if not payload.email or not payload.password or not payload.name:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email, password, and name are required",
            )

        try:
            user = await anyio.to_thread.run_sync(db.create_user, payload.email, payload.name, payload.password)
        except UserValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"message": "Validation failed", "errors": exc.messages},
            ) from exc
        except DuplicateEmailError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        logger.info("Registered user %s", user.id)
        return AuthResponse(
            message="User registered successfully",
            token=tokens.issue(user),
            user=user_to_public(user),
        )

    @router.post("/login", response_model=AuthResponse)
    async def login(
        payload: LoginRequest = Depends(login_body),
        db: CredentialStore = Depends(get_store),
    ) -> AuthResponse:
        if not payload.email or not payload.password:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email and password are required",
            )

        user = await anyio.to_thread.run_sync(db.authenticate, payload.email, payload.password)
        if user is None:
            logger.warning("Failed login attempt for %s", payload.email)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email or password")

        logger.info("User %s logged in", user.id)
        return AuthResponse(
            message="Login successful",
            token=tokens.issue(user),
            user=user_to_public(user),
        )

    @router.post("/logout", response_model=MessageResponse)
    async def logout() -> MessageResponse:
        # Tokens are stateless; the client discards its copy.
        return MessageResponse(message="Logout successful")

    @router.get("/profile", response_model=ProfileResponse)
    async def read_profile(
        claims: TokenClaims = Depends(get_current_claims),
        db: CredentialStore = Depends(get_store),
    ) -> ProfileResponse:
        user = await anyio.to_thread.run_sync(db.get_user, claims.user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return ProfileResponse(user=user_to_profile(user))

    app.include_router(router)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(_: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, dict):
            content = error_payload(
                str(exc.detail.get("message", "")),
                exc.detail.get("errors"),  # type: ignore[arg-type]
            )
        else:
            content = error_payload(str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError):
        errors = [_format_validation_error(error) for error in exc.errors()]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_payload("Validation failed", errors),
        )

    @app.exception_handler(StorageUnavailableError)
    async def handle_storage_error(request: Request, exc: StorageUnavailableError):
        logger.error("Storage unavailable while serving %s: %s", request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_payload(INTERNAL_ERROR_MESSAGE),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unhandled error while serving %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_payload(INTERNAL_ERROR_MESSAGE),
        )

    return app


__all__ = [
    "AuthResponse",
    "LoginRequest",
    "ProfileResponse",
    "RegisterRequest",
    "create_app",
    "error_payload",
]
