from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("AUTH_JWT_SECRET", "tests-secret-key-0123456789abcdef")

from authservice.api import create_app
from authservice.config import AuthSettings
from authservice.database import CredentialStore, StorageUnavailableError
from authservice.tokens import TokenService


NAME = "John Doe"
EMAIL = "john@example.com"
PASSWORD = "password123"
SECRET = "api-test-signing-secret-0123456789abcdef"


@pytest.fixture()
def settings(tmp_path: Path) -> AuthSettings:
    return AuthSettings(
        jwt_secret=SECRET,
        database_path=tmp_path / "auth.sqlite3",
        password_rounds=4,
    )


@pytest.fixture()
def store(settings: AuthSettings) -> CredentialStore:
    db = CredentialStore(settings.database_path, password_rounds=settings.password_rounds)
    db.initialize()
    return db


@pytest.fixture()
def tokens(settings: AuthSettings) -> TokenService:
    return TokenService(settings)


@pytest.fixture()
def client(store: CredentialStore, tokens: TokenService, settings: AuthSettings):
    app = create_app(store=store, tokens=tokens, settings=settings)
    with TestClient(app) as test_client:
        yield test_client


def _register(client: TestClient, **overrides):
    body = {"name": NAME, "email": EMAIL, "password": PASSWORD}
    body.update(overrides)
    return client.post("/api/auth/register", json=body)


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_register_then_fetch_profile(client: TestClient) -> None:
    response = _register(client)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "User registered successfully"
    assert body["token"]
    assert body["user"]["email"] == EMAIL
    assert body["user"]["name"] == NAME
    assert set(body["user"]) == {"id", "email", "name"}

    profile = client.get("/api/auth/profile", headers=_auth_header(body["token"]))

    assert profile.status_code == 200
    payload = profile.json()
    assert payload["success"] is True
    assert payload["user"]["id"] == body["user"]["id"]
    assert payload["user"]["email"] == EMAIL
    assert payload["user"]["name"] == NAME
    created_at = datetime.fromisoformat(payload["user"]["createdAt"].replace("Z", "+00:00"))
    assert created_at <= datetime.now(timezone.utc)
    assert "password" not in profile.text
    assert "password_hash" not in profile.text


def test_register_same_email_twice_is_rejected(client: TestClient) -> None:
    assert _register(client).status_code == 201

    response = _register(client, email=" JOHN@example.com ", name="Other John")

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "User with this email already exists"}


@pytest.mark.parametrize("missing", ["name", "email", "password"])
def test_register_requires_all_fields(client: TestClient, missing: str) -> None:
    response = _register(client, **{missing: ""})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Email, password, and name are required"}


def test_register_without_body_requires_fields(client: TestClient) -> None:
    response = client.post("/api/auth/register")

    assert response.status_code == 400
    assert response.json()["message"] == "Email, password, and name are required"


def test_register_reports_field_validation_errors(client: TestClient) -> None:
    response = _register(client, email="not-an-email", password="12345")

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "Validation failed",
        "errors": [
            "Please enter a valid email",
            "Password must be at least 6 characters long",
        ],
    }


def test_register_rejects_wrongly_typed_body(client: TestClient) -> None:
    response = _register(client, email=12345)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    assert body["errors"]
    assert body["errors"][0].startswith("email")


def test_register_rejects_password_with_null_byte(client: TestClient) -> None:
    response = _register(client, password="pass\x00word")

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "Validation failed",
        "errors": ["Password must not contain null characters"],
    }

    login = client.post("/api/auth/login", json={"email": EMAIL, "password": "pass\x00word"})
    assert login.status_code == 400
    assert login.json()["message"] == "Invalid email or password"


def test_register_rejects_invalid_json(client: TestClient) -> None:
    response = client.post(
        "/api/auth/register",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Validation failed"
    assert response.json()["errors"] == ["Request body is not valid JSON"]


def test_register_and_login_accept_form_bodies(client: TestClient) -> None:
    registered = client.post(
        "/api/auth/register",
        data={"name": NAME, "email": EMAIL, "password": PASSWORD},
    )

    assert registered.status_code == 201
    assert registered.json()["user"]["email"] == EMAIL

    login = client.post("/api/auth/login", data={"email": EMAIL, "password": PASSWORD})

    assert login.status_code == 200
    assert login.json()["user"]["id"] == registered.json()["user"]["id"]


def test_form_body_missing_fields_reports_presence(client: TestClient) -> None:
    response = client.post("/api/auth/login", data={"email": EMAIL})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Email and password are required"}


def test_login_returns_token_for_registered_user(client: TestClient, tokens: TokenService) -> None:
    registered = _register(client).json()

    response = client.post("/api/auth/login", json={"email": "John@Example.com", "password": PASSWORD})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Login successful"
    assert body["user"] == registered["user"]

    claims = tokens.verify(body["token"])
    assert claims.user_id == registered["user"]["id"]
    assert claims.email == EMAIL
    assert claims.name == NAME


def test_login_failures_are_indistinguishable(client: TestClient) -> None:
    _register(client)

    wrong_password = client.post("/api/auth/login", json={"email": EMAIL, "password": "wrong-password"})
    unknown_email = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})

    expected = {"success": False, "message": "Invalid email or password"}
    assert wrong_password.status_code == 400
    assert unknown_email.status_code == 400
    assert wrong_password.json() == expected
    assert unknown_email.json() == expected


def test_login_requires_email_and_password(client: TestClient) -> None:
    response = client.post("/api/auth/login", json={"email": EMAIL})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Email and password are required"}


def test_logout_always_succeeds(client: TestClient) -> None:
    response = client.post("/api/auth/logout")

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Logout successful"}


def test_profile_requires_token(client: TestClient) -> None:
    response = client.get("/api/auth/profile")

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Access token required"}


def test_profile_rejects_invalid_token(client: TestClient) -> None:
    response = client.get("/api/auth/profile", headers=_auth_header("not-a-real-token"))

    assert response.status_code == 403
    assert response.json() == {"success": False, "message": "Invalid or expired token"}


def test_profile_rejects_expired_token(client: TestClient, store: CredentialStore, settings: AuthSettings) -> None:
    user = store.create_user(EMAIL, NAME, PASSWORD)
    stale_clock = lambda: datetime.now(timezone.utc) - timedelta(days=8)  # noqa: E731
    expired = TokenService(settings, clock=stale_clock).issue(user)

    response = client.get("/api/auth/profile", headers=_auth_header(expired))

    assert response.status_code == 403
    assert response.json()["message"] == "Invalid or expired token"


def test_profile_for_deleted_user_is_not_found(client: TestClient, store: CredentialStore) -> None:
    body = _register(client).json()
    store.delete_user(body["user"]["id"])

    response = client.get("/api/auth/profile", headers=_auth_header(body["token"]))

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "User not found"}


def test_storage_failure_is_reported_generically(
    client: TestClient, store: CredentialStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken(*_args, **_kwargs):
        raise StorageUnavailableError("database is locked at /secret/path")

    monkeypatch.setattr(store, "authenticate", broken)

    response = client.post("/api/auth/login", json={"email": EMAIL, "password": PASSWORD})

    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Internal server error"}
    assert "/secret/path" not in response.text


def test_unexpected_error_is_reported_generically(
    store: CredentialStore, settings: AuthSettings, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(store, "create_user", broken)

    app = create_app(store=store, tokens=TokenService(settings), settings=settings)
    with TestClient(app, raise_server_exceptions=False) as tolerant_client:
        response = _register(tolerant_client)

    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Internal server error"}
    assert "boom" not in response.text


def test_ping_and_health(client: TestClient) -> None:
    assert client.get("/api/ping").json() == {"message": "pong"}
    assert client.get("/health").json() == {"status": "ok"}


def test_create_app_builds_defaults_from_settings(settings: AuthSettings) -> None:
    app = create_app(settings=settings)

    with TestClient(app) as client:
        response = _register(client)

    assert response.status_code == 201
    assert settings.database_path.exists()


def test_create_application_wires_store_and_tokens(settings: AuthSettings) -> None:
    from authservice.application import create_application

    app = create_application(settings=settings)

    assert app.state.settings is settings
    with TestClient(app) as client:
        token = _register(client).json()["token"]
        profile = client.get("/api/auth/profile", headers=_auth_header(token))

    assert profile.status_code == 200
    assert profile.json()["user"]["email"] == EMAIL


def test_create_app_initialises_supplied_store(settings: AuthSettings) -> None:
    fresh = CredentialStore(settings.database_path, password_rounds=settings.password_rounds)

    app = create_app(store=fresh, tokens=TokenService(settings), settings=settings, initialize_database=True)

    with TestClient(app) as client:
        assert _register(client).status_code == 201
    assert fresh.get_user_by_email(EMAIL) is not None
