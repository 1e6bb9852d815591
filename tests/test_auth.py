from fastapi.testclient import TestClient

from app.core.security import decode_token
from app.models.user import UserRole


def _register(client: TestClient, username: str, email: str, password: str = "StrongPass1"):
    return client.post(
        "/api/v1/auth/register",
        json={
            "username": username,
            "email": email,
            "full_name": "Register User",
            "phone": "9876543210",
            "password": password,
        },
    )


def _login(client: TestClient, email: str, password: str = "StrongPass1"):
    return client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )


def test_register_success(client: TestClient):
    response = _register(client, "register", "register@example.com")

    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["data"]["email"] == "register@example.com"
    assert payload["data"]["role"] == "customer"
    assert "password_hash" not in payload["data"]


def test_register_duplicate_email(client: TestClient):
    assert _register(client, "first", "same@example.com").status_code == 201

    response = _register(client, "second", "same@example.com")

    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE"


def test_register_weak_password(client: TestClient):
    response = _register(client, "weak", "weak@example.com", password="alllowercase")

    assert response.status_code == 422


def test_login_success_issues_bearer_token(client: TestClient):
    assert _register(client, "login", "login@example.com").status_code == 201

    response = _login(client, "login@example.com")

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"]["user"]["email"] == "login@example.com"
    assert payload["data"]["token_type"] == "bearer"
    claims = decode_token(payload["data"]["access_token"])
    assert claims["sub"] == str(payload["data"]["user"]["id"])
    assert claims["type"] == "access"

    me = client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {payload['data']['access_token']}"},
    )
    assert me.status_code == 200
    assert me.json()["data"]["username"] == "login"


def test_login_failure(client: TestClient):
    assert _register(client, "failure", "failure@example.com").status_code == 201

    response = _login(client, "failure@example.com", password="WrongPass1")

    assert response.status_code == 401
    payload = response.json()
    assert payload["success"] is False
    assert payload["code"] == "AUTH_ERROR"


def test_inactive_user_is_rejected(client: TestClient, make_user, headers_for):
    user = make_user(is_active=False)

    response = client.get("/api/v1/auth/me", headers=headers_for(user))

    assert response.status_code == 403


def test_garbage_token_is_rejected(client: TestClient):
    response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_admin_role_is_reported(client: TestClient, make_user, headers_for):
    admin = make_user(role=UserRole.ADMIN)

    response = client.get("/api/v1/auth/me", headers=headers_for(admin))

    assert response.json()["data"]["role"] == "admin"


def test_init_db_seeds_admin_once(db_session, monkeypatch):
    from app.core.config import settings
    from app.db.init_db import init_db
    from app.models.user import User

    monkeypatch.setattr(settings, "DEFAULT_ADMIN_PASSWORD", "AdminPass123")

    init_db(db_session)
    init_db(db_session)

    admins = db_session.query(User).filter(User.role == UserRole.ADMIN).all()
    assert [admin.email for admin in admins] == [settings.DEFAULT_ADMIN_EMAIL]
