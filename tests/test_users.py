from fastapi.testclient import TestClient

from app.models.user import UserRole


def test_get_and_update_profile(client: TestClient, make_user, headers_for):
    user = make_user()
    headers = headers_for(user)

    profile = client.get("/api/v1/users/me", headers=headers)
    assert profile.status_code == 200
    assert profile.json()["data"]["email"] == user.email
    assert "password_hash" not in profile.json()["data"]

    updated = client.put(
        "/api/v1/users/me",
        json={"full_name": "  Renamed User ", "phone": "0987654321"},
        headers=headers,
    )
    assert updated.status_code == 200
    data = updated.json()["data"]
    assert data["full_name"] == "Renamed User"
    assert data["phone"] == "0987654321"


def test_profile_requires_authentication(client: TestClient):
    assert client.get("/api/v1/users/me").status_code == 401


def test_update_profile_phone_clash(client: TestClient, make_user, headers_for):
    first = make_user()
    second = make_user()

    response = client.put("/api/v1/users/me", json={"phone": first.phone}, headers=headers_for(second))

    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE"


def test_update_profile_rejects_bad_phone(client: TestClient, make_user, headers_for):
    user = make_user()

    response = client.put("/api/v1/users/me", json={"phone": "12ab"}, headers=headers_for(user))

    assert response.status_code == 422


def test_change_password_then_login(client: TestClient, make_user, headers_for):
    user = make_user()

    response = client.put(
        "/api/v1/users/me/password",
        json={"current_password": "StrongPass1", "new_password": "NewerPass2"},
        headers=headers_for(user),
    )
    assert response.status_code == 200

    old_login = client.post("/api/v1/auth/login", json={"email": user.email, "password": "StrongPass1"})
    assert old_login.status_code == 401

    new_login = client.post("/api/v1/auth/login", json={"email": user.email, "password": "NewerPass2"})
    assert new_login.status_code == 200


def test_change_password_rejections(client: TestClient, make_user, headers_for):
    user = make_user()
    headers = headers_for(user)

    wrong = client.put(
        "/api/v1/users/me/password",
        json={"current_password": "WrongPass9", "new_password": "NewerPass2"},
        headers=headers,
    )
    assert wrong.status_code == 400
    assert wrong.json()["code"] == "VALIDATION_ERROR"

    same = client.put(
        "/api/v1/users/me/password",
        json={"current_password": "StrongPass1", "new_password": "StrongPass1"},
        headers=headers,
    )
    assert same.status_code == 400

    weak = client.put(
        "/api/v1/users/me/password",
        json={"current_password": "StrongPass1", "new_password": "alllowercase"},
        headers=headers,
    )
    assert weak.status_code == 422


def test_admin_lists_users(client: TestClient, make_user, headers_for):
    admin = make_user(role=UserRole.ADMIN)
    make_user()
    make_user()

    everyone = client.get("/api/v1/users", headers=headers_for(admin))
    assert everyone.status_code == 200
    assert everyone.json()["meta"]["total"] == 3

    customers = client.get("/api/v1/users", params={"role": "customer"}, headers=headers_for(admin))
    assert customers.json()["meta"]["total"] == 2
    assert {user["role"] for user in customers.json()["data"]} == {"customer"}


def test_customer_cannot_use_admin_user_routes(client: TestClient, make_user, headers_for):
    customer = make_user()
    other = make_user()
    headers = headers_for(customer)

    assert client.get("/api/v1/users", headers=headers).status_code == 403
    response = client.put(f"/api/v1/users/{other.id}/role", json={"role": "admin"}, headers=headers)
    assert response.status_code == 403


def test_admin_updates_role(client: TestClient, make_user, headers_for):
    admin = make_user(role=UserRole.ADMIN)
    customer = make_user()

    promoted = client.put(
        f"/api/v1/users/{customer.id}/role", json={"role": "admin"}, headers=headers_for(admin)
    )
    assert promoted.status_code == 200
    assert promoted.json()["data"]["role"] == "admin"

    own = client.put(f"/api/v1/users/{admin.id}/role", json={"role": "customer"}, headers=headers_for(admin))
    assert own.status_code == 400

    missing = client.put("/api/v1/users/999/role", json={"role": "admin"}, headers=headers_for(admin))
    assert missing.status_code == 404
    assert missing.json()["code"] == "USER_NOT_FOUND"
