import pytest

from auth import verify_password

ADMIN_ONLY = [
    ("GET", "/users"),
    ("POST", "/users"),
    ("PUT", "/users"),
    ("DELETE", "/users"),
    ("POST", "/clear-companies"),
]


@pytest.mark.parametrize("method,path", ADMIN_ONLY)
def test_admin_endpoints_forbid_regular_users(client, user_headers, method, path):
    response = client.request(method, path, headers=user_headers, json={})
    assert response.status_code == 403
    assert response.json() == {"message": "Admin access required"}


@pytest.mark.parametrize("method,path", ADMIN_ONLY)
def test_admin_endpoints_require_token(client, method, path):
    response = client.request(method, path, json={})
    assert response.status_code == 401


def test_list_users_excludes_password_hashes(client, admin_headers):
    response = client.get("/users", headers=admin_headers)
    assert response.status_code == 200
    users = response.json()["users"]
    assert {u["username"] for u in users} == {"admin", "user", "other"}
    for user in users:
        assert "password_hash" not in user
        assert "passwordHash" not in user
        assert set(user) == {"id", "username", "role", "createdAt", "updatedAt"}


def test_create_user(client, admin_headers, store):
    response = client.post(
        "/users", headers=admin_headers,
        json={"username": "picker", "password": "s3cret", "role": "user"},
    )
    assert response.status_code == 201
    assert response.json()["user"]["username"] == "picker"
    created = store.find_user_by_username("picker")
    assert created.role == "user"
    assert verify_password("s3cret", created.password_hash)


def test_create_user_missing_fields(client, admin_headers):
    response = client.post("/users", headers=admin_headers, json={"username": "x"})
    assert response.status_code == 400
    assert response.json()["message"] == "Username, password and role are required"


def test_create_user_rejects_unknown_role(client, admin_headers):
    response = client.post(
        "/users", headers=admin_headers,
        json={"username": "x", "password": "y", "role": "superuser"},
    )
    assert response.status_code == 400


def test_create_duplicate_user(client, admin_headers):
    response = client.post(
        "/users", headers=admin_headers,
        json={"username": "user", "password": "y", "role": "user"},
    )
    assert response.status_code == 409


def test_update_user_role_and_password(client, admin_headers, store):
    target = store.find_user_by_username("user")
    response = client.put(
        "/users", headers=admin_headers,
        json={"userId": target.id, "role": "admin", "password": "changed"},
    )
    assert response.status_code == 200
    assert response.json()["user"]["role"] == "admin"
    updated = store.find_user(target.id)
    assert verify_password("changed", updated.password_hash)

    login = client.post("/auth-login", json={"username": "user", "password": "changed"})
    assert login.json()["user"]["role"] == "admin"


def test_update_user_requires_id_and_field(client, admin_headers, store):
    target = store.find_user_by_username("user")
    assert client.put("/users", headers=admin_headers, json={"role": "admin"}).status_code == 400
    assert client.put("/users", headers=admin_headers,
                      json={"userId": target.id}).status_code == 400


def test_update_unknown_user(client, admin_headers):
    response = client.put("/users", headers=admin_headers,
                          json={"userId": "missing", "role": "user"})
    assert response.status_code == 404


def test_update_user_to_taken_username(client, admin_headers, store):
    target = store.find_user_by_username("user")
    response = client.put("/users", headers=admin_headers,
                          json={"userId": target.id, "username": "other"})
    assert response.status_code == 409


def test_delete_user(client, admin_headers, store):
    target = store.find_user_by_username("other")
    response = client.request("DELETE", "/users", headers=admin_headers,
                              json={"userId": target.id})
    assert response.status_code == 200
    assert store.find_user(target.id) is None


def test_delete_user_requires_id(client, admin_headers):
    response = client.request("DELETE", "/users", headers=admin_headers, json={})
    assert response.status_code == 400


def test_admin_cannot_delete_self(client, admin_headers, store):
    admin = store.find_user_by_username("admin")
    response = client.request("DELETE", "/users", headers=admin_headers,
                              json={"userId": admin.id})
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot delete your own account"


def test_delete_unknown_user(client, admin_headers):
    response = client.request("DELETE", "/users", headers=admin_headers,
                              json={"userId": "missing"})
    assert response.status_code == 404


def test_users_patch_not_allowed(client, admin_headers):
    assert client.patch("/users", headers=admin_headers, json={}).status_code == 405


def test_clear_companies(client, admin_headers, user_headers, store):
    client.post("/companies", headers=user_headers, json={"name": "Acme"})
    client.post("/companies", headers=admin_headers, json={"name": "Globex"})
    response = client.post("/clear-companies", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["deletedCount"] == 2
    assert store.list_companies() == []


def test_unsupported_method_checks_token_first(client):
    response = client.patch("/users", json={})
    assert response.status_code == 401
    assert response.json() == {"message": "No token provided"}


def test_unsupported_method_checks_admin_role_first(client, user_headers):
    response = client.patch("/users", headers=user_headers, json={})
    assert response.status_code == 403


def test_unsupported_method_message(client, admin_headers):
    response = client.patch("/users", headers=admin_headers, json={})
    assert response.status_code == 405
    assert response.json() == {"message": "Method not allowed"}
    assert "GET" in response.headers["allow"]
