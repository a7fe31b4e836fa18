"""Registration, session login and role management over HTTP."""

from models import ROLE_ADMIN, ROLE_OFFICIAL

PASSWORD = "Str0ng!Passw0rd"


def _register(client, email="new.citizen@civicpulse.org", **overrides):
    body = {
        "full_name": "New Citizen",
        "email": email,
        "password": PASSWORD,
        "confirm_password": PASSWORD,
    }
    body.update(overrides)
    return client.post("/auth/register", json=body)


def test_register_creates_citizen(client):
    response = _register(client)
    assert response.status_code == 201
    user = response.get_json()["user"]
    assert user["role"] == "Citizen"
    assert user["email"] == "new.citizen@civicpulse.org"


def test_register_ignores_requested_role(client):
    response = _register(client, role=ROLE_ADMIN)
    assert response.get_json()["user"]["role"] == "Citizen"


def test_register_rejects_duplicate_email(client):
    _register(client)
    response = _register(client, email="NEW.citizen@civicpulse.org")
    assert response.status_code == 400
    body = response.get_json()
    assert body["error"] == "invalid_input"
    assert "email" in body["fields"]


def test_register_enforces_password_policy(client):
    response = _register(client, password="alllowercase1!", confirm_password="alllowercase1!")
    assert response.status_code == 400
    assert "password" in response.get_json()["fields"]


def test_register_requires_json_object(client):
    response = client.post("/auth/register", json=["not", "an", "object"])
    assert response.status_code == 400


def test_login_and_me(client, make_user, login):
    user = make_user()
    login(user)
    response = client.get("/auth/me")
    assert response.status_code == 200
    assert response.get_json()["user"]["id"] == user.id


def test_login_with_wrong_password(client, make_user):
    user = make_user()
    response = client.post("/auth/login", json={"email": user.email, "password": "Wrong!Passw0rd"})
    assert response.status_code == 401
    assert response.get_json()["error"] == "authentication_required"


def test_login_is_throttled(client, make_user):
    user = make_user()
    for _ in range(10):
        client.post("/auth/login", json={"email": user.email, "password": "Wrong!Passw0rd"})
    response = client.post("/auth/login", json={"email": user.email, "password": user.password})
    assert response.status_code == 403


def test_me_requires_login(client):
    response = client.get("/auth/me")
    assert response.status_code == 401
    assert response.get_json()["error"] == "authentication_required"


def test_logout(client, make_user, login):
    login(make_user())
    assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_csrf_token_endpoint(client):
    response = client.get("/auth/csrf-token")
    assert response.status_code == 200
    assert response.get_json()["csrf_token"]


def test_admin_assigns_official_role(client, make_user, login):
    admin = make_user(role=ROLE_ADMIN)
    citizen = make_user()
    login(admin)

    response = client.post(f"/auth/users/{citizen.id}/role", json={"role": ROLE_OFFICIAL})

    assert response.status_code == 200
    assert response.get_json()["user"]["role"] == ROLE_OFFICIAL


def test_citizen_cannot_assign_roles(client, make_user, login):
    citizen = make_user()
    login(citizen)
    response = client.post(f"/auth/users/{citizen.id}/role", json={"role": ROLE_ADMIN})
    assert response.status_code == 403
    assert response.get_json()["error"] == "permission_denied"


def test_assign_role_unknown_user(client, make_user, login):
    login(make_user(role=ROLE_ADMIN))
    response = client.post("/auth/users/missing/role", json={"role": ROLE_OFFICIAL})
    assert response.status_code == 404
