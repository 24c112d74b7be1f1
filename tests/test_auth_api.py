from datetime import datetime, timedelta, timezone

from services.auth.app import app as auth_app

PASSWORD = "Passw0rd!"


def login(auth_client, email: str, password: str = PASSWORD):
    return auth_client.post("/auth/login", json={"email": email, "password": password})


def test_health(auth_client):
    assert auth_client.get("/health").json() == {"status": "ok", "service": "auth"}


def test_login_returns_tokens_and_user(auth_client, student_user):
    response = login(auth_client, "student@example.com")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["token_type"] == "bearer"
    assert body["data"]["expires_in"] == 3600
    assert body["data"]["user"]["id"] == student_user.id
    assert body["data"]["user"]["role"] == "student"
    assert "hashed_password" not in body["data"]["user"]

    me = auth_client.get("/users/me", headers={"Authorization": f"Bearer {body['data']['token']}"})
    assert me.json()["data"]["email"] == "student@example.com"


def test_login_with_wrong_password(auth_client, student_user):
    response = login(auth_client, "student@example.com", "WrongPassword")

    assert response.status_code == 401
    assert response.json() == {"success": False, "data": None, "message": None, "error": "Invalid credentials"}


def test_login_with_malformed_body(auth_client):
    response = auth_client.post("/auth/login", json={"email": "not-an-email"})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["error"].startswith("Invalid request")


def test_refresh_issues_new_access_token(auth_client, teacher_user):
    tokens = login(auth_client, "teacher@example.com").json()["data"]

    response = auth_client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["refresh_token"] == tokens["refresh_token"]
    me = auth_client.get("/users/me", headers={"Authorization": f"Bearer {data['token']}"})
    assert me.json()["data"]["id"] == teacher_user.id


def test_refresh_rejects_access_token(auth_client, teacher_user):
    tokens = login(auth_client, "teacher@example.com").json()["data"]

    response = auth_client.post("/auth/refresh", json={"refresh_token": tokens["token"]})

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_refresh_token_cannot_authenticate_requests(auth_client, student_user):
    tokens = login(auth_client, "student@example.com").json()["data"]

    response = auth_client.get("/users/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})

    assert response.status_code == 401


def test_logout(auth_client):
    response = auth_client.post("/auth/logout")

    assert response.status_code == 200
    assert response.json()["data"] == "Logged out successfully"


def test_missing_bearer_token(auth_client):
    response = auth_client.get("/users/me")

    assert response.status_code == 401
    assert response.json()["error"] == "Missing Bearer token"


def test_invalid_bearer_token(auth_client):
    response = auth_client.get("/users/me", headers={"Authorization": "Bearer invalid.token.here"})

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid token"


def test_expired_bearer_token(auth_client, student_user):
    tokens = auth_app.state.context.tokens
    issued = tokens.issue(student_user.id, student_user.role, ttl_seconds=-10)

    response = auth_client.get("/users/me", headers={"Authorization": f"Bearer {issued}"})

    assert response.status_code == 401
    assert response.json()["error"] == "Token has expired"


def test_admin_creates_user(auth_client, admin_user, auth_headers):
    response = auth_client.post(
        "/users",
        json={"name": "New Student", "email": "new@example.com", "password": PASSWORD},
        headers=auth_headers(admin_user),
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["role"] == "student"
    assert login(auth_client, "new@example.com").status_code == 200


def test_duplicate_email(auth_client, admin_user, student_user, auth_headers):
    response = auth_client.post(
        "/users",
        json={"name": "Again", "email": "student@example.com", "password": PASSWORD},
        headers=auth_headers(admin_user),
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Email already registered"


def test_teacher_cannot_create_user(auth_client, teacher_user, auth_headers):
    response = auth_client.post(
        "/users",
        json={"name": "Sneaky", "email": "sneaky@example.com", "password": PASSWORD, "role": "admin"},
        headers=auth_headers(teacher_user),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "Only admins can create accounts"


def test_token_for_deleted_user(auth_client, db_session, student_user, auth_headers):
    headers = auth_headers(student_user)
    db_session.delete(db_session.get(type(student_user), student_user.id))
    db_session.commit()

    response = auth_client.get("/users/me", headers=headers)

    assert response.status_code == 401
    assert response.json()["error"] == "User no longer exists"


def test_expiry_reported_in_token(auth_client, student_user):
    tokens = login(auth_client, "student@example.com").json()["data"]
    principal = auth_app.state.context.tokens.validate(tokens["token"])

    remaining = principal.expires_at - datetime.now(timezone.utc)
    assert timedelta(minutes=59) < remaining <= timedelta(hours=1)
