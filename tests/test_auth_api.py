"""HTTP tests for registration, login, logout, /me and password change."""

import pytest

from models import AuthSession
from security import hash_token

from conftest import PASSWORD


def _register(client, email="carol@example.com", password="s3cret-pass", name="Carol"):
    return client.post("/auth/register", json={"name": name, "email": email, "password": password})


class TestRegister:
    """Tests for POST /auth/register."""

    def test_register_returns_user_and_token(self, client, session_cookie_name):
        response = _register(client)

        assert response.status_code == 201
        body = response.json()
        assert body["user"]["email"] == "carol@example.com"
        assert body["user"]["name"] == "Carol"
        assert "password" not in str(body["user"]).lower()
        assert len(body["token"]) == 43
        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"{session_cookie_name}=")
        assert "HttpOnly" in cookie
        assert "samesite=lax" in cookie.lower()

    def test_cookie_signs_in_the_browser_flow(self, client):
        """The client's cookie jar carries the session after register."""
        _register(client)

        response = client.get("/auth/me")

        assert response.status_code == 200
        assert response.json()["user"]["email"] == "carol@example.com"

    def test_duplicate_email_is_case_insensitive(self, client):
        _register(client)

        response = _register(client, email="CAROL@example.com")

        assert response.status_code == 409
        assert response.json()["error"] == "email_taken"

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "Carol", "email": "not-an-email", "password": "s3cret-pass"},
            {"name": "Carol", "email": "carol@example.com", "password": "short"},
            {"name": "   ", "email": "carol@example.com", "password": "s3cret-pass"},
            {"name": "Carol", "email": "carol@example.com", "password": "x" * 73},
            {"email": "carol@example.com", "password": "s3cret-pass"},
        ],
    )
    def test_invalid_payload(self, client, payload):
        response = client.post("/auth/register", json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"


class TestLogin:
    """Tests for POST /auth/login."""

    def test_login(self, client, user):
        response = client.post("/auth/login", json={"email": "alice@example.com", "password": PASSWORD})

        assert response.status_code == 200
        body = response.json()
        assert body["user"]["id"] == user.id
        me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.json()["user"]["id"] == user.id

    def test_login_email_is_case_insensitive(self, client, user):
        response = client.post("/auth/login", json={"email": "Alice@Example.com", "password": PASSWORD})

        assert response.status_code == 200

    @pytest.mark.parametrize(
        "email,password",
        [("alice@example.com", "wrong-password"), ("nobody@example.com", PASSWORD)],
    )
    def test_bad_credentials_look_the_same(self, client, user, email, password):
        """Wrong password and unknown email give the same answer."""
        response = client.post("/auth/login", json={"email": email, "password": password})

        assert response.status_code == 401
        assert response.json() == {
            "error": "invalid_credentials",
            "message": "Invalid email or password",
        }
        assert "set-cookie" not in response.headers


class TestCurrentUser:
    """Tests for GET /auth/me and token transport."""

    def test_bearer_token(self, client, user, auth_headers):
        response = client.get("/auth/me", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["user"]["id"] == user.id
        assert response.json()["user"]["email"] == "alice@example.com"

    def test_session_cookie(self, client, user, token, session_cookie_name):
        client.cookies.set(session_cookie_name, token)

        response = client.get("/auth/me")

        assert response.status_code == 200
        assert response.json()["user"]["id"] == user.id

    def test_no_credentials(self, client):
        response = client.get("/auth/me")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"
        assert response.headers["www-authenticate"] == "Bearer"

    def test_malformed_header_does_not_fall_back_to_cookie(self, client, token, session_cookie_name):
        client.cookies.set(session_cookie_name, token)

        response = client.get("/auth/me", headers={"Authorization": "Basic abc"})

        assert response.status_code == 401

    def test_unknown_and_expired_tokens_are_indistinguishable(self, client, db, token):
        record = db.get(AuthSession, hash_token(token))
        record.expires_at = record.issued_at
        db.commit()

        expired = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        unknown = client.get("/auth/me", headers={"Authorization": "Bearer " + "Z" * 43})

        assert expired.status_code == unknown.status_code == 401
        assert expired.json() == unknown.json()

    def test_deactivated_user_rejected(self, client, db, user, auth_headers):
        user.is_active = False
        db.commit()

        response = client.get("/auth/me", headers=auth_headers)

        assert response.status_code == 401


class TestLogout:
    """Tests for POST /auth/logout."""

    def test_logout_revokes_token(self, client, auth_headers):
        response = client.post("/auth/logout", headers=auth_headers)

        assert response.status_code == 200
        assert client.get("/auth/me", headers=auth_headers).status_code == 401

    def test_logout_clears_cookie(self, client, session_cookie_name):
        _register(client)

        response = client.post("/auth/logout")

        assert response.status_code == 200
        assert client.get("/auth/me").status_code == 401

    def test_logout_requires_session(self, client):
        assert client.post("/auth/logout").status_code == 401


class TestChangePassword:
    """Tests for POST /auth/password."""

    def test_change_password_revokes_other_sessions(self, client, db, user, token, auth_headers):
        other_session = client.post(
            "/auth/login", json={"email": "alice@example.com", "password": PASSWORD}
        ).json()["token"]

        response = client.post(
            "/auth/password",
            headers=auth_headers,
            json={"currentPassword": PASSWORD, "newPassword": "brand-new-pass"},
        )

        assert response.status_code == 200
        assert client.get("/auth/me", headers=auth_headers).status_code == 200
        stale = client.get("/auth/me", headers={"Authorization": f"Bearer {other_session}"})
        assert stale.status_code == 401
        relogin = client.post(
            "/auth/login", json={"email": "alice@example.com", "password": "brand-new-pass"}
        )
        assert relogin.status_code == 200

    def test_wrong_current_password(self, client, auth_headers):
        response = client.post(
            "/auth/password",
            headers=auth_headers,
            json={"currentPassword": "not-it", "newPassword": "brand-new-pass"},
        )

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_credentials"
