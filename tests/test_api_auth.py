"""
tests/test_api_auth.py -- Integration tests for account and OTP routes.

Coverage:
  - Register: 201 + cookie, duplicate e-mail / mobile 409, invalid referral 400,
    referral links invited_by, associates receive an invite code, elevated
    roles cannot be self-assigned
  - Login: valid 200, bad password 401, unknown e-mail 401
  - /me with and without auth, logout clears the cookie
  - OTP send/verify: delivery via the mailer, wrong code, expired-free happy path,
    mail failures (502) and missing SMTP outside debug (503)
  - Reset password: requires a verified reset_password OTP, consumes it
  - Passwords are limited to 72 UTF-8 bytes on register and reset (422)

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- admin admin@test.local / testpass123

The TestClient keeps cookies between requests, so tests that log in clear the
jar afterwards; otherwise the cookie would authenticate later requests.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from core.config import get_settings
from core.mailer import MailDeliveryError


def _register(client: TestClient, email: str, mobile: str, **extra):
    body = {"name": "New Trader", "email": email, "mobile": mobile, "password": "supersecret1", **extra}
    resp = client.post("/api/v1/auth/register", json=body)
    client.cookies.clear()
    return resp


@pytest.fixture
def sent_codes(monkeypatch) -> list[tuple[str, str, str]]:
    """Capture OTP e-mails instead of sending them. Each entry is (email, code, purpose)."""
    sent: list[tuple[str, str, str]] = []

    def fake_send(to_email, code, purpose, settings=None):
        sent.append((to_email, code, purpose))
        return True

    monkeypatch.setattr("api.routes.v1.auth.send_otp_email", fake_send)
    return sent


class TestRegister:
    def test_register_creates_user_and_sets_cookie(self, api_client) -> None:
        client, _token, _uid = api_client
        body = {"name": "Alice", "email": "Alice@Example.com", "mobile": "8000000001", "password": "supersecret1"}
        resp = client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 201, resp.text
        assert "access_token" in resp.cookies
        data = resp.json()
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["roles"] == ["user"]
        assert data["invite_code"] is None
        assert "hashed_password" not in data["user"]
        client.cookies.clear()

    def test_duplicate_email_is_409(self, api_client) -> None:
        client, _token, _uid = api_client
        assert _register(client, "dup@example.com", "8000000002").status_code == 201
        resp = _register(client, "dup@example.com", "8000000003")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_exists"

    def test_duplicate_mobile_is_409(self, api_client) -> None:
        client, _token, _uid = api_client
        assert _register(client, "m1@example.com", "8000000004").status_code == 201
        resp = _register(client, "m2@example.com", "8000000004")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "mobile_exists"

    def test_invalid_referral_is_400(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = _register(client, "ref@example.com", "8000000005", referral_code="NOPE1234")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_referral"

    def test_associate_gets_invite_code_and_referral_links_users(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = _register(client, "assoc@example.com", "8000000006", roles=["associate"])
        assert resp.status_code == 201, resp.text
        associate = resp.json()
        code = associate["invite_code"]
        assert code and len(code) == 8

        resp = _register(client, "invited@example.com", "8000000007", referral_code=code)
        assert resp.status_code == 201, resp.text
        assert resp.json()["user"]["invited_by"] == associate["user"]["id"]

    def test_elevated_role_cannot_be_self_assigned(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = _register(client, "sneaky@example.com", "8000000008", roles=["admin"])
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "role_not_allowed"

    def test_invalid_body_is_422(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = _register(client, "not-an-email", "8000000009")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_password_limit_counts_utf8_bytes(self, api_client) -> None:
        client, _token, _uid = api_client
        # 40 characters but 80 bytes: over bcrypt's 72-byte input limit.
        resp = _register(client, "accent1@example.com", "8000000013", password="\u00e9" * 40)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

        # 36 characters, exactly 72 bytes.
        resp = _register(client, "accent2@example.com", "8000000014", password="\u00e9" * 36)
        assert resp.status_code == 201, resp.text
        login = client.post("/api/v1/auth/login", json={"email": "accent2@example.com", "password": "\u00e9" * 36})
        assert login.status_code == 200
        client.cookies.clear()


class TestLogin:
    def test_login_success(self, api_client) -> None:
        client, _token, uid = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "admin@test.local", "password": "testpass123"})
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["user"]["id"] == uid
        assert data["user"]["role"] == "admin"
        assert data["user"]["last_login"] is not None
        client.cookies.clear()

    def test_login_wrong_password(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "admin@test.local", "password": "wrong"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_login_unknown_email(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "ghost@test.local", "password": "whatever1"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"


class TestMeAndLogout:
    def test_me_requires_auth(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_bearer(self, api_client, admin_headers) -> None:
        client, _token, uid = api_client
        resp = client.get("/api/v1/auth/me", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["id"] == uid

    def test_me_with_cookie_then_logout(self, api_client) -> None:
        client, _token, _uid = api_client
        client.post("/api/v1/auth/login", json={"email": "admin@test.local", "password": "testpass123"})
        assert client.get("/api/v1/auth/me").status_code == 200
        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert client.get("/api/v1/auth/me").status_code == 401
        client.cookies.clear()

    def test_garbage_token_is_401(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401


class TestOtpRoutes:
    def test_send_and_verify(self, api_client, sent_codes) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/otp/send", json={"email": "otp@example.com", "purpose": "register"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["expires_in"] == get_settings().otp_expire_seconds
        (email, code, purpose), = sent_codes
        assert (email, purpose) == ("otp@example.com", "register")

        resp = client.post(
            "/api/v1/auth/otp/verify",
            json={"email": "otp@example.com", "purpose": "register", "otp": code},
        )
        assert resp.status_code == 200, resp.text

    def test_verify_wrong_code(self, api_client, sent_codes) -> None:
        client, _token, _uid = api_client
        client.post("/api/v1/auth/otp/send", json={"email": "wrong@example.com", "purpose": "register"})
        code = sent_codes[0][1]
        wrong = "100000" if code != "100000" else "100001"
        resp = client.post(
            "/api/v1/auth/otp/verify",
            json={"email": "wrong@example.com", "purpose": "register", "otp": wrong},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "otp_invalid"

    def test_verify_without_send(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/otp/verify",
            json={"email": "never@example.com", "purpose": "register", "otp": "123456"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "otp_not_found"

    def test_unknown_purpose_is_422(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/otp/send", json={"email": "x@example.com", "purpose": "login"})
        assert resp.status_code == 422

    def test_non_numeric_otp_is_422(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/otp/verify",
            json={"email": "x@example.com", "purpose": "register", "otp": "12ab56"},
        )
        assert resp.status_code == 422

    def test_mail_failure_is_502(self, api_client, monkeypatch) -> None:
        client, _token, _uid = api_client

        def failing_send(to_email, code, purpose, settings=None):
            raise MailDeliveryError("connection refused")

        monkeypatch.setattr("api.routes.v1.auth.send_otp_email", failing_send)
        resp = client.post("/api/v1/auth/otp/send", json={"email": "fail@example.com", "purpose": "register"})
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "mail_delivery_failed"

    def test_unconfigured_smtp_outside_debug_is_503(self, api_client, monkeypatch) -> None:
        client, _token, _uid = api_client
        production = get_settings().model_copy(update={"debug": False, "smtp_host": "", "smtp_sender": ""})
        monkeypatch.setattr("api.routes.v1.auth.get_settings", lambda: production)
        resp = client.post("/api/v1/auth/otp/send", json={"email": "nosmtp@example.com", "purpose": "register"})
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "mail_unavailable"

    def test_unconfigured_smtp_in_debug_still_succeeds(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/otp/send", json={"email": "debug@example.com", "purpose": "register"})
        assert resp.status_code == 200


class TestResetPassword:
    def test_reset_requires_verified_otp(self, api_client) -> None:
        client, _token, _uid = api_client
        assert _register(client, "reset1@example.com", "8000000010").status_code == 201
        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"email": "reset1@example.com", "new_password": "brandnewpass"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "otp_required"

    def test_full_reset_flow(self, api_client, sent_codes) -> None:
        client, _token, _uid = api_client
        assert _register(client, "reset2@example.com", "8000000011").status_code == 201

        client.post("/api/v1/auth/otp/send", json={"email": "reset2@example.com", "purpose": "reset_password"})
        code = sent_codes[-1][1]
        resp = client.post(
            "/api/v1/auth/otp/verify",
            json={"email": "reset2@example.com", "purpose": "reset_password", "otp": code},
        )
        assert resp.status_code == 200

        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"email": "reset2@example.com", "new_password": "brandnewpass"},
        )
        assert resp.status_code == 200, resp.text

        login = client.post("/api/v1/auth/login", json={"email": "reset2@example.com", "password": "brandnewpass"})
        assert login.status_code == 200
        client.cookies.clear()

        # The verified OTP was consumed by the first reset.
        again = client.post(
            "/api/v1/auth/reset-password",
            json={"email": "reset2@example.com", "new_password": "anotherpass1"},
        )
        assert again.status_code == 400

    def test_register_purpose_cannot_reset(self, api_client, sent_codes) -> None:
        client, _token, _uid = api_client
        assert _register(client, "reset3@example.com", "8000000012").status_code == 201
        client.post("/api/v1/auth/otp/send", json={"email": "reset3@example.com", "purpose": "register"})
        client.post(
            "/api/v1/auth/otp/verify",
            json={"email": "reset3@example.com", "purpose": "register", "otp": sent_codes[-1][1]},
        )
        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"email": "reset3@example.com", "new_password": "brandnewpass"},
        )
        assert resp.status_code == 400

    def test_new_password_over_72_bytes_is_422(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/reset-password",
            json={"email": "reset1@example.com", "new_password": "\u00e9" * 40},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
