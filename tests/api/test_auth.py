"""Tests for operator login, lockout and session endpoints."""

from fastapi import status
from fastapi.testclient import TestClient

from tests.conftest import ADMIN_PASSWORD, ADMIN_USERNAME, OTHER_CLIENT_IP

GOOD_LOGIN = {"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD}
BAD_LOGIN = {"username": ADMIN_USERNAME, "password": "definitely-wrong"}


def test_login_success_sets_cookie_and_returns_token(client: TestClient) -> None:
    response = client.post("/api/login", json=GOOD_LOGIN)

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["success"] is True
    assert body["token"]
    assert body["expiresInMs"] == 8 * 60 * 60 * 1000
    assert body["expiresAt"].endswith("Z")
    cookie = response.headers["set-cookie"].lower()
    assert "admin_session=" in cookie
    assert "httponly" in cookie
    assert "samesite=strict" in cookie

    # The cookie alone authenticates follow-up requests.
    assert client.post("/api/validate-token").json()["valid"] is True


def test_invalid_format_is_rejected_before_credentials(client: TestClient) -> None:
    response = client.post("/api/login", json={"username": "ab", "password": ADMIN_PASSWORD})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"success": False, "error": "Invalid username or password format"}


def test_wrong_password(client: TestClient, recording_sleep) -> None:
    response = client.post("/api/login", json=BAD_LOGIN)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"] == "Invalid credentials"
    # The first failure is answered without delay.
    assert recording_sleep.calls == []


def test_failures_lock_the_pair(client: TestClient) -> None:
    for _ in range(4):
        assert client.post("/api/login", json=BAD_LOGIN).status_code == 401

    locking = client.post("/api/login", json=BAD_LOGIN)
    assert locking.status_code == status.HTTP_401_UNAUTHORIZED
    assert locking.json()["error"] == "Too many failed attempts. Account temporarily locked."
    assert locking.json()["lockUntil"].endswith("Z")

    locked = client.post("/api/login", json=GOOD_LOGIN)
    assert locked.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert locked.json()["retryAfterSeconds"] == 15 * 60

    # The lock applies to this client only.
    other = client.post("/api/login", json=GOOD_LOGIN, headers={"X-Forwarded-For": OTHER_CLIENT_IP})
    assert other.status_code == status.HTTP_200_OK


def test_lock_expires(client: TestClient, clock) -> None:
    for _ in range(5):
        client.post("/api/login", json=BAD_LOGIN)

    clock.advance(15 * 60 + 1)

    assert client.post("/api/login", json=GOOD_LOGIN).status_code == status.HTTP_200_OK


def test_success_clears_failures(client: TestClient) -> None:
    for _ in range(4):
        client.post("/api/login", json=BAD_LOGIN)
    assert client.post("/api/login", json=GOOD_LOGIN).status_code == status.HTTP_200_OK

    for _ in range(4):
        assert client.post("/api/login", json=BAD_LOGIN).status_code == 401
    assert client.post("/api/login", json=GOOD_LOGIN).status_code == status.HTTP_200_OK


def test_backoff_grows_with_each_failure(client: TestClient, recording_sleep) -> None:
    for _ in range(3):
        client.post("/api/login", json=BAD_LOGIN)

    assert client.post("/api/login", json=GOOD_LOGIN).status_code == status.HTTP_200_OK
    assert recording_sleep.calls == [1.0, 2.0]


def test_logout_revokes_the_session(client: TestClient, admin_headers: dict[str, str]) -> None:
    assert client.post("/api/validate-token", headers=admin_headers).status_code == 200

    response = client.post("/api/logout", headers=admin_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"success": True}

    revoked = client.post("/api/validate-token", headers=admin_headers)
    assert revoked.status_code == status.HTTP_401_UNAUTHORIZED
    assert revoked.json()["error"] == "Session expired or invalid"


def test_session_expires(client: TestClient, admin_headers: dict[str, str], clock) -> None:
    clock.advance(8 * 60 * 60 + 1)

    response = client.post("/api/validate-token", headers=admin_headers)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_admin_routes_require_a_session(client: TestClient) -> None:
    response = client.get("/api/notifications")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json() == {"success": False, "error": "Authentication required"}


def test_unknown_bearer_token(client: TestClient) -> None:
    response = client.get("/api/security/blocked", headers={"Authorization": "Bearer nope"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_login_outcomes_are_audited(client: TestClient, admin_headers: dict[str, str]) -> None:
    client.post("/api/login", json=BAD_LOGIN)

    titles = [
        item["title"]
        for item in client.get("/api/notifications", headers=admin_headers).json()["notifications"]
    ]
    assert titles[:2] == ["Failed Login Attempt", "Login Success"]
