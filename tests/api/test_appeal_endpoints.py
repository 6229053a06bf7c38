"""Tests for the appeal round trip between a banned client and the operator."""

from fastapi import status
from fastapi.testclient import TestClient

from gatehouse.services.appeals import APPEAL_DENIED_REASON
from tests.conftest import CLIENT_IP

APPEAL = {"message": "Shared office network, please review.", "contact": "ops@example.org"}


def _ban(client: TestClient, admin_headers: dict[str, str]) -> None:
    response = client.post(
        "/api/security/blocked",
        json={"ip": CLIENT_IP, "durationSeconds": 600},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["block"]["reason"] == "Blocked by admin"


def _pending(client: TestClient, admin_headers: dict[str, str]) -> list[dict]:
    response = client.get("/api/security/appeals?status=pending", headers=admin_headers)
    assert response.status_code == status.HTTP_200_OK
    return response.json()["appeals"]


def test_unblock_round_trip(client: TestClient, admin_headers: dict[str, str]) -> None:
    _ban(client, admin_headers)

    submitted = client.post("/api/security/appeal", json=APPEAL)
    assert submitted.status_code == status.HTTP_200_OK
    appeal_id = submitted.json()["appealId"]

    pending = _pending(client, admin_headers)
    assert [appeal["id"] for appeal in pending] == [appeal_id]
    assert pending[0]["ip"] == CLIENT_IP
    assert pending[0]["contact"] == "ops@example.org"
    assert pending[0]["geo"]["city"] == "Mountain View"

    decided = client.post(
        f"/api/security/appeals/{appeal_id}/decision",
        json={"decision": "unblock", "adminNote": "Office NAT"},
        headers=admin_headers,
    )
    assert decided.status_code == status.HTTP_200_OK
    assert decided.json()["appeal"]["status"] == "resolved"
    assert decided.json()["appeal"]["adminNote"] == "Office NAT"

    assert client.get("/api/security/block-status").json()["blocked"] is False
    assert client.get("/api/health").status_code == status.HTTP_200_OK
    assert _pending(client, admin_headers) == []

    again = client.post(
        f"/api/security/appeals/{appeal_id}/decision",
        json={"decision": "keep"},
        headers=admin_headers,
    )
    assert again.status_code == status.HTTP_409_CONFLICT


def test_keep_reapplies_a_lapsed_ban(client: TestClient, admin_headers: dict[str, str], clock) -> None:
    _ban(client, admin_headers)
    appeal_id = client.post("/api/security/appeal", json=APPEAL).json()["appealId"]
    clock.advance(601)

    response = client.post(
        f"/api/security/appeals/{appeal_id}/decision",
        json={"decision": "keep"},
        headers=admin_headers,
    )

    assert response.status_code == status.HTTP_200_OK
    ban = client.get("/api/security/block-status").json()
    assert ban["blocked"] is True
    assert ban["reason"] == APPEAL_DENIED_REASON


def test_second_appeal_is_throttled(client: TestClient, admin_headers: dict[str, str]) -> None:
    _ban(client, admin_headers)
    assert client.post("/api/security/appeal", json=APPEAL).status_code == status.HTTP_200_OK

    response = client.post("/api/security/appeal", json=APPEAL)

    assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert response.json()["retryAfterSeconds"] == 120


def test_appeal_requires_an_active_ban(client: TestClient) -> None:
    response = client.post("/api/security/appeal", json=APPEAL)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "IP is not currently blocked."


def test_appeal_requires_detail(client: TestClient, admin_headers: dict[str, str]) -> None:
    _ban(client, admin_headers)

    response = client.post("/api/security/appeal", json={"message": "  unban  "})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "minimum 10 characters" in response.json()["error"]


def test_decision_validation(client: TestClient, admin_headers: dict[str, str]) -> None:
    missing = client.post(
        "/api/security/appeals/unknown/decision",
        json={"decision": "unblock"},
        headers=admin_headers,
    )
    assert missing.status_code == status.HTTP_404_NOT_FOUND

    invalid = client.post(
        "/api/security/appeals/unknown/decision",
        json={"decision": "maybe"},
        headers=admin_headers,
    )
    assert invalid.status_code == status.HTTP_400_BAD_REQUEST


def test_submission_is_audited(client: TestClient, admin_headers: dict[str, str]) -> None:
    _ban(client, admin_headers)
    appeal_id = client.post("/api/security/appeal", json=APPEAL).json()["appealId"]

    notifications = client.get("/api/notifications", headers=admin_headers).json()["notifications"]
    received = next(item for item in notifications if item["title"] == "Unban Appeal Received")
    assert received["category"] == "appeal"
    assert received["metadata"]["appealId"] == appeal_id
    assert received["metadata"]["status"] == "pending"
