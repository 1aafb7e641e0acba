from __future__ import annotations

from datetime import datetime, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient

from backend.app.main import create_app

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-secret"


def _token(secret: str, subject: str, roles: list[str], *, hours: int = 1) -> str:
    payload = {
        "sub": subject,
        "roles": roles,
        "exp": datetime.utcnow() + timedelta(hours=hours),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture()
def secured_client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "true")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("BOOTSTRAP_ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("BOOTSTRAP_ADMIN_PASSWORD", ADMIN_PASSWORD)
    return TestClient(create_app())


def _login(client: TestClient, email: str, password: str) -> dict[str, str]:
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _create_recruiter(client: TestClient, admin: dict[str, str], email: str = "rec@example.com") -> str:
    response = client.post(
        "/recruiters",
        headers=admin,
        json={"first_name": "Omar", "last_name": "Fares", "email": email, "password": "recruit-pw"},
    )
    assert response.status_code == 200, response.text
    return response.json()["id"]


def test_missing_token_is_rejected(secured_client) -> None:
    assert secured_client.get("/candidates").status_code == 401
    assert secured_client.get("/pipeline").status_code == 401


def test_expired_and_forged_tokens_are_rejected(secured_client) -> None:
    expired = _token("test-secret", "usr_1", ["admin"], hours=-1)
    response = secured_client.get("/candidates", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "auth token expired"

    forged = _token("other-secret", "usr_1", ["admin"])
    response = secured_client.get("/candidates", headers={"Authorization": f"Bearer {forged}"})
    assert response.status_code == 401


def test_health_and_session_check_stay_public(secured_client) -> None:
    assert secured_client.get("/health").status_code == 200
    response = secured_client.post(
        "/auth/session/check", json={"last_activity_utc": datetime.utcnow().isoformat()}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "active"


def test_login_returns_token_and_session_policy(secured_client) -> None:
    response = secured_client.post(
        "/auth/login", json={"email": "ADMIN@example.com", "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["role"] == "admin"
    assert body["session"]["timeout_seconds"] == 30 * 60
    assert body["session"]["check_interval_seconds"] == 60
    assert "password_hash" not in body["user"]


def test_login_with_wrong_password_is_401(secured_client) -> None:
    response = secured_client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": "nope"})
    assert response.status_code == 401
    unknown = secured_client.post("/auth/login", json={"email": "ghost@example.com", "password": "x"})
    assert unknown.status_code == 401


def test_disabled_recruiter_cannot_log_in(secured_client) -> None:
    admin = _login(secured_client, ADMIN_EMAIL, ADMIN_PASSWORD)
    recruiter_id = _create_recruiter(secured_client, admin)
    _login(secured_client, "rec@example.com", "recruit-pw")

    disabled = secured_client.put(
        f"/recruiters/{recruiter_id}/status", headers=admin, json={"status": "disabled"}
    )
    assert disabled.status_code == 200
    response = secured_client.post(
        "/auth/login", json={"email": "rec@example.com", "password": "recruit-pw"}
    )
    assert response.status_code == 403


def test_duplicate_recruiter_email_conflicts(secured_client) -> None:
    admin = _login(secured_client, ADMIN_EMAIL, ADMIN_PASSWORD)
    _create_recruiter(secured_client, admin)
    response = secured_client.post(
        "/recruiters",
        headers=admin,
        json={"first_name": "X", "last_name": "Y", "email": "rec@example.com", "password": "another"},
    )
    assert response.status_code == 409


def test_recruiter_rights_gate_lifecycle_endpoints(secured_client) -> None:
    admin = _login(secured_client, ADMIN_EMAIL, ADMIN_PASSWORD)
    recruiter_id = _create_recruiter(secured_client, admin)
    recruiter = _login(secured_client, "rec@example.com", "recruit-pw")

    created = secured_client.post(
        "/candidates",
        headers=recruiter,
        json={"first_name": "Sara", "last_name": "Lind", "email": "sara@example.com", "position": "PM"},
    )
    assert created.status_code == 200
    cid = created.json()["id"]

    rights = secured_client.get(f"/recruiters/{recruiter_id}/rights", headers=admin).json()
    rights["modify_stages"] = False
    updated = secured_client.put(f"/recruiters/{recruiter_id}/rights", headers=admin, json=rights)
    assert updated.status_code == 200
    assert updated.json()["rights"]["modify_stages"] is False

    blocked = secured_client.post(f"/candidates/{cid}/advance", headers=recruiter)
    assert blocked.status_code == 403
    assert blocked.json()["detail"] == "missing permission: modify_stages"

    allowed = secured_client.post(f"/candidates/{cid}/reject", headers=recruiter)
    assert allowed.status_code == 200
    assert allowed.json()["status"] == "rejected"

    history = secured_client.get(f"/candidates/{cid}/history", headers=recruiter).json()
    assert history[-1]["actor_id"] == recruiter_id


def test_recruiter_cannot_manage_recruiters_or_stages(secured_client) -> None:
    admin = _login(secured_client, ADMIN_EMAIL, ADMIN_PASSWORD)
    _create_recruiter(secured_client, admin)
    recruiter = _login(secured_client, "rec@example.com", "recruit-pw")

    assert secured_client.get("/recruiters", headers=recruiter).status_code == 403
    response = secured_client.post("/pipeline-stages", headers=recruiter, json={"name": "Offer"})
    assert response.status_code == 403


def test_candidate_sees_own_progress(secured_client) -> None:
    admin = _login(secured_client, ADMIN_EMAIL, ADMIN_PASSWORD)
    created = secured_client.post(
        "/candidates",
        headers=admin,
        json={
            "first_name": "Yara",
            "last_name": "Saleh",
            "email": "yara@example.com",
            "position": "Designer",
            "password": "yara-pass",
        },
    )
    assert created.status_code == 200
    cid = created.json()["id"]
    secured_client.post(f"/candidates/{cid}/advance", headers=admin)
    secured_client.post(
        "/interviews",
        headers=admin,
        json={
            "candidate_id": cid,
            "scheduled_at_utc": (datetime.utcnow() + timedelta(days=2)).isoformat(),
        },
    )

    candidate = _login(secured_client, "yara@example.com", "yara-pass")
    progress = secured_client.get("/me/progress", headers=candidate)
    assert progress.status_code == 200
    body = progress.json()
    assert body["candidate_id"] == cid
    assert body["stage_name"] == "Technical Interview"
    assert body["stage_position"] == 2
    assert body["total_stages"] == 3
    assert body["status"] == "in_progress"
    assert len(body["upcoming_interviews"]) == 1

    assert secured_client.get("/candidates", headers=candidate).status_code == 403


def test_candidate_without_password_cannot_log_in(secured_client) -> None:
    admin = _login(secured_client, ADMIN_EMAIL, ADMIN_PASSWORD)
    secured_client.post(
        "/candidates",
        headers=admin,
        json={"first_name": "No", "last_name": "Login", "email": "nologin@example.com", "position": "QA"},
    )
    response = secured_client.post(
        "/auth/login", json={"email": "nologin@example.com", "password": "anything"}
    )
    assert response.status_code == 401


def test_change_own_password(secured_client) -> None:
    admin = _login(secured_client, ADMIN_EMAIL, ADMIN_PASSWORD)
    _create_recruiter(secured_client, admin)
    recruiter = _login(secured_client, "rec@example.com", "recruit-pw")

    changed = secured_client.put("/auth/password", headers=recruiter, json={"new_password": "fresh-pass"})
    assert changed.status_code == 200

    old = secured_client.post("/auth/login", json={"email": "rec@example.com", "password": "recruit-pw"})
    assert old.status_code == 401
    _login(secured_client, "rec@example.com", "fresh-pass")

    other = secured_client.put(
        "/auth/password",
        headers=recruiter,
        json={"new_password": "hijacked", "user_id": "usr_someone_else"},
    )
    assert other.status_code == 403


def test_deleting_recruiter_unassigns_candidates_and_interviews(secured_client) -> None:
    admin = _login(secured_client, ADMIN_EMAIL, ADMIN_PASSWORD)
    recruiter_id = _create_recruiter(secured_client, admin)
    created = secured_client.post(
        "/candidates",
        headers=admin,
        json={
            "first_name": "Lea",
            "last_name": "Vogt",
            "email": "lea@example.com",
            "position": "Backend Engineer",
            "recruiter_id": recruiter_id,
        },
    )
    assert created.status_code == 200
    cid = created.json()["id"]
    assert created.json()["recruiter_id"] == recruiter_id
    interview = secured_client.post(
        "/interviews",
        headers=admin,
        json={"candidate_id": cid, "scheduled_at_utc": "2026-11-04T14:30:00"},
    ).json()
    assert interview["recruiter_id"] == recruiter_id

    deleted = secured_client.delete(f"/recruiters/{recruiter_id}", headers=admin)
    assert deleted.status_code == 200
    assert deleted.json() == {"deleted": recruiter_id, "unassigned_candidates": 1}

    candidate = secured_client.get(f"/candidates/{cid}", headers=admin).json()
    assert candidate["recruiter_id"] is None
    assert candidate["version"] == 2

    interviews = secured_client.get(f"/interviews?candidate_id={cid}", headers=admin).json()
    assert [item["recruiter_id"] for item in interviews] == [None]

    assert secured_client.get("/recruiters", headers=admin).json() == []
    assert secured_client.delete(f"/recruiters/{recruiter_id}", headers=admin).status_code == 404
    response = secured_client.post(
        "/auth/login", json={"email": "rec@example.com", "password": "recruit-pw"}
    )
    assert response.status_code == 401
