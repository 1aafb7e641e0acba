from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from backend.app.main import create_app
from backend.app.models import CandidateCreateRequest
from backend.app.persistence import SqlPersistence
from backend.app.store import InMemoryStore


def _new_client(monkeypatch, db_path: Path) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "true")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    monkeypatch.setenv("PERSISTENCE_DB_PATH", str(db_path))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{str(db_path).replace(chr(92), '/')}")
    return TestClient(create_app())


def test_candidate_lifecycle_persists_across_restart(monkeypatch, tmp_path) -> None:
    db_path = tmp_path / "recruitment_pipeline.sqlite3"
    first_client = _new_client(monkeypatch, db_path)
    stages = first_client.get("/pipeline-stages").json()
    created = first_client.post(
        "/candidates",
        json={"first_name": "Eva", "last_name": "Lund", "email": "eva@example.com", "position": "Dev"},
    )
    assert created.status_code == 200
    cid = created.json()["id"]
    first_client.post(f"/candidates/{cid}/advance")

    restarted_client = _new_client(monkeypatch, db_path)
    restarted_stages = restarted_client.get("/pipeline-stages").json()
    assert [stage["id"] for stage in restarted_stages] == [stage["id"] for stage in stages]

    candidate = restarted_client.get(f"/candidates/{cid}").json()
    assert candidate["stage_id"] == stages[1]["id"]
    assert candidate["status"] == "in_progress"
    assert candidate["version"] == 2

    history = restarted_client.get(f"/candidates/{cid}/history").json()
    assert [event["action"] for event in history] == ["created", "advanced"]


def test_audit_events_are_written_to_their_own_table(tmp_path) -> None:
    persistence = SqlPersistence(str(tmp_path / "audit.sqlite3"))
    store = InMemoryStore(persistence=persistence)
    store.seed_default_stages()
    stage_id = store.list_stages()[0].id

    candidate = store.create_candidate(
        CandidateCreateRequest(
            first_name="Jon", last_name="Berg", email="jon@example.com", position="Ops", stage_id=stage_id
        ),
        actor_id="usr_admin",
    )
    store.reject_candidate(candidate.id, actor_id="usr_admin", reason="no_go")

    events = persistence.list_audit_events(candidate.id)
    assert [event.action.value for event in events] == ["created", "rejected"]
    assert events[-1].reason == "no_go"
    assert events[-1].to_status.value == "rejected"
    assert persistence.list_audit_events("cand_other") == []

    store.audit_events.clear()
    assert [event.id for event in store.list_audit_events(candidate.id)] == [event.id for event in events]


def test_sqlite_url_creates_missing_parent_directories(tmp_path) -> None:
    db_path = tmp_path / "nested" / "recruitment_pipeline.sqlite3"
    persistence = SqlPersistence(f"sqlite:///{db_path.as_posix()}")
    assert db_path.parent.exists()
    assert persistence.ping()


def test_seed_is_skipped_when_stages_already_exist(monkeypatch, tmp_path) -> None:
    db_path = tmp_path / "recruitment_pipeline.sqlite3"
    first_client = _new_client(monkeypatch, db_path)
    soft = first_client.get("/pipeline-stages").json()[0]["id"]
    first_client.delete(f"/pipeline-stages/{soft}")

    restarted_client = _new_client(monkeypatch, db_path)
    names = [stage["name"] for stage in restarted_client.get("/pipeline-stages").json()]
    assert names == ["Technical Interview", "Client Meeting"]
