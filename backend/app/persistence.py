from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from backend.app.models import AuditAction, AuditEventRecord, CandidateStatus


def _normalize_database_url(database_url: str) -> str:
    value = database_url.strip()
    if value.startswith("sqlite:///"):
        sqlite_path = value[len("sqlite:///") :].split("?", 1)[0]
        if sqlite_path and sqlite_path != ":memory:":
            path = Path(sqlite_path)
            if path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)
        return value
    if "://" in value:
        return value
    path = Path(value)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{str(path).replace(chr(92), '/')}"


def _optional_status(value: Optional[str]) -> Optional[CandidateStatus]:
    return CandidateStatus(value) if value else None


class SqlPersistence:
    """
    SQLAlchemy-backed state store. Works with SQLite paths/URLs and PostgreSQL URLs.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = _normalize_database_url(database_url)
        self._lock = Lock()
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.state_snapshots = Table(
            "state_snapshots",
            self.metadata,
            Column("id", String(50), primary_key=True),
            Column("payload_json", Text, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self.audit_events = Table(
            "audit_events",
            self.metadata,
            Column("seq", Integer, primary_key=True, autoincrement=True),
            Column("id", String(255), nullable=False, unique=True),
            Column("candidate_id", String(255), nullable=False),
            Column("action", String(50), nullable=False),
            Column("from_stage_id", String(255), nullable=True),
            Column("to_stage_id", String(255), nullable=True),
            Column("from_status", String(50), nullable=True),
            Column("to_status", String(50), nullable=True),
            Column("actor_id", String(255), nullable=True),
            Column("reason", Text, nullable=True),
            Column("created_at_utc", DateTime, nullable=False),
            Index("ix_audit_events_candidate_id", "candidate_id"),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def save_snapshot(self, payload: dict) -> None:
        with self._lock:
            serialized = json.dumps(payload)
            now = datetime.utcnow()
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(self.state_snapshots.c.id).where(self.state_snapshots.c.id == "default")
                ).first()
                if existing:
                    conn.execute(
                        self.state_snapshots.update()
                        .where(self.state_snapshots.c.id == "default")
                        .values(payload_json=serialized, updated_at_utc=now)
                    )
                else:
                    conn.execute(
                        self.state_snapshots.insert().values(
                            id="default",
                            payload_json=serialized,
                            updated_at_utc=now,
                        )
                    )

    def load_snapshot(self) -> Optional[dict]:
        with self._lock:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(self.state_snapshots.c.payload_json).where(
                        self.state_snapshots.c.id == "default"
                    )
                ).first()
            if not row:
                return None
            return json.loads(row[0])

    def insert_audit_event(self, record: AuditEventRecord) -> None:
        with self._lock:
            with self.engine.begin() as conn:
                conn.execute(
                    self.audit_events.insert().values(
                        id=record.id,
                        candidate_id=record.candidate_id,
                        action=record.action.value,
                        from_stage_id=record.from_stage_id,
                        to_stage_id=record.to_stage_id,
                        from_status=record.from_status.value if record.from_status else None,
                        to_status=record.to_status.value if record.to_status else None,
                        actor_id=record.actor_id,
                        reason=record.reason,
                        created_at_utc=record.created_at_utc,
                    )
                )

    def list_audit_events(self, candidate_id: Optional[str] = None) -> list[AuditEventRecord]:
        query = select(self.audit_events).order_by(self.audit_events.c.seq.asc())
        if candidate_id:
            query = query.where(self.audit_events.c.candidate_id == candidate_id)
        with self._lock:
            with self.engine.connect() as conn:
                rows = conn.execute(query).all()
        return [
            AuditEventRecord(
                id=row.id,
                candidate_id=row.candidate_id,
                action=AuditAction(row.action),
                from_stage_id=row.from_stage_id,
                to_stage_id=row.to_stage_id,
                from_status=_optional_status(row.from_status),
                to_status=_optional_status(row.to_status),
                actor_id=row.actor_id,
                reason=row.reason,
                created_at_utc=row.created_at_utc or datetime.utcnow(),
            )
            for row in rows
        ]
