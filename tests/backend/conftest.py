from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.app.main import create_app

ISOLATED_ENV = (
    "BOOTSTRAP_ADMIN_EMAIL",
    "BOOTSTRAP_ADMIN_PASSWORD",
    "SESSION_TIMEOUT_MINUTES",
    "SESSION_CHECK_INTERVAL_SECONDS",
    "DATABASE_URL",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SEED_DEFAULT_STAGES", "true")


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    return TestClient(create_app())
