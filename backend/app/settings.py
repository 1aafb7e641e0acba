from __future__ import annotations

import os
from dataclasses import dataclass


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _list_env(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_env: str
    persistence_enabled: bool
    persistence_db_path: str
    database_url: str
    auth_enabled: bool
    jwt_secret: str
    jwt_algorithm: str
    access_token_ttl_minutes: int
    session_timeout_minutes: int
    session_check_interval_seconds: int
    seed_default_stages: bool
    bootstrap_admin_email: str
    bootstrap_admin_password: str
    cors_allowed_origins: tuple[str, ...]


def load_settings() -> Settings:
    persistence_db_path = os.getenv(
        "PERSISTENCE_DB_PATH", "data/recruitment_pipeline.sqlite3"
    ).strip()
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        database_url = f"sqlite:///{persistence_db_path.replace(chr(92), '/')}"
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        persistence_enabled=_bool_env("PERSISTENCE_ENABLED", True),
        persistence_db_path=persistence_db_path,
        database_url=database_url,
        auth_enabled=_bool_env("AUTH_ENABLED", False),
        jwt_secret=os.getenv("JWT_SECRET", "dev-only-secret-change-in-prod").strip(),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256").strip(),
        access_token_ttl_minutes=max(5, _int_env("ACCESS_TOKEN_TTL_MINUTES", 12 * 60)),
        session_timeout_minutes=max(1, min(24 * 60, _int_env("SESSION_TIMEOUT_MINUTES", 30))),
        session_check_interval_seconds=max(
            5, min(3600, _int_env("SESSION_CHECK_INTERVAL_SECONDS", 60))
        ),
        seed_default_stages=_bool_env("SEED_DEFAULT_STAGES", True),
        bootstrap_admin_email=os.getenv("BOOTSTRAP_ADMIN_EMAIL", "").strip(),
        bootstrap_admin_password=os.getenv("BOOTSTRAP_ADMIN_PASSWORD", "").strip(),
        cors_allowed_origins=_list_env("CORS_ALLOWED_ORIGINS", "*"),
    )
