from __future__ import annotations

from typing import Iterable, Optional

from backend.app.models import UserRecord


def normalize(value: Optional[str]) -> str:
    if not value:
        return ""
    return " ".join(value.strip().lower().split())


def normalize_email(value: str) -> str:
    return normalize(value).replace(" ", "")


def find_user_by_email(users: Iterable[UserRecord], email: str) -> Optional[UserRecord]:
    wanted = normalize_email(email)
    if not wanted:
        return None
    for user in users:
        if normalize_email(user.email) == wanted:
            return user
    return None


def is_duplicate_email(
    users: Iterable[UserRecord], email: str, *, exclude_user_id: Optional[str] = None
) -> bool:
    wanted = normalize_email(email)
    return any(
        normalize_email(user.email) == wanted and user.id != exclude_user_id for user in users
    )
