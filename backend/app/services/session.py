from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from backend.app.models import SessionState, utc_now

TRACKED_INTERACTIONS = ("mousedown", "keydown", "mousemove", "scroll", "click")


@dataclass(frozen=True)
class SessionPolicy:
    timeout: timedelta = timedelta(minutes=30)
    check_interval: timedelta = timedelta(seconds=60)


@dataclass(frozen=True)
class SessionCheck:
    state: SessionState
    expires_at_utc: datetime
    remaining: timedelta

    @property
    def expired(self) -> bool:
        return self.state == SessionState.expired


def is_session_expired(*, now: datetime, last_activity: datetime, timeout: timedelta) -> bool:
    return now - last_activity >= timeout


def check_session(
    *, now: datetime, last_activity: datetime, timeout: timedelta
) -> SessionCheck:
    expires_at = last_activity + timeout
    expired = is_session_expired(now=now, last_activity=last_activity, timeout=timeout)
    return SessionCheck(
        state=SessionState.expired if expired else SessionState.active,
        expires_at_utc=expires_at,
        remaining=max(expires_at - now, timedelta(0)),
    )


@dataclass
class SessionContext:
    """Client-held session: the logged in user and the last recorded interaction.

    The owning shell calls ``touch`` on every tracked interaction and ``check``
    on its periodic tick and when entering a protected route.
    """

    user_id: str
    role: str
    last_activity_utc: datetime = field(default_factory=utc_now)
    policy: SessionPolicy = field(default_factory=SessionPolicy)

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_activity_utc = now or utc_now()

    def check(self, now: Optional[datetime] = None) -> SessionCheck:
        return check_session(
            now=now or utc_now(),
            last_activity=self.last_activity_utc,
            timeout=self.policy.timeout,
        )

    def next_check_at(self, now: Optional[datetime] = None) -> datetime:
        return (now or utc_now()) + self.policy.check_interval
