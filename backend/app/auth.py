from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.app.models import PERMISSION_NAMES, UserRecord, utc_now
from backend.app.settings import Settings

security = HTTPBearer(auto_error=False)

DEV_USER_ID = "dev-local"


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    roles: set[str]

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def issue_access_token(user: UserRecord, settings: Settings) -> tuple[str, datetime]:
    expires_at = utc_now() + timedelta(minutes=settings.access_token_ttl_minutes)
    payload = {
        "sub": user.id,
        "roles": [user.role.value],
        "exp": expires_at,
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, expires_at


def _developer_context() -> AuthContext:
    return AuthContext(
        user_id=DEV_USER_ID,
        roles={"admin", "recruiter"},
    )


def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    settings = get_settings(request)
    if not settings.auth_enabled:
        return _developer_context()

    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing bearer token",
        )

    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="auth token expired",
        ) from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid auth token",
        ) from exc

    subject = payload.get("sub")
    roles = payload.get("roles", [])
    if not isinstance(subject, str) or not subject.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="token missing subject",
        )
    if not isinstance(roles, list):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="token roles must be a list",
        )
    role_set = {str(role).strip() for role in roles if str(role).strip()}
    if not role_set:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="token has no roles",
        )
    return AuthContext(user_id=subject.strip(), roles=role_set)


def require_roles(*required_roles: str) -> Callable[[AuthContext], AuthContext]:
    required = {role.strip() for role in required_roles if role.strip()}

    def dependency(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if required and context.roles.isdisjoint(required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"insufficient role. required any of: {sorted(required)}",
            )
        return context

    return dependency


def require_permission(permission: str) -> Callable[..., AuthContext]:
    """Admins always pass; recruiters need the matching rights toggle switched on."""
    if permission not in PERMISSION_NAMES:
        raise ValueError(f"unknown permission: {permission}")

    def dependency(
        request: Request,
        context: AuthContext = Depends(require_roles("recruiter", "admin")),
    ) -> AuthContext:
        if context.is_admin:
            return context
        store = request.app.state.store
        if not store.has_permission(context.user_id, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"missing permission: {permission}",
            )
        return context

    return dependency
