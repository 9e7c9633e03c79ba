from __future__ import annotations

from fastapi import Depends, HTTPException, status

from ..auth import get_current_auth_session
from ..enums import AppRole
from ..models import AuthSession

PermissionName = str


PERMISSION_MATRIX: dict[PermissionName, frozenset[AppRole]] = {
    "sessions:read": frozenset({AppRole.ADMIN, AppRole.STUDENT}),
    "sessions:write": frozenset({AppRole.ADMIN}),
    "reports:read": frozenset({AppRole.ADMIN}),
    "timer:write": frozenset({AppRole.ADMIN}),
    "reports:write": frozenset({AppRole.STUDENT}),
    "wizard:write": frozenset({AppRole.STUDENT}),
    "images:generate": frozenset({AppRole.ADMIN, AppRole.STUDENT}),
}

# Roles that can access data from any training session.
GLOBAL_SESSION_SCOPE_ROLES: frozenset[AppRole] = frozenset({AppRole.ADMIN})


def has_permission(auth_session: AuthSession, permission: PermissionName) -> bool:
    allowed_roles = PERMISSION_MATRIX.get(permission)
    if allowed_roles is None:
        raise RuntimeError(f"Unknown permission: {permission}")
    return auth_session.role in allowed_roles


def require_permission(permission: PermissionName):
    def dependency(auth_session: AuthSession = Depends(get_current_auth_session)) -> AuthSession:
        if has_permission(auth_session, permission):
            return auth_session
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions",
        )

    return dependency


def has_global_session_scope(auth_session: AuthSession) -> bool:
    return auth_session.role in GLOBAL_SESSION_SCOPE_ROLES


def assert_session_scope(auth_session: AuthSession, session_id: str) -> None:
    if has_global_session_scope(auth_session):
        return
    participant = auth_session.participant
    if participant is None or participant.session_id != session_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions for this session",
        )
