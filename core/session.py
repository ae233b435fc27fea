"""Explicit identity of the user performing a domain operation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from core.errors import AuthenticationError, PermissionDenied
from core.roles import ADMIN, ROLES


@dataclass(frozen=True)
class UserIdentity:
    id: str
    username: str
    display_name: str
    role: str


@dataclass(frozen=True)
class SessionContext:
    """Passed into every domain operation instead of a global "current user"."""

    user_id: str
    display_name: str
    role: str
    username: Optional[str] = None

    @classmethod
    def for_user(cls, user: UserIdentity) -> "SessionContext":
        return cls(
            user_id=user.id,
            display_name=user.display_name,
            role=user.role,
            username=user.username,
        )

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def require_session(session: Optional[SessionContext]) -> SessionContext:
    if session is None or not session.user_id:
        raise AuthenticationError("An authenticated user is required")
    if session.role not in ROLES:
        raise AuthenticationError(f"Unknown role: {session.role!r}")
    return session


def require_role(session: Optional[SessionContext], roles: Iterable[str]) -> SessionContext:
    current = require_session(session)
    allowed = set(roles)
    if current.role not in allowed:
        raise PermissionDenied(
            f"Role {current.role!r} may not perform this action (needs one of {sorted(allowed)})"
        )
    return current


__all__ = ["SessionContext", "UserIdentity", "require_role", "require_session"]
