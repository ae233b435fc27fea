from __future__ import annotations

from typing import List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from core.errors import AuthenticationError, NotFoundError, PermissionDenied, ValidationError
from core.log import get_logger
from core.roles import ADMIN, ROLES, normalize_role
from core.session import SessionContext, UserIdentity, require_role
from services.audit_log import AuditLogger, LOGIN_FAILED, LOGIN_SUCCESS, LOGIN_UNAUTHORIZED
from services.domain import DomainService
from services.remote_store import RemoteStore
from storage.local_store import LocalStore


USERS = "users"
MIN_SECRET_LENGTH = 6
INVALID_CREDENTIALS = "Invalid username or password"


def _normalize_identifier(value: str) -> str:
    return (value or "").strip().lower()


def _identity(record: dict) -> UserIdentity:
    return UserIdentity(
        id=record["id"],
        username=record.get("username", ""),
        display_name=record.get("display_name") or record.get("username", ""),
        role=record.get("role", ""),
    )


class AuthService(DomainService):
    """Username/password sign-in against the ``users`` table.

    The local cache is consulted first; a user that has not been pulled yet
    is looked up in the remote store and cached on success.
    """

    def __init__(
        self,
        local: Optional[LocalStore] = None,
        remote: Optional[RemoteStore] = None,
        audit: Optional[AuditLogger] = None,
    ):
        super().__init__(local, audit)
        self.remote = remote
        self.logger = get_logger("schooldesk.auth", "auth.log")

    # ------------------------------------------------------------------
    def _find_local(self, identifier: str) -> Optional[dict]:
        wanted = _normalize_identifier(identifier)
        for record in self.local.list_records(USERS):
            if _normalize_identifier(record.get("username", "")) == wanted:
                return record
        return None

    def _find_remote(self, identifier: str) -> Optional[dict]:
        if self.remote is None:
            return None
        wanted = _normalize_identifier(identifier)
        try:
            users = self.remote.list(USERS)
        except Exception as exc:
            self.logger.warning("Remote user lookup failed: %s", exc)
            return None
        for record_id, record in users.items():
            if _normalize_identifier(record.get("username", "")) == wanted:
                record = {**record, "id": record_id}
                self.local.apply_remote_record(USERS, record_id, record)
                return record
        return None

    def find_user(self, identifier: str) -> Optional[dict]:
        return self._find_local(identifier) or self._find_remote(identifier)

    def list_users(self) -> List[UserIdentity]:
        records = sorted(self.local.list_records(USERS), key=lambda r: r.get("username", ""))
        return [_identity(record) for record in records]

    # ------------------------------------------------------------------
    def login(self, identifier: str, secret: str) -> SessionContext:
        if not identifier or not secret:
            self._log_attempt(None, identifier or "", LOGIN_FAILED, error="Missing credentials")
            raise AuthenticationError(INVALID_CREDENTIALS)

        record = self.find_user(identifier)
        if record is None or not check_password_hash(record.get("password_hash") or "", secret):
            self._log_attempt(record.get("id") if record else None, identifier, LOGIN_FAILED, error=INVALID_CREDENTIALS)
            raise AuthenticationError(INVALID_CREDENTIALS)

        role = normalize_role(record.get("role"))
        if role is None or record.get("active") is False:
            self._log_attempt(record["id"], identifier, LOGIN_UNAUTHORIZED, role=record.get("role"), error="Account not permitted")
            raise AuthenticationError("This account is not allowed to sign in")

        session = SessionContext.for_user(_identity({**record, "role": role}))
        self._log_attempt(session.user_id, identifier, LOGIN_SUCCESS, role=role)
        self._audit(session, "login", "user", session.user_id)
        return session

    def logout(self, session: SessionContext) -> None:
        self._audit(session, "logout", "user", session.user_id)
        self.logger.info("Signed out %s", session.username or session.user_id)

    def _log_attempt(self, user_id, identifier, status, *, role=None, error=None) -> None:
        self.logger.info("Login %s for %r", status, identifier)
        if self.audit is None:
            return
        try:
            self.audit.log_login_attempt(user_id, identifier, status, role, error)
        except Exception as exc:
            self.logger.warning("Login attempt not recorded: %s", exc)

    # ------------------------------------------------------------------
    def create_user(
        self,
        identifier: str,
        secret: str,
        display_name: str,
        role: str,
        session: Optional[SessionContext] = None,
    ) -> UserIdentity:
        """Create an account.

        Without ``session`` this only works while neither the local cache nor
        the remote store holds a user, which is how the first administrator
        is created. An unreachable remote store refuses the request.
        """

        if session is not None:
            actor = require_role(session, (ADMIN,))
        else:
            self._check_bootstrap()
            actor = None

        username = _normalize_identifier(identifier)
        if not username:
            raise ValidationError("Username is required")
        if len(secret or "") < MIN_SECRET_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_SECRET_LENGTH} characters")
        normalized = normalize_role(role)
        if normalized is None:
            raise ValidationError(f"Unknown role {role!r}; expected one of {', '.join(ROLES)}")
        if self._find_local(username) is not None:
            raise ValidationError(f"User {username!r} already exists")

        record_id = self.new_id()
        stamp = self.timestamp()
        self._write(
            USERS,
            "create",
            record_id,
            {
                "username": username,
                "display_name": (display_name or username).strip(),
                "role": normalized,
                "password_hash": generate_password_hash(secret),
                "active": True,
                "created_at": stamp,
                "updated_at": stamp,
            },
        )
        if actor is not None:
            self._audit(actor, "create", "user", record_id, f"Role {normalized}", entity_name=username)
        self.logger.info("Created %s account %r", normalized, username)
        return UserIdentity(id=record_id, username=username, display_name=(display_name or username).strip(), role=normalized)

    def _check_bootstrap(self) -> None:
        """Allow an unauthenticated account only while no user exists anywhere."""

        if self.local.list_records(USERS):
            raise PermissionDenied("Only an administrator can create accounts")
        if self.remote is None:
            return
        try:
            users = self.remote.list(USERS)
        except Exception as exc:
            self.logger.warning("First account refused; remote users unavailable: %s", exc)
            raise PermissionDenied("Connect to the school server before creating the first account") from exc
        if users:
            for record_id, record in users.items():
                self.local.apply_remote_record(USERS, record_id, {**record, "id": record_id})
            raise PermissionDenied("Only an administrator can create accounts")

    def change_password(self, session: SessionContext, user_id: str, new_secret: str) -> None:
        if session.user_id != user_id:
            require_role(session, (ADMIN,))
        if len(new_secret or "") < MIN_SECRET_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_SECRET_LENGTH} characters")
        if self.local.get_record(USERS, user_id) is None:
            raise NotFoundError(f"Unknown user {user_id}")
        self._write(
            USERS,
            "update",
            user_id,
            {"password_hash": generate_password_hash(new_secret), "updated_at": self.timestamp()},
        )
        self._audit(session, "update", "user", user_id, "Password changed")


__all__ = ["AuthService", "MIN_SECRET_LENGTH"]
