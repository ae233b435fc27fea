"""Best-effort audit and login-attempt logging.

Entries are pushed to the remote ``auditLogs`` / ``loginAttempts`` tables on a
single background worker. A failing sink is logged and otherwise ignored; it
never fails the operation that produced the event.
"""
from __future__ import annotations

from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Mapping, Optional

from core.log import get_logger
from core.session import SessionContext
from datetime_utils import to_iso_utc, utc_now
from services.remote_store import RemoteStore
from storage.serialization import to_plain


AUDIT_TABLE = "auditLogs"
LOGIN_TABLE = "loginAttempts"

LOGIN_SUCCESS = "success"
LOGIN_FAILED = "failed"
LOGIN_UNAUTHORIZED = "unauthorized"
LOGIN_STATUSES = (LOGIN_SUCCESS, LOGIN_FAILED, LOGIN_UNAUTHORIZED)

_OPTIONAL_FIELDS = ("user_role", "entity_name", "details", "changes")


def track_changes(old: Mapping[str, Any], new: Mapping[str, Any], fields: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """``{field: {"old": ..., "new": ...}}`` for each listed field whose value differs."""

    changes: Dict[str, Dict[str, Any]] = {}
    for name in fields:
        before, after = old.get(name), new.get(name)
        if before != after:
            changes[name] = {"old": before, "new": after}
    return changes


class AuditLogger:
    def __init__(self, remote: Optional[RemoteStore] = None, executor: Optional[Executor] = None):
        self.remote = remote
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit")
        self._owns_executor = executor is None
        self.logger = get_logger("schooldesk.audit", "audit.log")

    # ------------------------------------------------------------------
    def log_event(
        self,
        actor_id: str,
        actor_name: str,
        action: str,
        entity: str,
        entity_id: str,
        details: Optional[str] = None,
        **extra: Any,
    ) -> Optional[Future]:
        entry: Dict[str, Any] = {
            "user_id": actor_id,
            "user_name": actor_name,
            "action": action,
            "entity": entity,
            "entity_id": str(entity_id),
            "timestamp": to_iso_utc(utc_now()),
        }
        if details:
            entry["details"] = details
        for key in _OPTIONAL_FIELDS:
            if extra.get(key):
                entry[key] = extra[key]
        self.logger.info("%s %s %s by %s", action, entity, entity_id, actor_name)
        return self._submit(AUDIT_TABLE, entry)

    def log_for(
        self,
        session: SessionContext,
        action: str,
        entity: str,
        entity_id: str,
        details: Optional[str] = None,
        **extra: Any,
    ) -> Optional[Future]:
        return self.log_event(
            session.user_id,
            session.display_name,
            action,
            entity,
            entity_id,
            details,
            user_role=session.role,
            **extra,
        )

    def log_login_attempt(
        self,
        user_id: Optional[str],
        identifier: str,
        status: str,
        role: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[Future]:
        entry: Dict[str, Any] = {
            "user_id": user_id or "",
            "username": identifier,
            "status": status if status in LOGIN_STATUSES else LOGIN_FAILED,
            "timestamp": to_iso_utc(utc_now()),
        }
        if role:
            entry["role"] = role
        if error_message:
            entry["error_message"] = error_message
        self.logger.info("login %s for %s", entry["status"], identifier)
        return self._submit(LOGIN_TABLE, entry)

    def recent_events(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Newest first. Returns an empty list when the remote store is unreachable."""

        if self.remote is None:
            return []
        try:
            records = self.remote.list(AUDIT_TABLE)
        except Exception as exc:
            self.logger.warning("Could not read audit log: %s", exc)
            return []
        rows = [{"id": key, **value} for key, value in records.items()]
        rows.sort(key=lambda row: row.get("timestamp") or "", reverse=True)
        return rows[:limit]

    # ------------------------------------------------------------------
    def _submit(self, table_name: str, entry: Dict[str, Any]) -> Optional[Future]:
        if self.remote is None:
            return None
        try:
            return self._executor.submit(self._write, table_name, to_plain(entry))
        except RuntimeError as exc:
            # executor already shut down
            self.logger.warning("Dropped %s entry: %s", table_name, exc)
            return None

    def _write(self, table_name: str, entry: Dict[str, Any]) -> None:
        try:
            self.remote.push(table_name, entry)
        except Exception as exc:
            self.logger.warning("Failed to write %s entry: %s", table_name, exc)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until everything scheduled so far has been attempted."""
        try:
            self._executor.submit(lambda: None).result(timeout=timeout)
        except RuntimeError:
            pass

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)


__all__ = [
    "AUDIT_TABLE",
    "AuditLogger",
    "LOGIN_FAILED",
    "LOGIN_STATUSES",
    "LOGIN_SUCCESS",
    "LOGIN_TABLE",
    "LOGIN_UNAUTHORIZED",
    "track_changes",
]
