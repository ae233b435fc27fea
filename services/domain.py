"""Plumbing shared by the domain services."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from core.errors import ValidationError
from core.log import get_logger
from core.session import SessionContext
from datetime_utils import to_iso_utc, utc_now
from services.audit_log import AuditLogger
from services.remote_store import new_record_id
from storage.local_store import Change, LocalStore


def require_fields(data: Mapping[str, Any], fields: Iterable[str]) -> None:
    missing = [name for name in fields if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


class DomainService:
    """Base for services that write through :meth:`LocalStore.apply_changes`."""

    _listeners: Dict[str, set] = {"after_change": set()}

    def __init__(self, local: Optional[LocalStore] = None, audit: Optional[AuditLogger] = None):
        self.local = local or LocalStore()
        self.audit = audit
        self.logger: logging.Logger = get_logger("schooldesk.ops", "operations.log")

    @classmethod
    def subscribe(cls, event: str, callback: Callable[[str, str], None]) -> None:
        if event not in cls._listeners:
            raise ValueError(f"Unsupported event: {event}")
        cls._listeners[event].add(callback)

    @classmethod
    def unsubscribe(cls, event: str, callback) -> None:
        if event in cls._listeners:
            cls._listeners[event].discard(callback)

    def _emit(self, table_name: str, record_id: str) -> None:
        for listener in list(self._listeners["after_change"]):
            try:
                listener(table_name, record_id)
            except Exception:
                self.logger.exception("Change listener failed for %s/%s", table_name, record_id)

    # ------------------------------------------------------------------
    def _write(self, table_name: str, operation: str, record_id: str, payload: Optional[dict] = None) -> int:
        (item_id,) = self._write_many([(table_name, operation, record_id, payload)])
        return item_id

    def _write_many(self, changes: List[Change]) -> List[int]:
        """Commit related writes together; listeners run only after the commit."""
        item_ids = self.local.apply_changes(changes)
        for (table_name, operation, record_id, _), item_id in zip(changes, item_ids):
            self.logger.info("%s %s/%s queued as #%s", operation, table_name, record_id, item_id)
        for table_name, _, record_id, _ in changes:
            self._emit(table_name, record_id)
        return item_ids

    def _audit(self, session: SessionContext, action: str, entity: str, entity_id: str, details: Optional[str] = None, **extra) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log_for(session, action, entity, entity_id, details, **extra)
        except Exception as exc:
            self.logger.warning("Audit event %s %s/%s dropped: %s", action, entity, entity_id, exc)

    @staticmethod
    def new_id() -> str:
        return new_record_id()

    @staticmethod
    def timestamp() -> str:
        return to_iso_utc(utc_now())


__all__ = ["DomainService", "require_fields"]
