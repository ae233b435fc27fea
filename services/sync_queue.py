from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from datetime_utils import ensure_utc, utc_now
from models.sync_queue_item import OPERATIONS, SyncQueueItem
from storage.db import get_session
from storage.serialization import dump_json, load_json


MAX_ERROR_LENGTH = 1000


@dataclass
class PendingSyncItem:
    id: int
    table_name: str
    operation: str
    record_id: str
    payload: dict
    timestamp: datetime
    attempts: int
    last_error: Optional[str]
    next_try_at: datetime


def _to_pending(row: SyncQueueItem) -> PendingSyncItem:
    return PendingSyncItem(
        id=row.id,
        table_name=row.table_name,
        operation=row.operation,
        record_id=row.record_id,
        payload=load_json(row.payload),
        timestamp=ensure_utc(row.timestamp),
        attempts=row.attempts,
        last_error=row.last_error,
        next_try_at=ensure_utc(row.next_try_at),
    )


def _ordered(stmt):
    return stmt.order_by(SyncQueueItem.timestamp.asc(), SyncQueueItem.id.asc())


class SyncQueue:
    def __init__(self, session_factory: Callable[[], Session] = get_session):
        self._session_factory = session_factory

    @staticmethod
    def build(table_name: str, operation: str, record_id: str, payload: Optional[dict]) -> SyncQueueItem:
        if operation not in OPERATIONS:
            raise ValueError(f"Unsupported operation: {operation}")
        if not table_name:
            raise ValueError("table_name is required")
        if record_id is None or str(record_id) == "":
            raise ValueError("record_id is required")
        now = utc_now()
        return SyncQueueItem(
            table_name=table_name,
            operation=operation,
            record_id=str(record_id),
            payload=dump_json(payload),
            timestamp=now,
            next_try_at=now,
        )

    def enqueue(self, table_name: str, operation: str, record_id: str, payload: Optional[dict]) -> int:
        record = self.build(table_name, operation, record_id, payload)
        with self._session_factory() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return record.id

    def get(self, item_id: int) -> Optional[PendingSyncItem]:
        with self._session_factory() as session:
            row = session.get(SyncQueueItem, item_id)
            return _to_pending(row) if row else None

    def pending(self, table_name: Optional[str] = None) -> List[PendingSyncItem]:
        with self._session_factory() as session:
            stmt = select(SyncQueueItem)
            if table_name is not None:
                stmt = stmt.where(SyncQueueItem.table_name == table_name)
            rows = list(session.exec(_ordered(stmt)))
        return [_to_pending(row) for row in rows]

    def due(
        self,
        table_name: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
    ) -> List[PendingSyncItem]:
        """Items whose backoff has elapsed and that are not parked."""

        moment = now or utc_now()
        with self._session_factory() as session:
            stmt = select(SyncQueueItem).where(SyncQueueItem.next_try_at <= moment)
            if table_name is not None:
                stmt = stmt.where(SyncQueueItem.table_name == table_name)
            if max_attempts is not None:
                stmt = stmt.where(SyncQueueItem.attempts < max_attempts)
            rows = list(session.exec(_ordered(stmt)))
        return [_to_pending(row) for row in rows]

    def record_failure(self, item_id: int, error: str, next_try_at: Optional[datetime] = None) -> Optional[int]:
        with self._session_factory() as session:
            record = session.get(SyncQueueItem, item_id)
            if not record:
                return None
            record.attempts += 1
            record.last_error = (error or "Unknown error")[:MAX_ERROR_LENGTH]
            record.next_try_at = next_try_at or utc_now()
            session.add(record)
            session.commit()
            return record.attempts

    def remove(self, item_id: int) -> None:
        with self._session_factory() as session:
            record = session.get(SyncQueueItem, item_id)
            if record:
                session.delete(record)
                session.commit()

    def clear(self, table_name: Optional[str] = None) -> int:
        with self._session_factory() as session:
            stmt = select(SyncQueueItem)
            if table_name is not None:
                stmt = stmt.where(SyncQueueItem.table_name == table_name)
            rows = list(session.exec(stmt))
            for row in rows:
                session.delete(row)
            session.commit()
            return len(rows)

    def reset(self, table_name: Optional[str] = None) -> int:
        """Make every (or every ``table_name``) item due now with a fresh attempt count."""

        now = utc_now()
        with self._session_factory() as session:
            stmt = select(SyncQueueItem)
            if table_name is not None:
                stmt = stmt.where(SyncQueueItem.table_name == table_name)
            rows = list(session.exec(stmt))
            for row in rows:
                row.attempts = 0
                row.next_try_at = now
                session.add(row)
            session.commit()
            return len(rows)

    def has_pending(self, table_name: str, record_id: str, *, exclude_id: Optional[int] = None) -> bool:
        with self._session_factory() as session:
            stmt = select(SyncQueueItem.id).where(
                SyncQueueItem.table_name == table_name,
                SyncQueueItem.record_id == str(record_id),
            )
            if exclude_id is not None:
                stmt = stmt.where(SyncQueueItem.id != exclude_id)
            return session.exec(stmt.limit(1)).first() is not None

    def count(self, table_name: Optional[str] = None) -> int:
        with self._session_factory() as session:
            stmt = select(func.count()).select_from(SyncQueueItem)
            if table_name is not None:
                stmt = stmt.where(SyncQueueItem.table_name == table_name)
            return int(session.exec(stmt).one())

    def counts_by_table(self) -> Dict[str, int]:
        with self._session_factory() as session:
            stmt = select(SyncQueueItem.table_name, func.count()).group_by(SyncQueueItem.table_name)
            return {name: int(total) for name, total in session.exec(stmt)}


__all__ = ["MAX_ERROR_LENGTH", "PendingSyncItem", "SyncQueue"]
