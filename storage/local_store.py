"""On-device record cache plus the durable queue of pending mutations."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlmodel import Session, select

from datetime_utils import ensure_utc, parse_timestamp, utc_now
from models.local_record import LocalRecord, TableSyncMeta
from models.sync_queue_item import OPERATIONS
from services.sync_queue import PendingSyncItem, SyncQueue
from storage.db import get_session
from storage.serialization import dump_json, load_json, to_plain

Change = Tuple[str, str, str, Optional[Dict[str, Any]]]


def _remote_updated_at(data: Dict[str, Any]) -> Optional[datetime]:
    value = data.get("updated_at")
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        return parse_timestamp(value)
    return None


class LocalStore:
    """High level helper around the ``localrecord`` and ``syncqueueitem`` tables.

    Every optimistic write goes through :meth:`apply_changes`, which stores the
    records and their queue items in a single commit. If persistence fails the
    caller sees the exception and none of the rows exist.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = get_session,
        queue: Optional[SyncQueue] = None,
    ):
        self._session_factory = session_factory
        self.queue = queue or SyncQueue(session_factory)

    # ----- queue -----
    def enqueue(self, table_name: str, operation: str, record_id: str, payload: Optional[dict]) -> int:
        return self.queue.enqueue(table_name, operation, record_id, payload)

    def get_pending_sync_items(self, table_name: Optional[str] = None) -> List[PendingSyncItem]:
        return self.queue.pending(table_name)

    def remove_sync_queue_item(self, item_id: int) -> None:
        self.queue.remove(item_id)

    def clear_sync_queue(self) -> int:
        return self.queue.clear()

    def pending_counts(self) -> Dict[str, int]:
        return self.queue.counts_by_table()

    def record_failure(self, item_id: int, error: str, next_try_at: Optional[datetime] = None) -> Optional[int]:
        return self.queue.record_failure(item_id, error, next_try_at)

    def reset_attempts(self, table_name: Optional[str] = None) -> int:
        return self.queue.reset(table_name)

    # ----- durable mutation -----
    def apply_change(
        self,
        table_name: str,
        operation: str,
        record_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Write the optimistic local record and enqueue its sync item; return the item id."""

        (item_id,) = self.apply_changes([(table_name, operation, record_id, payload)])
        return item_id

    def apply_changes(self, changes: Iterable[Change]) -> List[int]:
        """Stage several ``(table, operation, id, payload)`` writes and commit them once.

        Either every record and queue item lands or none does.
        """

        changes = list(changes)
        for _, operation, _, _ in changes:
            if operation not in OPERATIONS:
                raise ValueError(f"Unsupported operation: {operation}")
        now = utc_now()

        with self._session_factory() as session:
            items = []
            for table_name, operation, record_id, payload in changes:
                items.append(self._stage(session, table_name, operation, str(record_id), payload, now))
                session.flush()
            session.commit()
            for item in items:
                session.refresh(item)
            return [item.id for item in items]

    def _stage(self, session: Session, table_name: str, operation: str, key: str, payload, now: datetime):
        delta = to_plain(payload)
        row = session.get(LocalRecord, (table_name, key))
        if operation == "delete":
            if row is None:
                row = LocalRecord(table_name=table_name, record_id=key)
            row.deleted = True
        else:
            base = load_json(row.data) if (row is not None and operation == "update") else {}
            data = {**base, **delta, "id": key}
            if row is None:
                row = LocalRecord(table_name=table_name, record_id=key)
            row.data = dump_json(data)
            row.deleted = False
            if operation == "update":
                delta = {**delta, "id": key}
            else:
                delta = data
        row.sync_status = "pending"
        row.updated_at = now
        session.add(row)

        item = self.queue.build(table_name, operation, key, delta)
        session.add(item)
        return item

    # ----- reads -----
    def get_record(self, table_name: str, record_id: str, *, include_deleted: bool = False) -> Optional[Dict[str, Any]]:
        with self._session_factory() as session:
            row = session.get(LocalRecord, (table_name, str(record_id)))
            if row is None or (row.deleted and not include_deleted):
                return None
            return load_json(row.data)

    def list_records(
        self,
        table_name: str,
        *,
        include_deleted: bool = False,
        synced_only: bool = False,
    ) -> List[Dict[str, Any]]:
        with self._session_factory() as session:
            stmt = select(LocalRecord).where(LocalRecord.table_name == table_name)
            if not include_deleted:
                stmt = stmt.where(LocalRecord.deleted == False)  # noqa: E712
            if synced_only:
                stmt = stmt.where(LocalRecord.sync_status == "synced")
            rows = list(session.exec(stmt.order_by(LocalRecord.updated_at.asc())))
        return [load_json(row.data) for row in rows]

    def find_records(self, table_name: str, **equals: Any) -> List[Dict[str, Any]]:
        return [
            record
            for record in self.list_records(table_name)
            if all(record.get(key) == value for key, value in equals.items())
        ]

    def record_status(self, table_name: str, record_id: str) -> Optional[str]:
        with self._session_factory() as session:
            row = session.get(LocalRecord, (table_name, str(record_id)))
            return row.sync_status if row else None

    def count_unsynced(self, tables: Optional[Iterable[str]] = None) -> Dict[str, int]:
        wanted = set(tables) if tables is not None else None
        counts: Dict[str, int] = {}
        with self._session_factory() as session:
            stmt = select(LocalRecord.table_name).where(LocalRecord.sync_status == "pending")
            for name in session.exec(stmt):
                if wanted is not None and name not in wanted:
                    continue
                counts[name] = counts.get(name, 0) + 1
        return counts

    # ----- sync bookkeeping -----
    def mark_synced(self, table_name: str, record_id: str, when: Optional[datetime] = None) -> bool:
        """Flag the record as synced once no queue item references it.

        Tombstones are purged at that point. Returns ``False`` while other
        mutations for the same record are still queued.
        """

        key = str(record_id)
        if self.queue.has_pending(table_name, key):
            return False
        with self._session_factory() as session:
            row = session.get(LocalRecord, (table_name, key))
            if row is None:
                return True
            if row.deleted:
                session.delete(row)
            else:
                row.sync_status = "synced"
                row.last_synced_at = when or utc_now()
                session.add(row)
            session.commit()
        return True

    def apply_remote_record(self, table_name: str, record_id: str, data: Dict[str, Any]) -> bool:
        """Cache a record pulled from the remote store.

        Local rows with unsynced changes always win. Otherwise the remote copy
        is applied when it is new locally or carries a newer ``updated_at``.
        """

        key = str(record_id)
        incoming = {**to_plain(data), "id": key}
        remote_updated = _remote_updated_at(incoming)
        with self._session_factory() as session:
            row = session.get(LocalRecord, (table_name, key))
            if row is not None:
                if row.sync_status == "pending":
                    return False
                local_updated = _remote_updated_at(load_json(row.data)) or ensure_utc(row.updated_at)
                if remote_updated is None or (local_updated and remote_updated <= local_updated):
                    return False
            else:
                row = LocalRecord(table_name=table_name, record_id=key)
            now = utc_now()
            row.data = dump_json(incoming)
            row.deleted = False
            row.sync_status = "synced"
            row.updated_at = now
            row.last_synced_at = now
            session.add(row)
            session.commit()
        return True

    def apply_remote_delete(self, table_name: str, record_id: str) -> bool:
        with self._session_factory() as session:
            row = session.get(LocalRecord, (table_name, str(record_id)))
            if row is None or row.sync_status == "pending":
                return False
            session.delete(row)
            session.commit()
        return True

    def touch_table_meta(
        self,
        table_name: str,
        *,
        pulled_at: Optional[datetime] = None,
        pushed_at: Optional[datetime] = None,
    ) -> None:
        with self._session_factory() as session:
            row = session.get(TableSyncMeta, table_name)
            if row is None:
                row = TableSyncMeta(table_name=table_name)
            if pulled_at is not None:
                row.last_pull_at = pulled_at
            if pushed_at is not None:
                row.last_push_at = pushed_at
            session.add(row)
            session.commit()

    def table_meta(self, table_name: str) -> Dict[str, Optional[datetime]]:
        with self._session_factory() as session:
            row = session.get(TableSyncMeta, table_name)
            if row is None:
                return {"last_pull_at": None, "last_push_at": None}
            return {
                "last_pull_at": ensure_utc(row.last_pull_at),
                "last_push_at": ensure_utc(row.last_push_at),
            }


__all__ = ["LocalStore"]
