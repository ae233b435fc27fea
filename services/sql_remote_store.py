"""Postgres-backed remote store: one table of JSON documents."""
from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, MetaData, String, Table, and_, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import RemoteStoreError
from datetime_utils import utc_now
from services.remote_store import ChangeCallback, RemoteStore, Unsubscribe
from storage.serialization import to_plain


def build_table(metadata: MetaData, name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("table_name", String(64), primary_key=True),
        Column("record_id", String(128), primary_key=True),
        Column("data", JSON, nullable=False),
        Column("updated_at", DateTime(timezone=True), nullable=False),
    )


class SqlRemoteStore(RemoteStore):
    """Document store over SQLAlchemy Core.

    Change notifications are delivered in-process, after the write commits,
    to subscribers of the same :class:`SqlRemoteStore` instance.
    """

    name = "postgres"

    def __init__(self, url: Optional[str] = None, *, engine: Optional[Engine] = None, table: str = "remote_records"):
        if engine is None:
            if not url:
                raise RemoteStoreError("A database URL or engine is required")
            engine = create_engine(url, pool_pre_ping=True)
        self.engine = engine
        self.metadata = MetaData()
        self.table = build_table(self.metadata, table)
        self._subscribers: Dict[str, List[ChangeCallback]] = {}
        self._lock = threading.Lock()
        self._ready = False

    def _ensure_schema(self) -> None:
        if self._ready:
            return
        try:
            self.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise RemoteStoreError(f"Cannot prepare remote schema: {exc}") from exc
        self._ready = True

    def _key(self, table_name: str, record_id: str):
        return and_(self.table.c.table_name == table_name, self.table.c.record_id == str(record_id))

    # ----- reads -----
    def get(self, table_name: str, record_id: str) -> Optional[Dict[str, Any]]:
        self._ensure_schema()
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(self.table.c.data).where(self._key(table_name, record_id))).first()
        except SQLAlchemyError as exc:
            raise RemoteStoreError(str(exc), table_name=table_name, record_id=record_id) from exc
        return dict(row[0]) if row else None

    def list(self, table_name: str) -> Dict[str, Dict[str, Any]]:
        self._ensure_schema()
        stmt = select(self.table.c.record_id, self.table.c.data).where(self.table.c.table_name == table_name)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise RemoteStoreError(str(exc), table_name=table_name) from exc
        return {record_id: dict(data) for record_id, data in rows}

    # ----- writes -----
    def _write(self, table_name: str, record_id: str, data: Dict[str, Any], *, merge: bool) -> Dict[str, Any]:
        self._ensure_schema()
        key = str(record_id)
        try:
            with self.engine.begin() as conn:
                current = conn.execute(select(self.table.c.data).where(self._key(table_name, key))).first()
                document = {**dict(current[0]), **data} if (current and merge) else dict(data)
                values = {"data": document, "updated_at": utc_now()}
                if current is None:
                    conn.execute(self.table.insert().values(table_name=table_name, record_id=key, **values))
                else:
                    conn.execute(self.table.update().where(self._key(table_name, key)).values(**values))
        except SQLAlchemyError as exc:
            raise RemoteStoreError(str(exc), table_name=table_name, record_id=key) from exc
        return document

    def set(self, table_name: str, record_id: str, data: Dict[str, Any]) -> None:
        document = self._write(table_name, record_id, to_plain(data), merge=False)
        self._notify(table_name, "put", str(record_id), document)

    def update(self, table_name: str, record_id: str, changes: Dict[str, Any]) -> None:
        document = self._write(table_name, record_id, to_plain(changes), merge=True)
        self._notify(table_name, "put", str(record_id), document)

    def delete(self, table_name: str, record_id: str) -> None:
        self._ensure_schema()
        try:
            with self.engine.begin() as conn:
                conn.execute(self.table.delete().where(self._key(table_name, record_id)))
        except SQLAlchemyError as exc:
            raise RemoteStoreError(str(exc), table_name=table_name, record_id=record_id) from exc
        self._notify(table_name, "delete", str(record_id), None)

    # ----- change streams -----
    def subscribe(self, table_name: str, callback: ChangeCallback) -> Unsubscribe:
        with self._lock:
            self._subscribers.setdefault(table_name, []).append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(table_name, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return _unsubscribe

    def _notify(self, table_name: str, event: str, record_id: str, data: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(table_name, []))
        for callback in callbacks:
            callback(event, record_id, data)

    def close(self) -> None:
        with self._lock:
            self._subscribers.clear()
        self.engine.dispose()


__all__ = ["SqlRemoteStore", "build_table"]
