"""Interface shared by the Firebase and Postgres remote stores."""
from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, List, Optional

from core.errors import RemoteStoreError
from core.settings import REMOTE

# ``callback(event, record_id, data)``; ``event`` is "put" or "delete" and
# ``data`` is ``None`` for deletes.
ChangeCallback = Callable[[str, str, Optional[Dict[str, Any]]], None]
Unsubscribe = Callable[[], None]


def new_record_id() -> str:
    return uuid.uuid4().hex


class RemoteStore:
    """CRUD keyed by ``table_name`` + ``record_id`` plus per-table change streams.

    Implementations raise :class:`RemoteStoreError` for every failure so the
    sync engine can record it against the queue item.
    """

    name = "remote"

    def get(self, table_name: str, record_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def list(self, table_name: str) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError

    def set(self, table_name: str, record_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def update(self, table_name: str, record_id: str, changes: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, table_name: str, record_id: str) -> None:
        raise NotImplementedError

    def push(self, table_name: str, data: Dict[str, Any]) -> str:
        record_id = new_record_id()
        self.set(table_name, record_id, data)
        return record_id

    def subscribe(self, table_name: str, callback: ChangeCallback) -> Unsubscribe:
        raise NotImplementedError

    def close(self) -> None:
        pass


def create_remote_store(backend: Optional[str] = None) -> RemoteStore:
    """Build the configured backend (``firebase`` or ``postgres``)."""

    choice = (backend or REMOTE.backend or "firebase").strip().lower()
    if choice == "firebase":
        from services.firebase_store import FirebaseRemoteStore

        return FirebaseRemoteStore(
            database_url=REMOTE.firebase_database_url,
            credentials_path=REMOTE.firebase_credentials_path,
        )
    if choice in {"postgres", "postgresql", "sql"}:
        from services.sql_remote_store import SqlRemoteStore

        if not REMOTE.postgres_url:
            raise RemoteStoreError("SCHOOLDESK_POSTGRES_URL is not configured")
        return SqlRemoteStore(REMOTE.postgres_url, table=REMOTE.postgres_table)
    raise RemoteStoreError(f"Unknown remote backend: {choice}")


__all__ = [
    "ChangeCallback",
    "RemoteStore",
    "Unsubscribe",
    "create_remote_store",
    "new_record_id",
]
