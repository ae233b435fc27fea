"""Firebase Realtime Database client used by the sync engine."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import credentials, db
from firebase_admin.exceptions import FirebaseError

from core.errors import RemoteStoreError
from services.remote_store import ChangeCallback, RemoteStore, Unsubscribe


logger = logging.getLogger("schooldesk.remote")

_APP_NAME = "schooldesk"
_FAILURES = (FirebaseError, ValueError, OSError)


class FirebaseRemoteStore(RemoteStore):
    name = "firebase"

    def __init__(self, database_url: str, credentials_path: str | Path | None = None, app=None) -> None:
        self.database_url = database_url
        self.credentials_path = Path(credentials_path) if credentials_path else None
        self.app = app
        self._listeners: list = []

    # ------------------------------------------------------------------
    # Initialisation helpers
    def connect(self) -> None:
        if self.app is not None:
            return
        if not self.database_url:
            raise RemoteStoreError("Firebase database URL is not configured")
        try:
            self.app = firebase_admin.get_app(_APP_NAME)
            return
        except ValueError:
            pass

        if self.credentials_path and self.credentials_path.exists():
            cred = credentials.Certificate(str(self.credentials_path))
        else:
            # Falls back to GOOGLE_APPLICATION_CREDENTIALS / metadata server.
            cred = credentials.ApplicationDefault()
        try:
            self.app = firebase_admin.initialize_app(
                cred, {"databaseURL": self.database_url}, name=_APP_NAME
            )
        except _FAILURES as exc:
            raise RemoteStoreError(f"Firebase initialisation failed: {exc}") from exc

    def _ref(self, *parts: str):
        self.connect()
        path = "/".join(str(p).strip("/") for p in parts if p)
        return db.reference(path, app=self.app)

    # ------------------------------------------------------------------
    # CRUD helpers
    def get(self, table_name: str, record_id: str) -> Optional[Dict[str, Any]]:
        try:
            value = self._ref(table_name, record_id).get()
        except _FAILURES as exc:
            raise RemoteStoreError(str(exc), table_name=table_name, record_id=record_id) from exc
        return value if isinstance(value, dict) else None

    def list(self, table_name: str) -> Dict[str, Dict[str, Any]]:
        try:
            value = self._ref(table_name).get()
        except _FAILURES as exc:
            raise RemoteStoreError(str(exc), table_name=table_name) from exc
        if not isinstance(value, dict):
            return {}
        return {key: record for key, record in value.items() if isinstance(record, dict)}

    def set(self, table_name: str, record_id: str, data: Dict[str, Any]) -> None:
        try:
            self._ref(table_name, record_id).set(data)
        except _FAILURES as exc:
            raise RemoteStoreError(str(exc), table_name=table_name, record_id=record_id) from exc

    def update(self, table_name: str, record_id: str, changes: Dict[str, Any]) -> None:
        if not changes:
            return
        try:
            self._ref(table_name, record_id).update(changes)
        except _FAILURES as exc:
            raise RemoteStoreError(str(exc), table_name=table_name, record_id=record_id) from exc

    def delete(self, table_name: str, record_id: str) -> None:
        try:
            self._ref(table_name, record_id).delete()
        except _FAILURES as exc:
            raise RemoteStoreError(str(exc), table_name=table_name, record_id=record_id) from exc

    def push(self, table_name: str, data: Dict[str, Any]) -> str:
        try:
            ref = self._ref(table_name).push(data)
        except _FAILURES as exc:
            raise RemoteStoreError(str(exc), table_name=table_name) from exc
        return ref.key

    # ------------------------------------------------------------------
    # Change streams
    def subscribe(self, table_name: str, callback: ChangeCallback) -> Unsubscribe:
        def _on_event(event) -> None:
            path = (event.path or "/").strip("/")
            if not path:
                for record_id, record in (event.data or {}).items():
                    if isinstance(record, dict):
                        callback("put", record_id, record)
                return
            record_id = path.split("/", 1)[0]
            if event.event_type == "put" and "/" not in path:
                if event.data is None:
                    callback("delete", record_id, None)
                elif isinstance(event.data, dict):
                    callback("put", record_id, event.data)
                return
            # patch events and nested paths carry partial data; re-read the record
            try:
                record = self.get(table_name, record_id)
            except RemoteStoreError as exc:
                logger.warning("Could not refresh %s/%s after change: %s", table_name, record_id, exc)
                return
            if record is None:
                callback("delete", record_id, None)
            else:
                callback("put", record_id, record)

        try:
            registration = self._ref(table_name).listen(_on_event)
        except _FAILURES as exc:
            raise RemoteStoreError(str(exc), table_name=table_name) from exc
        self._listeners.append(registration)

        def _unsubscribe() -> None:
            if registration in self._listeners:
                self._listeners.remove(registration)
            registration.close()

        return _unsubscribe

    def close(self) -> None:
        for registration in list(self._listeners):
            try:
                registration.close()
            except _FAILURES as exc:  # pragma: no cover - best effort shutdown
                logger.debug("Listener close failed: %s", exc)
        self._listeners.clear()


__all__ = ["FirebaseRemoteStore"]
