import os
import sys
import tempfile
from pathlib import Path

# keep logs, config and the default database out of the real profile
os.environ.setdefault("SCHOOLDESK_DATA_DIR", tempfile.mkdtemp(prefix="schooldesk-tests-"))

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from core.errors import RemoteStoreError
from core.session import SessionContext
from services.remote_store import RemoteStore
from storage.local_store import LocalStore


class FakeRemoteStore(RemoteStore):
    """In-memory stand-in for the Firebase / Postgres stores."""

    name = "fake"

    def __init__(self):
        self.tables = {}
        self.calls = []
        self.fail_records = set()
        self.fail_all = False
        self._subscribers = {}

    def _check(self, table_name, record_id=None):
        if self.fail_all or (table_name, record_id) in self.fail_records:
            raise RemoteStoreError("remote unavailable", table_name=table_name, record_id=record_id)

    def get(self, table_name, record_id):
        self._check(table_name, record_id)
        record = self.tables.get(table_name, {}).get(record_id)
        return dict(record) if record is not None else None

    def list(self, table_name):
        self._check(table_name)
        return {key: dict(value) for key, value in self.tables.get(table_name, {}).items()}

    def set(self, table_name, record_id, data):
        self.calls.append(("set", table_name, record_id, dict(data)))
        self._check(table_name, record_id)
        self.tables.setdefault(table_name, {})[record_id] = dict(data)
        self._emit(table_name, "put", record_id, dict(data))

    def update(self, table_name, record_id, changes):
        self.calls.append(("update", table_name, record_id, dict(changes)))
        self._check(table_name, record_id)
        merged = {**self.tables.setdefault(table_name, {}).get(record_id, {}), **changes}
        self.tables[table_name][record_id] = merged
        self._emit(table_name, "put", record_id, dict(merged))

    def delete(self, table_name, record_id):
        self.calls.append(("delete", table_name, record_id, None))
        self._check(table_name, record_id)
        self.tables.get(table_name, {}).pop(record_id, None)
        self._emit(table_name, "delete", record_id, None)

    def subscribe(self, table_name, callback):
        self._subscribers.setdefault(table_name, []).append(callback)
        return lambda: self._subscribers[table_name].remove(callback)

    def _emit(self, table_name, event, record_id, data):
        for callback in list(self._subscribers.get(table_name, [])):
            callback(event, record_id, data)


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)

    def factory():
        return Session(engine)

    return factory


@pytest.fixture()
def local_store(session_factory):
    return LocalStore(session_factory)


@pytest.fixture()
def remote():
    return FakeRemoteStore()


@pytest.fixture()
def admin():
    return SessionContext(user_id="u-admin", display_name="Ama Mensah", role="admin", username="admin")


# classes the teacher fixture is assigned to, already pulled from the remote store
TEACHER_CLASSES = {"c-p3": "Primary 3", "c-jhs3": "JHS 3", "c1": "KG 1", "c": "Primary 1"}


@pytest.fixture()
def teacher(local_store):
    for class_id, class_name in TEACHER_CLASSES.items():
        local_store.apply_remote_record(
            "classes",
            class_id,
            {"class_name": class_name, "teacher_ids": ["u-teacher"], "updated_at": "2025-01-01T00:00:00+00:00"},
        )
    return SessionContext(user_id="u-teacher", display_name="Kofi Boateng", role="teacher", username="kofi")


@pytest.fixture()
def accountant():
    return SessionContext(user_id="u-acct", display_name="Esi Owusu", role="accountant", username="esi")


@pytest.fixture()
def break_queue_write(monkeypatch):
    """Make the Nth queue item built from now on fail like a locked database."""

    from sqlalchemy.exc import OperationalError

    from services.sync_queue import SyncQueue

    original = SyncQueue.build

    def arm(number):
        calls = []

        def build(*args, **kwargs):
            calls.append(args)
            if len(calls) == number:
                raise OperationalError("INSERT INTO syncqueueitem", {}, Exception("database is locked"))
            return original(*args, **kwargs)

        monkeypatch.setattr(SyncQueue, "build", staticmethod(build))
        return monkeypatch.undo

    return arm
