from types import SimpleNamespace

import pytest
from firebase_admin.exceptions import UnavailableError

from core.errors import RemoteStoreError
from services import firebase_store
from services.firebase_store import FirebaseRemoteStore


class FakeReference:
    def __init__(self, tree, path):
        self.tree = tree
        self.path = path
        self.key = path.rsplit("/", 1)[-1]

    def _parts(self):
        return [part for part in self.path.split("/") if part]

    def get(self):
        node = self.tree.data
        for part in self._parts():
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _parent(self):
        node = self.tree.data
        for part in self._parts()[:-1]:
            node = node.setdefault(part, {})
        return node

    def set(self, value):
        if self.tree.offline:
            raise UnavailableError("offline")
        self._parent()[self._parts()[-1]] = dict(value)

    def update(self, value):
        if self.tree.offline:
            raise UnavailableError("offline")
        self._parent().setdefault(self._parts()[-1], {}).update(value)

    def delete(self):
        self._parent().pop(self._parts()[-1], None)

    def push(self, value):
        self.tree.counter += 1
        child = FakeReference(self.tree, f"{self.path}/k{self.tree.counter}")
        child.set(value)
        return child

    def listen(self, callback):
        self.tree.listeners.append(callback)
        return SimpleNamespace(close=lambda: self.tree.listeners.remove(callback))


@pytest.fixture()
def tree(monkeypatch):
    state = SimpleNamespace(data={}, offline=False, counter=0, listeners=[])
    monkeypatch.setattr(firebase_store, "db", SimpleNamespace(reference=lambda path, app=None: FakeReference(state, path)))
    return state


@pytest.fixture()
def store(tree):
    return FirebaseRemoteStore("https://example.firebaseio.com", app=object())


def test_crud_against_database_paths(store, tree):
    store.set("students", "s1", {"first_name": "Akua"})
    store.update("students", "s1", {"class_name": "KG 1"})
    assert tree.data == {"students": {"s1": {"first_name": "Akua", "class_name": "KG 1"}}}
    assert store.get("students", "s1") == {"first_name": "Akua", "class_name": "KG 1"}
    assert store.list("students") == {"s1": {"first_name": "Akua", "class_name": "KG 1"}}

    store.delete("students", "s1")
    assert store.get("students", "s1") is None
    assert store.list("payments") == {}


def test_push_returns_generated_key(store, tree):
    key = store.push("auditLogs", {"action": "login"})
    assert tree.data["auditLogs"][key] == {"action": "login"}


def test_firebase_errors_become_remote_store_errors(store, tree):
    tree.offline = True
    with pytest.raises(RemoteStoreError) as excinfo:
        store.set("payments", "p1", {"amount": 5})
    assert excinfo.value.table_name == "payments"
    assert excinfo.value.record_id == "p1"


def test_missing_url_is_reported():
    with pytest.raises(RemoteStoreError):
        FirebaseRemoteStore("").connect()


def test_listen_events_are_translated(store, tree):
    tree.data = {"students": {"s2": {"first_name": "Yaw", "class_name": "KG 2"}}}
    events = []
    unsubscribe = store.subscribe("students", lambda event, record_id, data: events.append((event, record_id, data)))
    (listener,) = tree.listeners

    listener(SimpleNamespace(event_type="put", path="/", data={"s1": {"first_name": "Akua"}}))
    listener(SimpleNamespace(event_type="put", path="/s1", data=None))
    listener(SimpleNamespace(event_type="patch", path="/s2", data={"class_name": "KG 2"}))

    assert events == [
        ("put", "s1", {"first_name": "Akua"}),
        ("delete", "s1", None),
        ("put", "s2", {"first_name": "Yaw", "class_name": "KG 2"}),
    ]
    unsubscribe()
    assert tree.listeners == []
