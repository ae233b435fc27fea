from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from datetime_utils import to_iso_utc, utc_now
from services.sync_queue import SyncQueue


def test_enqueue_adds_exactly_one_item_with_zero_attempts(local_store):
    before = local_store.get_pending_sync_items()
    item_id = local_store.enqueue("students", "create", "s1", {"first_name": "Abena"})

    items = local_store.get_pending_sync_items()
    assert len(items) == len(before) + 1
    new = [item for item in items if item.id == item_id]
    assert len(new) == 1
    assert new[0].attempts == 0
    assert new[0].payload == {"first_name": "Abena"}
    assert new[0].last_error is None


def test_enqueue_rejects_unknown_operation(local_store):
    with pytest.raises(ValueError):
        local_store.enqueue("students", "upsert", "s1", {})
    assert local_store.get_pending_sync_items() == []


def test_pending_items_are_oldest_first_and_filterable(local_store):
    first = local_store.enqueue("students", "create", "s1", {})
    local_store.enqueue("payments", "create", "p1", {})
    third = local_store.enqueue("students", "update", "s1", {"class_name": "Primary 2"})

    students = local_store.get_pending_sync_items("students")
    assert [item.id for item in students] == [first, third]
    assert len(local_store.get_pending_sync_items()) == 3


def test_remove_is_a_noop_for_missing_items(local_store):
    item_id = local_store.enqueue("students", "create", "s1", {})
    local_store.remove_sync_queue_item(item_id)
    local_store.remove_sync_queue_item(item_id)
    local_store.remove_sync_queue_item(987654)
    assert local_store.get_pending_sync_items() == []


def test_clear_sync_queue_empties_everything(local_store):
    for idx in range(4):
        local_store.enqueue("attendance", "create", f"a{idx}", {})
    local_store.queue.record_failure(local_store.get_pending_sync_items()[0].id, "boom")

    assert local_store.clear_sync_queue() == 4
    assert local_store.get_pending_sync_items() == []


def test_apply_change_writes_record_and_queue_item_together(local_store):
    item_id = local_store.apply_change("students", "create", "s1", {"first_name": "Yaw", "class_name": "KG 1"})

    assert local_store.get_record("students", "s1") == {"id": "s1", "first_name": "Yaw", "class_name": "KG 1"}
    assert local_store.record_status("students", "s1") == "pending"
    (item,) = local_store.get_pending_sync_items()
    assert item.id == item_id
    assert item.operation == "create"
    assert item.payload["first_name"] == "Yaw"


def test_apply_change_update_merges_locally_but_queues_the_delta(local_store):
    local_store.apply_change("students", "create", "s1", {"first_name": "Yaw", "class_name": "KG 1"})
    local_store.apply_change("students", "update", "s1", {"class_name": "KG 2"})

    assert local_store.get_record("students", "s1")["class_name"] == "KG 2"
    assert local_store.get_record("students", "s1")["first_name"] == "Yaw"
    update = local_store.get_pending_sync_items()[-1]
    assert update.payload == {"class_name": "KG 2", "id": "s1"}


def test_apply_change_delete_leaves_a_tombstone_until_synced(local_store):
    local_store.apply_change("students", "create", "s1", {"first_name": "Yaw"})
    local_store.apply_change("students", "delete", "s1")

    assert local_store.get_record("students", "s1") is None
    assert local_store.get_record("students", "s1", include_deleted=True) is not None
    assert local_store.list_records("students") == []


def test_failed_persistence_leaves_no_queue_item(local_store, monkeypatch):
    def broken_build(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(SyncQueue, "build", staticmethod(broken_build))
    with pytest.raises(RuntimeError):
        local_store.apply_change("students", "create", "s1", {"first_name": "Yaw"})

    monkeypatch.undo()
    assert local_store.get_pending_sync_items() == []
    assert local_store.get_record("students", "s1") is None


def test_mark_synced_waits_for_the_last_pending_item(local_store):
    first = local_store.apply_change("students", "create", "s1", {"first_name": "Yaw"})
    local_store.apply_change("students", "update", "s1", {"first_name": "Yaw K."})

    local_store.remove_sync_queue_item(first)
    assert local_store.mark_synced("students", "s1") is False
    assert local_store.record_status("students", "s1") == "pending"

    for item in local_store.get_pending_sync_items():
        local_store.remove_sync_queue_item(item.id)
    assert local_store.mark_synced("students", "s1") is True
    assert local_store.record_status("students", "s1") == "synced"


def test_remote_record_never_overwrites_pending_local_changes(local_store):
    local_store.apply_change("students", "create", "s1", {"first_name": "Local", "updated_at": to_iso_utc(utc_now())})
    newer = to_iso_utc(utc_now() + timedelta(hours=1))

    assert local_store.apply_remote_record("students", "s1", {"first_name": "Remote", "updated_at": newer}) is False
    assert local_store.get_record("students", "s1")["first_name"] == "Local"


def test_remote_record_applies_only_when_newer(local_store):
    now = utc_now()
    assert local_store.apply_remote_record("students", "s2", {"first_name": "A", "updated_at": to_iso_utc(now)})
    assert local_store.record_status("students", "s2") == "synced"

    older = to_iso_utc(now - timedelta(minutes=5))
    assert local_store.apply_remote_record("students", "s2", {"first_name": "Old", "updated_at": older}) is False
    assert local_store.get_record("students", "s2")["first_name"] == "A"

    newer = to_iso_utc(now + timedelta(minutes=5))
    assert local_store.apply_remote_record("students", "s2", {"first_name": "New", "updated_at": newer}) is True
    assert local_store.get_record("students", "s2")["first_name"] == "New"


def test_count_unsynced_and_pending_counts(local_store):
    local_store.apply_change("students", "create", "s1", {})
    local_store.apply_change("payments", "create", "p1", {})
    local_store.apply_change("payments", "create", "p2", {})

    assert local_store.count_unsynced(["payments"]) == {"payments": 2}
    assert local_store.pending_counts() == {"students": 1, "payments": 2}


def test_apply_changes_commits_a_batch_together(local_store):
    ids = local_store.apply_changes(
        [
            ("students", "create", "s1", {"first_name": "Yaw"}),
            ("students", "update", "s1", {"class_name": "KG 2"}),
            ("applications", "update", "a1", {"status": "approved"}),
        ]
    )

    items = local_store.get_pending_sync_items()
    assert [item.id for item in items] == ids
    assert local_store.get_record("students", "s1") == {"id": "s1", "first_name": "Yaw", "class_name": "KG 2"}
    assert items[1].payload == {"class_name": "KG 2", "id": "s1"}


def test_apply_changes_rolls_back_every_write_on_failure(local_store, break_queue_write):
    local_store.apply_change("students", "create", "s1", {"first_name": "Yaw"})
    restore = break_queue_write(2)

    with pytest.raises(OperationalError):
        local_store.apply_changes(
            [
                ("students", "update", "s1", {"class_name": "KG 2"}),
                ("payments", "create", "p1", {"amount": 50}),
            ]
        )

    restore()
    assert local_store.get_record("students", "s1") == {"id": "s1", "first_name": "Yaw"}
    assert local_store.get_record("payments", "p1") is None
    assert len(local_store.get_pending_sync_items()) == 1
    with pytest.raises(ValueError):
        local_store.apply_changes([("students", "create", "s2", {}), ("students", "upsert", "s2", {})])
    assert local_store.get_record("students", "s2") is None
