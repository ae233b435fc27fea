import threading
from datetime import timedelta

from datetime_utils import to_iso_utc, utc_now
from services.sync_service import (
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_IDLE,
    RetryPolicy,
    SyncService,
)


def make_service(remote, local_store, **kwargs):
    kwargs.setdefault("policy", RetryPolicy.immediate())
    kwargs.setdefault("tables", ["students", "payments", "studentBalances"])
    kwargs.setdefault("enabled", True)
    return SyncService(remote, local_store, **kwargs)


def test_partial_failure_keeps_only_the_failed_item(remote, local_store):
    local_store.enqueue("students", "create", "s1", {"first_name": "Akua"})
    local_store.enqueue("students", "create", "s2", {"first_name": "Kwame"})
    local_store.enqueue("students", "update", "s1", {"class_name": "Primary 3"})
    remote.fail_records.add(("students", "s2"))

    result = make_service(remote, local_store, policy=RetryPolicy()).sync_all_tables()

    assert result.success is False
    assert result.total_synced == 2
    assert len(result.errors) == 1
    assert result.errors[0].record_id == "s2"
    (left,) = local_store.get_pending_sync_items()
    assert left.record_id == "s2"
    assert left.attempts == 1
    assert "remote unavailable" in left.last_error
    assert remote.tables["students"]["s1"] == {"first_name": "Akua", "class_name": "Primary 3"}


def test_operations_map_to_remote_calls_in_queue_order(remote, local_store):
    local_store.enqueue("students", "create", "s1", {"first_name": "Akua"})
    local_store.enqueue("students", "update", "s1", {"last_name": "Asante"})
    local_store.enqueue("students", "delete", "s1", None)

    result = make_service(remote, local_store).sync_all_tables()

    assert result.success is True
    assert result.total_synced == 3
    assert [call[0] for call in remote.calls] == ["set", "update", "delete"]
    assert "s1" not in remote.tables["students"]
    assert local_store.get_pending_sync_items() == []


def test_attempts_grow_by_one_per_failed_pass(remote, local_store):
    local_store.enqueue("payments", "create", "p1", {"amount": 100})
    remote.fail_all = True
    service = make_service(remote, local_store)

    for expected in (1, 2, 3):
        result = service.sync_all_tables()
        assert result.success is False
        (item,) = local_store.get_pending_sync_items()
        assert item.attempts == expected

    remote.fail_all = False
    result = service.sync_all_tables()
    assert result.success is True
    assert local_store.get_pending_sync_items() == []


def test_backoff_defers_failed_items_until_due(remote, local_store):
    local_store.enqueue("payments", "create", "p1", {"amount": 100})
    remote.fail_all = True
    service = make_service(remote, local_store, policy=RetryPolicy(max_attempts=10, base_delay_sec=60))

    service.sync_all_tables()
    remote.fail_all = False
    second = service.sync_all_tables()

    assert second.total_synced == 0
    (item,) = local_store.get_pending_sync_items()
    assert item.attempts == 1
    assert item.next_try_at > utc_now() + timedelta(seconds=30)


def test_parked_items_wait_for_manual_retry(remote, local_store):
    local_store.enqueue("payments", "create", "p1", {"amount": 100})
    remote.fail_all = True
    service = make_service(remote, local_store, policy=RetryPolicy(max_attempts=2, base_delay_sec=0))

    service.sync_all_tables()
    service.sync_all_tables()
    assert len(service.parked_items()) == 1

    remote.fail_all = False
    assert service.sync_all_tables().total_synced == 0

    assert service.retry_failed() == 1
    assert service.sync_all_tables().total_synced == 1
    assert service.parked_items() == []


def test_retry_policy_delays_are_capped():
    policy = RetryPolicy(max_attempts=10, base_delay_sec=2, max_delay_sec=300)
    assert policy.delay_for(0) == 0
    assert policy.delay_for(1) == 2
    assert policy.delay_for(3) == 8
    assert policy.delay_for(20) == 300
    assert policy.is_parked(10)
    assert not RetryPolicy.immediate().is_parked(10_000)


def test_successful_item_marks_local_record_synced(remote, local_store):
    local_store.apply_change("students", "create", "s1", {"first_name": "Akua"})

    make_service(remote, local_store).sync_all_tables()

    assert local_store.record_status("students", "s1") == "synced"
    assert local_store.table_meta("students")["last_push_at"] is not None


def test_concurrent_trigger_is_skipped(remote, local_store):
    local_store.enqueue("students", "create", "s1", {})
    service = make_service(remote, local_store)
    entered = threading.Event()
    release = threading.Event()
    original_set = remote.set

    def slow_set(*args):
        entered.set()
        release.wait(5)
        original_set(*args)

    remote.set = slow_set
    results = []
    worker = threading.Thread(target=lambda: results.append(service.sync_all_tables()))
    worker.start()
    assert entered.wait(5)

    skipped = service.sync_all_tables()
    release.set()
    worker.join(5)

    assert skipped.skipped is True
    assert results[0].total_synced == 1
    assert len(remote.tables["students"]) == 1


def test_disabled_service_does_nothing(remote, local_store):
    local_store.enqueue("students", "create", "s1", {})
    service = make_service(remote, local_store, enabled=False)

    assert service.sync_all_tables().skipped is True
    assert service.pull_all() == {}
    assert remote.calls == []


def test_status_rows_per_table(remote, local_store):
    local_store.enqueue("students", "create", "s1", {})
    local_store.enqueue("payments", "create", "p1", {})
    remote.fail_records.add(("payments", "p1"))
    service = make_service(remote, local_store)

    service.sync_all_tables()
    rows = {row.table_name: row for row in service.get_sync_status()}

    assert rows["students"].status == STATUS_COMPLETED
    assert rows["students"].total == 0
    assert rows["payments"].status == STATUS_ERROR
    assert rows["payments"].total == 1
    assert rows["payments"].error
    assert rows["studentBalances"].status == STATUS_IDLE


def test_listeners_see_start_and_finish(remote, local_store):
    events = []
    service = make_service(remote, local_store)
    remove = service.add_sync_listener(lambda event, result: events.append((event, result)))

    service.sync_all_tables()
    remove()
    service.sync_all_tables()

    assert [event for event, _ in events] == ["started", "finished"]
    assert events[1][1].success is True


def test_clear_queue_reports_dropped_items(remote, local_store):
    local_store.enqueue("students", "create", "s1", {})
    local_store.enqueue("students", "create", "s2", {})
    service = make_service(remote, local_store)

    assert service.clear_queue() == 2
    assert service.status()["queueSize"] == 0


def test_pull_applies_remote_records(remote, local_store):
    stamp = to_iso_utc(utc_now())
    remote.tables["students"] = {
        "s1": {"first_name": "Akua", "updated_at": stamp},
        "s2": {"first_name": "Kojo", "updated_at": stamp},
    }
    service = make_service(remote, local_store)

    applied = service.pull_all()

    assert applied["students"] == 2
    assert local_store.get_record("students", "s2")["first_name"] == "Kojo"
    assert local_store.table_meta("students")["last_pull_at"] is not None


def test_pull_failure_is_logged_not_raised(remote, local_store):
    remote.fail_all = True
    assert make_service(remote, local_store).pull_all() == {}


def test_remote_subscription_updates_local_cache(remote, local_store):
    seen = []
    service = make_service(remote, local_store)
    service.subscribe_remote("students", lambda event, record_id, data: seen.append((event, record_id)))

    remote.set("students", "s9", {"first_name": "Efua", "updated_at": to_iso_utc(utc_now())})
    assert local_store.get_record("students", "s9")["first_name"] == "Efua"

    remote.delete("students", "s9")
    assert local_store.get_record("students", "s9") is None
    assert seen == [("put", "s9"), ("delete", "s9")]

    service.close()
    remote.set("students", "s10", {"first_name": "Ato", "updated_at": to_iso_utc(utc_now())})
    assert local_store.get_record("students", "s10") is None
