from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from core.errors import DuplicatePaymentError, NotFoundError, PermissionDenied, ValidationError
from services.fees import BALANCES, PAYMENTS, FeeBalance, FeeService, derive_balance
from services.sync_service import RetryPolicy, SyncService


NOW = datetime(2025, 3, 15, 9, 30, tzinfo=timezone.utc)


@pytest.fixture()
def fees(local_store):
    return FeeService(local_store)


def test_derive_balance_statuses():
    assert derive_balance(1000, 1000).status == "paid"
    assert derive_balance(1000, 1000).balance == 0
    assert derive_balance(1000, 400) == derive_balance(1000, 400, "2000-01-01", NOW)
    assert derive_balance(1000, 400).status == "partial"
    assert derive_balance(1000, 400).balance == 600
    assert derive_balance(1000, 0, "2025-03-01", NOW) == FeeBalance(1000, "overdue")
    assert derive_balance(1000, 0, "2025-04-01", NOW).status == "pending"
    assert derive_balance(1000, 0).status == "pending"
    assert derive_balance(1000, 1200).balance == -200
    assert derive_balance(1000, 1200).status == "paid"


def test_record_payment_writes_payment_and_balance(fees, local_store, accountant):
    fees.set_student_fees(accountant, "s1", 1000, student_name="Akua Asante", due_date="2025-04-30")

    receipt = fees.record_payment(accountant, "s1", 400, "cash", student_name="Akua Asante", now=NOW)

    assert receipt.receipt_number == "RCP-202503-0001"
    payment = local_store.get_record(PAYMENTS, receipt.id)
    assert payment["amount"] == 400
    assert payment["is_pending"] is True
    assert payment["recorded_by"] == "Esi Owusu"

    snapshot = local_store.get_record(BALANCES, "s1")
    assert snapshot["amount_paid"] == 400
    assert snapshot["balance"] == 600
    assert snapshot["status"] == "partial"

    ops = [(item.table_name, item.operation) for item in local_store.get_pending_sync_items()]
    assert ops == [(BALANCES, "create"), (PAYMENTS, "create"), (BALANCES, "update")]


def test_receipt_numbers_are_sequential_per_month(fees, accountant):
    first = fees.record_payment(accountant, "s1", 100, "cash", now=NOW)
    second = fees.record_payment(accountant, "s2", 100, "mobile_money", now=NOW)
    april = fees.record_payment(accountant, "s3", 100, "cash", now=datetime(2025, 4, 2, tzinfo=timezone.utc))

    assert first.receipt_number == "RCP-202503-0001"
    assert second.receipt_number == "RCP-202503-0002"
    assert april.receipt_number == "RCP-202504-0001"


def test_duplicate_payment_same_day_and_amount_is_rejected(fees, local_store, accountant):
    fees.record_payment(accountant, "s1", 250, "cash", now=NOW)
    queued = len(local_store.get_pending_sync_items())

    with pytest.raises(DuplicatePaymentError):
        fees.record_payment(accountant, "s1", 250, "bank_transfer", now=NOW.replace(hour=15))

    assert len(local_store.get_pending_sync_items()) == queued
    fees.record_payment(accountant, "s1", 300, "cash", now=NOW)
    fees.record_payment(accountant, "s1", 250, "cash", now=datetime(2025, 3, 16, tzinfo=timezone.utc))


@pytest.mark.parametrize(
    "amount, method",
    [(0, "cash"), (-5, "cash"), ("abc", "cash"), (100, "bitcoin")],
)
def test_invalid_payments_are_rejected(fees, local_store, accountant, amount, method):
    with pytest.raises(ValidationError):
        fees.record_payment(accountant, "s1", amount, method, now=NOW)
    assert local_store.get_pending_sync_items() == []


def test_teachers_cannot_record_payments(fees, teacher):
    with pytest.raises(PermissionDenied):
        fees.record_payment(teacher, "s1", 100, "cash", now=NOW)


def test_get_balance_recomputes_from_the_ledger(fees, accountant):
    fees.set_student_fees(accountant, "s1", 900, due_date="2025-03-01")
    assert fees.get_balance("s1", NOW).status == "overdue"

    fees.record_payment(accountant, "s1", 300, "cash", now=NOW)
    fees.record_payment(accountant, "s1", 600, "cash", now=datetime(2025, 3, 20, tzinfo=timezone.utc))

    balance = fees.get_balance("s1", NOW)
    assert balance.balance == 0
    assert balance.status == "paid"
    with pytest.raises(NotFoundError):
        fees.get_balance("nobody")


def test_outstanding_balances_sorted_by_amount(fees, accountant):
    fees.set_student_fees(accountant, "s1", 500)
    fees.set_student_fees(accountant, "s2", 1500)
    fees.set_student_fees(accountant, "s3", 200)
    fees.record_payment(accountant, "s3", 200, "cash", now=NOW)

    rows = fees.outstanding_balances(NOW)

    assert [row["student_id"] for row in rows] == ["s2", "s1"]


def test_receipt_shows_pending_until_synced(fees, local_store, remote, accountant):
    receipt = fees.record_payment(accountant, "s1", 120, "mobile_money", student_name="Kojo Mensah", now=NOW)

    text = fees.render_receipt(receipt.id)
    assert receipt.receipt_number in text
    assert "PENDING SYNC" in text
    assert "MOBILE MONEY" in text

    SyncService(remote, local_store, policy=RetryPolicy.immediate(), enabled=True).sync_all_tables()

    assert "CONFIRMED" in fees.render_receipt(receipt.id)
    with pytest.raises(NotFoundError):
        fees.render_receipt("missing")


def test_failed_payment_leaves_ledger_and_snapshot_untouched(fees, local_store, accountant, break_queue_write):
    fees.set_student_fees(accountant, "s1", 1000, due_date="2025-04-30")
    restore = break_queue_write(2)

    with pytest.raises(OperationalError):
        fees.record_payment(accountant, "s1", 400, "cash", now=NOW)

    restore()
    assert local_store.list_records(PAYMENTS) == []
    assert local_store.get_record(BALANCES, "s1")["amount_paid"] == 0
    assert [(i.table_name, i.operation) for i in local_store.get_pending_sync_items()] == [(BALANCES, "create")]
