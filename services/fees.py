"""Fee payments, receipts and the per-student balance snapshot."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Mapping, Optional, Union

from core.errors import DuplicatePaymentError, NotFoundError, ValidationError
from core.roles import ACCOUNTANT, ADMIN
from core.session import SessionContext, require_role
from core.settings import SCHOOL
from datetime_utils import as_date, ensure_utc, is_past, parse_timestamp, to_iso_utc, utc_now
from services.domain import DomainService


PAYMENTS = "payments"
BALANCES = "studentBalances"

PAYMENT_METHODS = ("cash", "mobile_money", "bank_transfer", "cheque")

PAID = "paid"
PARTIAL = "partial"
OVERDUE = "overdue"
PENDING = "pending"


@dataclass(frozen=True)
class FeeBalance:
    balance: float
    status: str


@dataclass(frozen=True)
class PaymentReceipt:
    id: str
    receipt_number: str


def derive_balance(
    total_fees: float,
    amount_paid: float,
    due_date: Union[str, date, datetime, None] = None,
    now: Optional[datetime] = None,
) -> FeeBalance:
    total = float(total_fees or 0)
    paid = float(amount_paid or 0)
    balance = round(total - paid, 2)
    if balance <= 0:
        status = PAID
    elif 0 < paid < total:
        status = PARTIAL
    elif paid == 0 and is_past(due_date, now):
        status = OVERDUE
    else:
        status = PENDING
    return FeeBalance(balance=balance, status=status)


def sum_payments(payments: Iterable[Mapping]) -> float:
    return round(sum(float(p.get("amount") or 0) for p in payments), 2)


class FeeService(DomainService):
    # ------------------------------------------------------------------
    # Ledger reads
    def payments_for(self, student_id: str) -> List[dict]:
        return self.local.find_records(PAYMENTS, student_id=student_id)

    def amount_paid(self, student_id: str) -> float:
        return sum_payments(self.payments_for(student_id))

    def next_receipt_number(self, now: Optional[datetime] = None) -> str:
        moment = ensure_utc(now) or utc_now()
        stem = f"{SCHOOL.receipt_prefix}-{moment.year}{moment.month:02d}"
        highest = 0
        for payment in self.local.list_records(PAYMENTS, include_deleted=True):
            number = str(payment.get("receipt_number") or "")
            if not number.startswith(stem + "-"):
                continue
            try:
                highest = max(highest, int(number.rsplit("-", 1)[1]))
            except ValueError:
                continue
        return f"{stem}-{highest + 1:04d}"

    # ------------------------------------------------------------------
    # Operations
    def record_payment(
        self,
        session: SessionContext,
        student_id: str,
        amount: float,
        method: str,
        *,
        student_name: str = "",
        class_name: str = "",
        payment_date: Union[str, datetime, None] = None,
        term_id: Optional[str] = None,
        academic_year: Optional[str] = None,
        remarks: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PaymentReceipt:
        actor = require_role(session, (ADMIN, ACCOUNTANT))
        if not student_id:
            raise ValidationError("student_id is required")
        try:
            value = round(float(amount), 2)
        except (TypeError, ValueError):
            raise ValidationError("Amount must be a number") from None
        if value <= 0:
            raise ValidationError("Amount must be greater than zero")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method: {method!r}")

        moment = ensure_utc(now) or utc_now()
        if isinstance(payment_date, str):
            paid_at = parse_timestamp(payment_date)
            if paid_at is None:
                raise ValidationError(f"Invalid payment date: {payment_date!r}")
        else:
            paid_at = ensure_utc(payment_date) or moment
        day = paid_at.date()

        existing = self.payments_for(student_id)
        for payment in existing:
            if as_date(payment.get("payment_date")) == day and float(payment.get("amount") or 0) == value:
                raise DuplicatePaymentError(
                    f"Duplicate payment of {value:.2f} for {student_id} on {day.isoformat()}"
                )

        record_id = self.new_id()
        receipt_number = self.next_receipt_number(moment)
        stamp = to_iso_utc(moment)
        document = {
            "receipt_number": receipt_number,
            "student_id": student_id,
            "student_name": student_name,
            "class_name": class_name,
            "amount": value,
            "payment_method": method,
            "payment_date": to_iso_utc(paid_at),
            "term_id": term_id,
            "academic_year": academic_year,
            "recorded_by": actor.display_name,
            "recorded_by_id": actor.user_id,
            "remarks": remarks,
            "is_pending": True,
            "created_at": stamp,
            "updated_at": stamp,
        }
        changes = [(PAYMENTS, "create", record_id, document)]

        snapshot = self.local.get_record(BALANCES, student_id)
        if snapshot is None:
            self.logger.info("No fee snapshot for %s; payment %s recorded without balance update", student_id, receipt_number)
        else:
            paid = round(sum_payments(existing) + value, 2)
            derived = derive_balance(snapshot.get("total_fees"), paid, snapshot.get("due_date"), moment)
            changes.append(
                (
                    BALANCES,
                    "update",
                    student_id,
                    {
                        "amount_paid": paid,
                        "balance": derived.balance,
                        "status": derived.status,
                        "last_payment_date": to_iso_utc(paid_at),
                        "updated_at": stamp,
                    },
                )
            )
        self._write_many(changes)

        self._audit(
            actor,
            "payment",
            "payment",
            record_id,
            f"{receipt_number}: {SCHOOL.currency} {value:.2f} via {method}",
            entity_name=student_name,
        )
        return PaymentReceipt(id=record_id, receipt_number=receipt_number)

    def set_student_fees(
        self,
        session: SessionContext,
        student_id: str,
        total_fees: float,
        *,
        student_name: str = "",
        class_name: str = "",
        due_date: Union[str, date, None] = None,
        term_id: Optional[str] = None,
        academic_year: Optional[str] = None,
    ) -> str:
        actor = require_role(session, (ADMIN, ACCOUNTANT))
        if not student_id:
            raise ValidationError("student_id is required")
        try:
            total = round(float(total_fees), 2)
        except (TypeError, ValueError):
            raise ValidationError("Total fees must be a number") from None
        if total < 0:
            raise ValidationError("Total fees cannot be negative")

        due = as_date(due_date)
        paid = self.amount_paid(student_id)
        derived = derive_balance(total, paid, due)
        stamp = self.timestamp()
        document = {
            "student_id": student_id,
            "student_name": student_name,
            "class_name": class_name,
            "total_fees": total,
            "amount_paid": paid,
            "balance": derived.balance,
            "status": derived.status,
            "due_date": due.isoformat() if due else None,
            "term_id": term_id,
            "academic_year": academic_year,
            "updated_at": stamp,
        }
        current = self.local.get_record(BALANCES, student_id)
        if current is None:
            self._write(BALANCES, "create", student_id, {**document, "created_at": stamp})
        else:
            self._write(BALANCES, "update", student_id, document)
        self._audit(actor, "update", "balance", student_id, f"Fees set to {SCHOOL.currency} {total:.2f}", entity_name=student_name)
        return student_id

    def get_balance(self, student_id: str, now: Optional[datetime] = None) -> FeeBalance:
        """Recompute from the payment ledger; the snapshot only supplies fees and due date."""

        snapshot = self.local.get_record(BALANCES, student_id)
        if snapshot is None:
            raise NotFoundError(f"No fee record for student {student_id}")
        return derive_balance(snapshot.get("total_fees"), self.amount_paid(student_id), snapshot.get("due_date"), now)

    def outstanding_balances(self, now: Optional[datetime] = None) -> List[dict]:
        rows = []
        for snapshot in self.local.list_records(BALANCES):
            student_id = snapshot.get("student_id") or snapshot.get("id")
            derived = derive_balance(
                snapshot.get("total_fees"), self.amount_paid(student_id), snapshot.get("due_date"), now
            )
            if derived.balance > 0:
                rows.append({**snapshot, "balance": derived.balance, "status": derived.status})
        rows.sort(key=lambda row: row["balance"], reverse=True)
        return rows

    def render_receipt(self, payment_id: str) -> str:
        payment = self.local.get_record(PAYMENTS, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        pending = self.local.record_status(PAYMENTS, payment_id) != "synced"
        paid_on = as_date(payment.get("payment_date"))
        method = str(payment.get("payment_method") or "").replace("_", " ").upper()
        rule = "=" * 39
        lines = [
            rule,
            "PAYMENT RECEIPT".center(39),
            SCHOOL.name.center(39),
            rule,
            f"Receipt No: {payment.get('receipt_number')}",
            f"Status: {'PENDING SYNC' if pending else 'CONFIRMED'}",
            "",
            f"Student: {payment.get('student_name') or payment.get('student_id')}",
            f"Class: {payment.get('class_name') or '-'}",
            "",
            f"Amount Paid: {SCHOOL.currency} {float(payment.get('amount') or 0):.2f}",
            f"Payment Method: {method}",
            f"Payment Date: {paid_on.isoformat() if paid_on else '-'}",
            "",
            f"Recorded By: {payment.get('recorded_by') or '-'}",
            f"Date Issued: {payment.get('created_at') or '-'}",
            "",
            "This receipt is pending synchronization" if pending else "Payment confirmed",
            rule,
        ]
        return "\n".join(lines)


__all__ = [
    "FeeBalance",
    "FeeService",
    "PAYMENT_METHODS",
    "PaymentReceipt",
    "derive_balance",
    "sum_payments",
]
