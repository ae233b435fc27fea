"""Read-only aggregations over the local cache."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from core.errors import ValidationError
from core.session import SessionContext, require_session
from datetime_utils import as_date, ensure_utc, to_iso_utc, utc_now
from services.fees import derive_balance, sum_payments
from services.grades import GradeService
from services.domain import DomainService


REPORT_TYPES = ("attendance", "grades", "fees", "students")
REPORT_TABLES = {
    "attendance": ("attendance",),
    "grades": ("assessments",),
    "fees": ("payments",),
    "students": ("students",),
}

DayLike = Union[str, date, datetime, None]


@dataclass
class Report:
    id: str
    title: str
    type: str
    generated_at: str
    generated_by: str
    date_range: Dict[str, Optional[str]]
    filters: Dict[str, Any]
    data: Dict[str, Any]
    has_pending_syncs: bool
    pending_sync_count: int
    based_on_local_data: bool = False
    synced_only: bool = True
    pending_by_table: Dict[str, int] = field(default_factory=dict)


def _in_range(value: Any, start: Optional[date], end: Optional[date]) -> bool:
    day = as_date(value)
    if day is None:
        return False
    if start and day < start:
        return False
    if end and day > end:
        return False
    return True


def _matches(record: Mapping[str, Any], filters: Mapping[str, Any], keys) -> bool:
    return all(not filters.get(key) or record.get(key) == filters[key] for key in keys)


class ReportService(DomainService):
    def _records(self, table_name: str, synced_only: bool) -> List[dict]:
        return self.local.list_records(table_name, synced_only=synced_only)

    def generate_report(
        self,
        session: SessionContext,
        report_type: str,
        start: DayLike,
        end: DayLike,
        filters: Optional[Mapping[str, Any]] = None,
        synced_only: bool = True,
    ) -> Report:
        """Aggregate records the remote store already has; nothing is queued.

        Pending local changes are left out and only counted in
        ``pending_sync_count``. Pass ``synced_only=False`` for a provisional
        report that folds them in.
        """

        actor = require_session(session)
        if report_type not in REPORT_TYPES:
            raise ValidationError(f"Unknown report type: {report_type!r}")
        start_day, end_day = as_date(start), as_date(end)
        if start_day and end_day and start_day > end_day:
            raise ValidationError("Report start date is after its end date")
        criteria = dict(filters or {})

        builder = getattr(self, f"_{report_type}_report")
        data = builder(start_day, end_day, criteria, synced_only)

        pending = self.local.count_unsynced(REPORT_TABLES[report_type])
        total_pending = sum(pending.values())
        return Report(
            id=self.new_id(),
            title=f"{report_type.capitalize()} Report",
            type=report_type,
            generated_at=self.timestamp(),
            generated_by=actor.display_name,
            date_range={
                "start": start_day.isoformat() if start_day else None,
                "end": end_day.isoformat() if end_day else None,
            },
            filters=criteria,
            data=data,
            has_pending_syncs=total_pending > 0,
            pending_sync_count=total_pending,
            based_on_local_data=not synced_only,
            synced_only=synced_only,
            pending_by_table=pending,
        )

    # ------------------------------------------------------------------
    def _attendance_report(self, start, end, filters, synced_only) -> Dict[str, Any]:
        records = [
            r
            for r in self._records("attendance", synced_only)
            if _in_range(r.get("date"), start, end) and _matches(r, filters, ("class_id", "class_name"))
        ]
        records.sort(key=lambda r: r.get("date") or "")
        present = sum(int(r.get("present_count") or 0) for r in records)
        absent = sum(int(r.get("absent_count") or 0) for r in records)
        late = sum(int(r.get("late_count") or 0) for r in records)
        excused = sum(int(r.get("excused_count") or 0) for r in records)
        students = sum(int(r.get("total_students") or 0) for r in records)
        return {
            "summary": {
                "total_records": len(records),
                "total_present": present,
                "total_absent": absent,
                "total_late": late,
                "total_excused": excused,
                "total_students": students,
                "attendance_rate": round(present / students * 100, 2) if students else 0.0,
            },
            "records": records,
        }

    def _grades_report(self, start, end, filters, synced_only) -> Dict[str, Any]:
        grades = [
            g
            for g in self._records("assessments", synced_only)
            if _in_range(g.get("date"), start, end)
            and _matches(g, filters, ("class_id", "subject_id", "term_id", "student_id"))
        ]
        percentages = [float(g.get("percentage") or 0) for g in grades]
        return {
            "summary": {
                "total_grades": len(grades),
                "average_score": round(sum(percentages) / len(percentages), 2) if percentages else 0.0,
                "grade_distribution": GradeService.grade_distribution(grades),
            },
            "grades": grades,
        }

    def _fees_report(self, start, end, filters, synced_only) -> Dict[str, Any]:
        payments = [
            p
            for p in self._records("payments", synced_only)
            if _in_range(p.get("payment_date"), start, end) and _matches(p, filters, ("class_name", "student_id", "term_id"))
        ]
        total = sum_payments(payments)
        unsynced = sum(1 for p in payments if self.local.record_status("payments", p["id"]) != "synced")
        by_method: Dict[str, float] = {}
        for payment in payments:
            method = payment.get("payment_method") or "unknown"
            by_method[method] = round(by_method.get(method, 0.0) + float(payment.get("amount") or 0), 2)
        return {
            "summary": {
                "total_payments": len(payments),
                "total_collected": total,
                "pending_payments": unsynced,
                "average_payment": round(total / len(payments), 2) if payments else 0.0,
                "by_method": by_method,
            },
            "payments": payments,
        }

    def _students_report(self, start, end, filters, synced_only) -> Dict[str, Any]:
        students = [
            s for s in self._records("students", synced_only) if _matches(s, filters, ("class_name", "status"))
        ]
        distribution = {status: 0 for status in ("active", "inactive", "graduated", "transferred")}
        by_class: Dict[str, int] = {}
        for student in students:
            status = student.get("status")
            if status in distribution:
                distribution[status] += 1
            name = student.get("class_name") or "Unassigned"
            by_class[name] = by_class.get(name, 0) + 1
        return {
            "summary": {
                "total_students": len(students),
                "status_distribution": distribution,
                "by_class": dict(sorted(by_class.items())),
            },
            "students": students,
        }

    # ------------------------------------------------------------------
    def dashboard_summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        moment = ensure_utc(now) or utc_now()
        today = moment.date()
        students = self.local.list_records("students")
        active = [s for s in students if s.get("status") == "active"]

        todays = [r for r in self.local.list_records("attendance") if as_date(r.get("date")) == today]
        present = sum(int(r.get("present_count") or 0) for r in todays)
        marked = sum(int(r.get("total_students") or 0) for r in todays)

        month_payments: List[dict] = []
        paid_by_student: Dict[str, List[dict]] = {}
        for payment in self.local.list_records("payments"):
            paid_by_student.setdefault(payment.get("student_id"), []).append(payment)
            day = as_date(payment.get("payment_date"))
            if day is not None and (day.year, day.month) == (today.year, today.month):
                month_payments.append(payment)
        outstanding = 0.0
        overdue = 0
        for snapshot in self.local.list_records("studentBalances"):
            student_id = snapshot.get("student_id") or snapshot.get("id")
            derived = derive_balance(
                snapshot.get("total_fees"),
                sum_payments(paid_by_student.get(student_id, [])),
                snapshot.get("due_date"),
                moment,
            )
            if derived.balance > 0:
                outstanding += derived.balance
            if derived.status == "overdue":
                overdue += 1

        pending = self.local.pending_counts()
        return {
            "generated_at": to_iso_utc(moment),
            "total_students": len(students),
            "active_students": len(active),
            "pending_applications": len(self.local.find_records("applications", status="pending")),
            "pending_promotions": len(self.local.find_records("promotionRequests", status="pending")),
            "attendance_today": {
                "present": present,
                "marked": marked,
                "rate": round(present / marked * 100, 2) if marked else 0.0,
            },
            "collected_this_month": sum_payments(month_payments),
            "outstanding_fees": round(outstanding, 2),
            "overdue_accounts": overdue,
            "pending_sync_count": sum(pending.values()),
        }


__all__ = ["REPORT_TYPES", "Report", "ReportService"]
