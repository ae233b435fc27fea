from __future__ import annotations

from datetime import date, datetime
from typing import Dict, Iterable, Mapping, Optional, Union

from core.errors import NotFoundError, ValidationError
from core.roles import ADMIN, TEACHER
from core.session import SessionContext, require_role
from datetime_utils import as_date, today_iso
from services.classes import require_class_access
from services.domain import DomainService


TABLE = "attendance"

PRESENT = "present"
ABSENT = "absent"
LATE = "late"
EXCUSED = "excused"
STATUSES = (PRESENT, ABSENT, LATE, EXCUSED)

DayLike = Union[str, date, datetime, None]


def _day(value: DayLike) -> str:
    if value is None:
        return today_iso()
    parsed = as_date(value)
    if parsed is None:
        raise ValidationError(f"Invalid attendance date: {value!r}")
    return parsed.isoformat()


def _check_status(status: str) -> str:
    if status not in STATUSES:
        raise ValidationError(f"Invalid attendance status: {status!r}")
    return status


def count_entries(entries: Iterable[Mapping]) -> Dict[str, int]:
    counts = {status: 0 for status in STATUSES}
    for entry in entries:
        status = entry.get("status")
        if status in counts:
            counts[status] += 1
    return {
        "present_count": counts[PRESENT],
        "absent_count": counts[ABSENT],
        "late_count": counts[LATE],
        "excused_count": counts[EXCUSED],
    }


class AttendanceService(DomainService):
    """One attendance document per class per day."""

    def find_record(self, class_id: str, day: DayLike = None) -> Optional[dict]:
        matches = self.local.find_records(TABLE, class_id=class_id, date=_day(day))
        return matches[0] if matches else None

    def mark_attendance(
        self,
        session: SessionContext,
        class_id: str,
        student_id: str,
        status: str,
        date: DayLike = None,
        *,
        student_name: str = "",
        class_name: str = "",
    ) -> str:
        actor = require_role(session, (ADMIN, TEACHER))
        if not class_id or not student_id:
            raise ValidationError("class_id and student_id are required")
        require_class_access(self.local, actor, class_id)
        _check_status(status)
        day = _day(date)
        now = self.timestamp()

        record = self.find_record(class_id, day)
        if record is None:
            record_id = self.new_id()
            entries = [{"student_id": student_id, "student_name": student_name, "status": status}]
            document = {
                "class_id": class_id,
                "class_name": class_name,
                "teacher_id": actor.user_id,
                "teacher_name": actor.display_name,
                "date": day,
                "entries": entries,
                "total_students": len(entries),
                **count_entries(entries),
                "created_at": now,
                "updated_at": now,
            }
            self._write(TABLE, "create", record_id, document)
        else:
            record_id = record["id"]
            entries = [dict(entry) for entry in record.get("entries") or []]
            for entry in entries:
                if entry.get("student_id") == student_id:
                    entry["status"] = status
                    if student_name:
                        entry["student_name"] = student_name
                    break
            else:
                entries.append({"student_id": student_id, "student_name": student_name, "status": status})
            changes = {
                "entries": entries,
                "total_students": max(len(entries), int(record.get("total_students") or 0)),
                **count_entries(entries),
                "updated_at": now,
            }
            self._write(TABLE, "update", record_id, changes)

        self._audit(actor, "attendance", "attendance", record_id, f"{student_id} marked {status} on {day}")
        return record_id

    def record_attendance(
        self,
        session: SessionContext,
        class_id: str,
        class_name: str,
        students: Iterable[Mapping],
        statuses: Mapping[str, str],
        date: DayLike = None,
    ) -> str:
        """Record a whole class at once; students without a status count as absent."""

        actor = require_role(session, (ADMIN, TEACHER))
        if not class_id:
            raise ValidationError("class_id is required")
        require_class_access(self.local, actor, class_id)
        day = _day(date)
        entries = []
        for student in students:
            student_id = student.get("id")
            if not student_id:
                raise ValidationError("Every student needs an id")
            name = student.get("name") or " ".join(
                part for part in (student.get("first_name"), student.get("last_name")) if part
            )
            entries.append(
                {
                    "student_id": student_id,
                    "student_name": name,
                    "status": _check_status(statuses.get(student_id) or ABSENT),
                }
            )

        now = self.timestamp()
        document = {
            "class_id": class_id,
            "class_name": class_name,
            "teacher_id": actor.user_id,
            "teacher_name": actor.display_name,
            "date": day,
            "entries": entries,
            "total_students": len(entries),
            **count_entries(entries),
            "updated_at": now,
        }
        existing = self.find_record(class_id, day)
        if existing is None:
            record_id = self.new_id()
            self._write(TABLE, "create", record_id, {**document, "created_at": now})
        else:
            record_id = existing["id"]
            self._write(TABLE, "update", record_id, document)

        self._audit(actor, "attendance", "attendance", record_id, f"{class_name or class_id} register for {day}")
        return record_id

    def attendance_status(self, record_id: str) -> dict:
        status = self.local.record_status(TABLE, record_id)
        if status is None:
            raise NotFoundError(f"Attendance record {record_id} not found")
        return {"synced": status == "synced", "pending": status == "pending"}


__all__ = ["AttendanceService", "STATUSES", "count_entries"]
