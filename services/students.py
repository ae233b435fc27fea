from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from core.errors import InvalidTransition, NotFoundError, ValidationError
from core.roles import ADMIN
from core.session import SessionContext, require_role
from core.settings import SCHOOL
from datetime_utils import ensure_utc, utc_now
from services.audit_log import track_changes
from services.domain import DomainService, require_fields


STUDENTS = "students"
APPLICATIONS = "applications"

STUDENT_STATUSES = ("active", "inactive", "graduated", "transferred")
APPLICATION_STATUSES = ("pending", "approved", "rejected")

REQUIRED_STUDENT_FIELDS = ("first_name", "last_name", "class_name")
TRACKED_FIELDS = (
    "first_name",
    "last_name",
    "class_name",
    "status",
    "parent_name",
    "parent_phone",
    "parent_email",
    "address",
)
# copied from an application onto the new student record
ADMISSION_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "date_of_birth",
    "gender",
    "parent_name",
    "parent_phone",
    "parent_whatsapp",
    "parent_email",
    "address",
)


def full_name(record: Mapping[str, Any]) -> str:
    return " ".join(part for part in (record.get("first_name"), record.get("last_name")) if part)


class StudentService(DomainService):
    def next_student_code(self, now: Optional[datetime] = None) -> str:
        year = (ensure_utc(now) or utc_now()).year
        stem = f"{SCHOOL.student_code_prefix}-{year}"
        highest = 0
        for student in self.local.list_records(STUDENTS, include_deleted=True):
            code = str(student.get("student_code") or "")
            if not code.startswith(stem + "-"):
                continue
            try:
                highest = max(highest, int(code.rsplit("-", 1)[1]))
            except ValueError:
                continue
        return f"{stem}-{highest + 1:03d}"

    def get_student(self, student_id: str) -> dict:
        student = self.local.get_record(STUDENTS, student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found")
        return student

    def list_students(self, *, class_name: Optional[str] = None, status: Optional[str] = None) -> List[dict]:
        students = self.local.list_records(STUDENTS)
        if class_name:
            students = [s for s in students if s.get("class_name") == class_name]
        if status:
            students = [s for s in students if s.get("status") == status]
        return sorted(students, key=lambda s: (s.get("last_name") or "", s.get("first_name") or ""))

    # ------------------------------------------------------------------
    def add_student(self, session: SessionContext, data: Mapping[str, Any], *, now: Optional[datetime] = None) -> str:
        actor = require_role(session, (ADMIN,))
        record_id = self.new_id()
        document = self._student_document(data, now)
        self._write(STUDENTS, "create", record_id, document)
        self._audit(actor, "create", "student", record_id, f"Enrolled in {document['class_name']}", entity_name=full_name(document))
        return record_id

    def _student_document(self, data: Mapping[str, Any], now: Optional[datetime] = None) -> dict:
        require_fields(data, REQUIRED_STUDENT_FIELDS)
        status = data.get("status") or "active"
        if status not in STUDENT_STATUSES:
            raise ValidationError(f"Invalid student status: {status!r}")
        stamp = self.timestamp()
        document = {
            **dict(data),
            "student_code": self.next_student_code(now),
            "status": status,
            "enrollment_date": data.get("enrollment_date") or stamp,
            "created_at": stamp,
            "updated_at": stamp,
        }
        document.pop("id", None)
        return document

    def update_student(self, session: SessionContext, student_id: str, updates: Mapping[str, Any]) -> None:
        actor = require_role(session, (ADMIN,))
        current = self.get_student(student_id)
        changes = {key: value for key, value in dict(updates).items() if key not in ("id", "student_code", "created_at")}
        for name in REQUIRED_STUDENT_FIELDS:
            if name in changes and changes[name] in (None, ""):
                raise ValidationError(f"{name} cannot be empty")
        if "status" in changes and changes["status"] not in STUDENT_STATUSES:
            raise ValidationError(f"Invalid student status: {changes['status']!r}")
        if not changes:
            return

        changes["updated_at"] = self.timestamp()
        self._write(STUDENTS, "update", student_id, changes)
        self._audit(
            actor,
            "update",
            "student",
            student_id,
            entity_name=full_name({**current, **changes}),
            changes=track_changes(current, {**current, **changes}, TRACKED_FIELDS),
        )

    # ------------------------------------------------------------------
    # Admissions
    def submit_application(self, data: Mapping[str, Any]) -> str:
        """Public admission form; no signed-in user is involved."""

        require_fields(data, ("first_name", "last_name", "parent_name", "parent_phone"))
        record_id = self.new_id()
        stamp = self.timestamp()
        document = {**dict(data), "status": "pending", "created_at": stamp, "updated_at": stamp}
        document.pop("id", None)
        self._write(APPLICATIONS, "create", record_id, document)
        return record_id

    def _pending_application(self, application_id: str) -> dict:
        application = self.local.get_record(APPLICATIONS, application_id)
        if application is None:
            raise NotFoundError(f"Application {application_id} not found")
        if application.get("status", "pending") != "pending":
            raise InvalidTransition(
                f"Application {application_id} is already {application.get('status')}"
            )
        return application

    def process_admission(self, session: SessionContext, application_id: str, class_name: str) -> str:
        """Create the student from an application and mark the application approved."""

        actor = require_role(session, (ADMIN,))
        if not class_name:
            raise ValidationError("class_name is required")
        application = self._pending_application(application_id)

        data: Dict[str, Any] = {name: application.get(name) for name in ADMISSION_FIELDS if application.get(name) is not None}
        data.update({"class_name": class_name, "status": "active", "application_id": application_id})
        student_id = self.new_id()
        document = self._student_document(data)

        stamp = self.timestamp()
        self._write_many(
            [
                (STUDENTS, "create", student_id, document),
                (
                    APPLICATIONS,
                    "update",
                    application_id,
                    {
                        "status": "approved",
                        "student_id": student_id,
                        "approved_by": actor.display_name,
                        "approved_at": stamp,
                        "updated_at": stamp,
                    },
                ),
            ]
        )
        self._audit(actor, "create", "student", student_id, f"Enrolled in {class_name}", entity_name=full_name(document))
        self._audit(actor, "admission", "application", application_id, f"Admitted to {class_name}", entity_name=full_name(application))
        return student_id

    def reject_application(self, session: SessionContext, application_id: str, reason: Optional[str] = None) -> None:
        actor = require_role(session, (ADMIN,))
        application = self._pending_application(application_id)
        stamp = self.timestamp()
        self._write(
            APPLICATIONS,
            "update",
            application_id,
            {
                "status": "rejected",
                "rejection_reason": reason,
                "reviewed_by": actor.display_name,
                "reviewed_at": stamp,
                "updated_at": stamp,
            },
        )
        self._audit(actor, "update", "application", application_id, reason or "Application rejected", entity_name=full_name(application))


__all__ = ["STUDENT_STATUSES", "StudentService", "full_name"]
