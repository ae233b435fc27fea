"""Classes, their teachers, and the subject catalogue."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from core.errors import NotFoundError, PermissionDenied, ValidationError
from core.roles import (
    ADMIN,
    TEACHER,
    access_denied_message,
    filter_teacher_classes,
    filter_teacher_students,
    validate_teacher_class_access,
)
from core.session import SessionContext, require_role, require_session
from services.audit_log import track_changes
from services.domain import DomainService, require_fields
from storage.local_store import LocalStore


CLASSES = "classes"
SUBJECTS = "subjects"

CLASS_STATUSES = ("active", "inactive")
SUBJECT_CATEGORIES = ("core", "elective", "extracurricular")

CLASS_TRACKED_FIELDS = ("class_name", "section", "academic_year", "teacher_ids", "room", "capacity", "status")


def require_class_access(local: LocalStore, session: SessionContext, class_id: str) -> None:
    """Teachers may only act on classes that list them in ``teacher_ids``."""

    if session.role != TEACHER:
        return
    class_item = local.get_record(CLASSES, class_id)
    if class_item is None or not validate_teacher_class_access(session.user_id, class_item):
        raise PermissionDenied(access_denied_message("class"))


def _teacher_ids(value: Optional[Iterable[str]]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    ids: List[str] = []
    for item in value:
        item = str(item).strip()
        if item and item not in ids:
            ids.append(item)
    return ids


def _capacity(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        capacity = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Capacity must be a whole number") from None
    if capacity < 0:
        raise ValidationError("Capacity cannot be negative")
    return capacity


def _check_status(status: str, allowed=CLASS_STATUSES) -> str:
    if status not in allowed:
        raise ValidationError(f"Invalid status: {status!r}")
    return status


class ClassService(DomainService):
    def get_class(self, class_id: str) -> dict:
        class_item = self.local.get_record(CLASSES, class_id)
        if class_item is None:
            raise NotFoundError(f"Class {class_id} not found")
        return class_item

    def list_classes(self, status: Optional[str] = None) -> List[dict]:
        classes = self.local.list_records(CLASSES)
        if status:
            classes = [c for c in classes if c.get("status", "active") == status]
        return sorted(classes, key=lambda c: (c.get("class_name") or "", c.get("section") or ""))

    def visible_classes(self, session: SessionContext) -> List[dict]:
        """All classes for staff; only assigned classes for a teacher."""

        actor = require_session(session)
        classes = self.list_classes()
        if actor.role == TEACHER:
            return list(filter_teacher_classes(actor.user_id, classes))
        return classes

    def visible_students(self, session: SessionContext) -> List[dict]:
        actor = require_session(session)
        students = self.local.list_records("students")
        if actor.role == TEACHER:
            return list(filter_teacher_students(actor.user_id, students, self.list_classes()))
        return students

    # ------------------------------------------------------------------
    def create_class(self, session: SessionContext, data: Mapping[str, Any]) -> str:
        actor = require_role(session, (ADMIN,))
        require_fields(data, ("class_name",))
        stamp = self.timestamp()
        document = {
            **dict(data),
            "class_name": str(data["class_name"]).strip(),
            "teacher_ids": _teacher_ids(data.get("teacher_ids")),
            "subjects": list(data.get("subjects") or []),
            "capacity": _capacity(data.get("capacity")),
            "status": _check_status(data.get("status") or "active"),
            "created_at": stamp,
            "updated_at": stamp,
        }
        document.pop("id", None)
        record_id = self.new_id()
        self._write(CLASSES, "create", record_id, document)
        self._audit(actor, "create", "class", record_id, entity_name=document["class_name"])
        return record_id

    def update_class(self, session: SessionContext, class_id: str, updates: Mapping[str, Any]) -> None:
        actor = require_role(session, (ADMIN,))
        current = self.get_class(class_id)
        changes: Dict[str, Any] = {key: value for key, value in dict(updates).items() if key not in ("id", "created_at")}
        if "class_name" in changes and not str(changes["class_name"] or "").strip():
            raise ValidationError("class_name cannot be empty")
        if "teacher_ids" in changes:
            changes["teacher_ids"] = _teacher_ids(changes["teacher_ids"])
        if "capacity" in changes:
            changes["capacity"] = _capacity(changes["capacity"])
        if "status" in changes:
            _check_status(changes["status"])
        if not changes:
            return

        changes["updated_at"] = self.timestamp()
        self._write(CLASSES, "update", class_id, changes)
        self._audit(
            actor,
            "update",
            "class",
            class_id,
            entity_name=changes.get("class_name") or current.get("class_name"),
            changes=track_changes(current, {**current, **changes}, CLASS_TRACKED_FIELDS),
        )

    def assign_teachers(self, session: SessionContext, class_id: str, teacher_ids: Iterable[str]) -> None:
        self.update_class(session, class_id, {"teacher_ids": list(teacher_ids)})

    # ------------------------------------------------------------------
    def get_subject(self, subject_id: str) -> dict:
        subject = self.local.get_record(SUBJECTS, subject_id)
        if subject is None:
            raise NotFoundError(f"Subject {subject_id} not found")
        return subject

    def list_subjects(self, status: Optional[str] = None) -> List[dict]:
        subjects = self.local.list_records(SUBJECTS)
        if status:
            subjects = [s for s in subjects if s.get("status", "active") == status]
        return sorted(subjects, key=lambda s: s.get("name") or "")

    def create_subject(self, session: SessionContext, data: Mapping[str, Any]) -> str:
        actor = require_role(session, (ADMIN,))
        require_fields(data, ("name",))
        self._check_subject(data)
        code = str(data.get("code") or "").strip().upper()
        if code and any(s.get("code") == code for s in self.local.list_records(SUBJECTS)):
            raise ValidationError(f"Subject code {code!r} is already used")
        stamp = self.timestamp()
        document = {
            **dict(data),
            "name": str(data["name"]).strip(),
            "code": code,
            "status": data.get("status") or "active",
            "created_at": stamp,
            "updated_at": stamp,
        }
        document.pop("id", None)
        record_id = self.new_id()
        self._write(SUBJECTS, "create", record_id, document)
        self._audit(actor, "create", "subject", record_id, code or None, entity_name=document["name"])
        return record_id

    def update_subject(self, session: SessionContext, subject_id: str, updates: Mapping[str, Any]) -> None:
        actor = require_role(session, (ADMIN,))
        current = self.get_subject(subject_id)
        changes = {key: value for key, value in dict(updates).items() if key not in ("id", "created_at")}
        if "name" in changes and not str(changes["name"] or "").strip():
            raise ValidationError("name cannot be empty")
        self._check_subject(changes)
        if not changes:
            return
        changes["updated_at"] = self.timestamp()
        self._write(SUBJECTS, "update", subject_id, changes)
        self._audit(actor, "update", "subject", subject_id, entity_name=changes.get("name") or current.get("name"))

    @staticmethod
    def _check_subject(data: Mapping[str, Any]) -> None:
        if data.get("category") and data["category"] not in SUBJECT_CATEGORIES:
            raise ValidationError(f"Invalid subject category: {data['category']!r}")
        if data.get("status"):
            _check_status(data["status"])
        if data.get("credits") not in (None, ""):
            try:
                float(data["credits"])
            except (TypeError, ValueError):
                raise ValidationError("Credits must be a number") from None


__all__ = ["CLASSES", "ClassService", "SUBJECTS", "require_class_access"]
