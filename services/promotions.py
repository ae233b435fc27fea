"""End-of-year promotion requests: teachers propose, admins decide."""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from core.errors import InvalidTransition, NotFoundError, ValidationError
from core.roles import ADMIN, TEACHER
from core.session import SessionContext, require_role
from core.settings import SCHOOL
from services.classes import require_class_access
from services.domain import DomainService
from storage.local_store import Change


TABLE = "promotionRequests"
STUDENTS = "students"

PROMOTE = "promote"
REPEAT = "repeat"
DECISIONS = (PROMOTE, REPEAT)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"

GRADUATED = "Graduated"


@dataclass
class PromotionDecision:
    student_id: str
    student_name: str
    current_class: str
    decision: str
    target_class: Optional[str] = None
    comment: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PromotionDecision":
        return cls(
            student_id=str(data.get("student_id") or ""),
            student_name=str(data.get("student_name") or ""),
            current_class=str(data.get("current_class") or ""),
            decision=str(data.get("decision") or ""),
            target_class=data.get("target_class") or None,
            comment=str(data.get("comment") or ""),
        )


def next_class(current_class: str) -> str:
    """Next class in the progression; unknown classes stay where they are."""
    return dict(SCHOOL.class_progression).get(current_class, current_class)


def next_academic_year(academic_year: str) -> str:
    match = re.fullmatch(r"\s*(\d{4})\s*[/-]\s*(\d{4})\s*", academic_year or "")
    if not match:
        return academic_year
    start, end = int(match.group(1)), int(match.group(2))
    return f"{start + 1}/{end + 1}"


class PromotionService(DomainService):
    def get_request(self, request_id: str) -> dict:
        request = self.local.get_record(TABLE, request_id)
        if request is None:
            raise NotFoundError(f"Promotion request {request_id} not found")
        return request

    def list_requests(self, status: Optional[str] = None) -> List[dict]:
        requests = self.local.list_records(TABLE)
        if status:
            requests = [r for r in requests if r.get("status") == status]
        return sorted(requests, key=lambda r: r.get("submitted_at") or "", reverse=True)

    def create_promotion_request(
        self,
        session: SessionContext,
        class_id: str,
        class_name: str,
        academic_year: str,
        decisions: Iterable[Union[PromotionDecision, Mapping[str, Any]]],
    ) -> str:
        actor = require_role(session, (ADMIN, TEACHER))
        if not class_id or not academic_year:
            raise ValidationError("class_id and academic_year are required")
        require_class_access(self.local, actor, class_id)
        items = [
            d if isinstance(d, PromotionDecision) else PromotionDecision.from_mapping(d)
            for d in decisions
        ]
        if not items:
            raise ValidationError("At least one student decision is required")
        seen = set()
        for item in items:
            if not item.student_id:
                raise ValidationError("Every decision needs a student_id")
            if item.student_id in seen:
                raise ValidationError(f"Student {item.student_id} appears twice")
            seen.add(item.student_id)
            if item.decision not in DECISIONS:
                raise ValidationError(f"Invalid decision {item.decision!r} for {item.student_id}")
            if not item.current_class:
                item.current_class = class_name

        stamp = self.timestamp()
        record_id = self.new_id()
        document = {
            "teacher_id": actor.user_id,
            "teacher_name": actor.display_name,
            "class_id": class_id,
            "class_name": class_name,
            "academic_year": academic_year,
            "decisions": [asdict(item) for item in items],
            "status": PENDING,
            "submitted_at": stamp,
            "reviewed_at": None,
            "reviewed_by": None,
            "admin_comments": None,
            "created_at": stamp,
            "updated_at": stamp,
        }
        self._write(TABLE, "create", record_id, document)
        promoted = sum(1 for item in items if item.decision == PROMOTE)
        self._audit(
            actor,
            "promotion",
            "promotion",
            record_id,
            f"{class_name}: {promoted} promote, {len(items) - promoted} repeat",
        )
        return record_id

    def review_promotion_request(
        self,
        session: SessionContext,
        request_id: str,
        approve: bool,
        comments: Optional[str] = None,
        new_academic_year: Optional[str] = None,
    ) -> str:
        """Move a pending request to approved or rejected; returns the new status."""

        actor = require_role(session, (ADMIN,))
        request = self.get_request(request_id)
        current = request.get("status", PENDING)
        if current != PENDING:
            raise InvalidTransition(f"Promotion request {request_id} is already {current}")

        status = APPROVED if approve else REJECTED
        stamp = self.timestamp()
        changes = []
        if approve:
            target_year = new_academic_year or next_academic_year(request.get("academic_year") or "")
            for raw in request.get("decisions") or []:
                change = self._decision_change(PromotionDecision.from_mapping(raw), target_year, stamp)
                if change is not None:
                    changes.append(change)

        changes.append(
            (
                TABLE,
                "update",
                request_id,
                {
                    "status": status,
                    "reviewed_at": stamp,
                    "reviewed_by": actor.display_name,
                    "admin_comments": comments,
                    "updated_at": stamp,
                },
            )
        )
        self._write_many(changes)
        self._audit(actor, "promotion", "promotion", request_id, f"Request {status}", entity_name=request.get("class_name"))
        return status

    def _decision_change(self, decision: PromotionDecision, academic_year: str, stamp: str) -> Optional[Change]:
        student = self.local.get_record(STUDENTS, decision.student_id)
        if student is None:
            self.logger.warning("Promotion skipped unknown student %s", decision.student_id)
            return None

        previous_year = student.get("academic_year") or academic_year
        changes: Dict[str, Any] = {
            "previous_academic_year": previous_year,
            "academic_year": academic_year,
            "updated_at": stamp,
        }
        history = list(student.get("promotion_history") or [])
        if decision.decision == PROMOTE:
            target = decision.target_class or next_class(decision.current_class)
            changes["previous_class"] = decision.current_class
            changes["class_name"] = target
            if target == GRADUATED:
                changes["status"] = "graduated"
            history.append(
                {"from": decision.current_class, "to": target, "date": stamp, "comment": decision.comment, "academic_year": academic_year}
            )
        else:
            history.append(
                {"from": decision.current_class, "to": decision.current_class, "date": stamp, "comment": decision.comment or "Repeating year", "academic_year": academic_year}
            )
        changes["promotion_history"] = history
        return (STUDENTS, "update", decision.student_id, changes)


__all__ = [
    "PromotionDecision",
    "PromotionService",
    "next_academic_year",
    "next_class",
]
