from __future__ import annotations

import random
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional

from core.errors import ValidationError
from core.grading import ASSESSMENT_TYPES, average_percentage, grade_result, validate_score
from core.roles import ADMIN, TEACHER
from core.session import SessionContext, require_role
from services.classes import require_class_access
from services.domain import DomainService


TABLE = "assessments"


def _mean(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


class GradeService(DomainService):
    def enter_grade(
        self,
        session: SessionContext,
        student_id: str,
        student_name: str,
        class_id: str,
        subject_id: str,
        assessment_type: str,
        score: float,
        max_score: float,
        *,
        class_name: str = "",
        subject_name: str = "",
        term_id: Optional[str] = None,
        academic_year: Optional[str] = None,
        date: Optional[str] = None,
        remarks: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> str:
        actor = require_role(session, (ADMIN, TEACHER))
        if not student_id or not class_id or not subject_id:
            raise ValidationError("student_id, class_id and subject_id are required")
        require_class_access(self.local, actor, class_id)
        if assessment_type not in ASSESSMENT_TYPES:
            raise ValidationError(f"Unknown assessment type: {assessment_type!r}")
        problem = validate_score(score, max_score)
        if problem:
            raise ValidationError(problem)

        result = grade_result(score, max_score, rng)
        now = self.timestamp()
        record_id = self.new_id()
        document = {
            "student_id": student_id,
            "student_name": student_name,
            "class_id": class_id,
            "class_name": class_name,
            "subject_id": subject_id,
            "subject_name": subject_name,
            "teacher_id": actor.user_id,
            "assessment_type": assessment_type,
            "score": float(score),
            "max_score": float(max_score),
            "percentage": result.percentage,
            "grade": result.grade,
            "performance": result.performance,
            "comment": remarks or result.comment,
            "date": date or now,
            "term_id": term_id,
            "academic_year": academic_year,
            "created_at": now,
            "updated_at": now,
        }
        self._write(TABLE, "create", record_id, document)
        self._audit(
            actor,
            "grade",
            "assessment",
            record_id,
            f"{subject_name or subject_id} {assessment_type}: {result.percentage}% ({result.grade})",
            entity_name=student_name,
        )
        return record_id

    def grades_for_student(self, student_id: str, term_id: Optional[str] = None) -> List[dict]:
        grades = self.local.find_records(TABLE, student_id=student_id)
        if term_id:
            grades = [g for g in grades if g.get("term_id") == term_id]
        return grades

    def student_averages(self, student_id: str, term_id: Optional[str] = None) -> Dict[str, object]:
        """Mean percentage overall, per subject and per assessment type."""

        grades = self.grades_for_student(student_id, term_id)
        by_subject: Dict[str, List[float]] = defaultdict(list)
        by_type: Dict[str, List[float]] = defaultdict(list)
        for grade in grades:
            percentage = float(grade.get("percentage") or 0)
            by_subject[grade.get("subject_id") or ""].append(percentage)
            by_type[grade.get("assessment_type") or ""].append(percentage)
        return {
            "overall": _mean(float(g.get("percentage") or 0) for g in grades),
            "weighted": average_percentage(grades),
            "by_subject": {key: _mean(values) for key, values in by_subject.items()},
            "by_assessment_type": {key: _mean(values) for key, values in by_type.items()},
            "count": len(grades),
        }

    @staticmethod
    def grade_distribution(grades: Iterable[Mapping]) -> Dict[str, int]:
        distribution = {letter: 0 for letter in ("A", "B", "C", "D", "E", "F")}
        for grade in grades:
            letter = grade.get("grade")
            if letter in distribution:
                distribution[letter] += 1
        return distribution


__all__ = ["GradeService"]
