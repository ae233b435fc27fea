"""Letter grades, performance levels and auto-comments for assessments."""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Tuple

# Lower bound (inclusive, percent) for each letter; anything below is "F".
GRADE_BOUNDARIES: Tuple[Tuple[float, str], ...] = (
    (80.0, "A"),
    (70.0, "B"),
    (60.0, "C"),
    (50.0, "D"),
    (40.0, "E"),
)

PERFORMANCE_BY_GRADE: Dict[str, str] = {
    "A": "excellent",
    "B": "very-good",
    "C": "good",
    "D": "average",
    "E": "poor",
}

COMMENTS: Dict[str, Tuple[str, ...]] = {
    "excellent": (
        "Outstanding performance! Keep up the excellent work.",
        "Exceptional work! You have shown great mastery.",
        "Excellent! Your dedication is commendable.",
    ),
    "very-good": (
        "Very good work! Continue with this effort.",
        "Great job! You are doing well.",
        "Well done! Keep improving.",
    ),
    "good": (
        "Good work! You are on the right track.",
        "Good effort. Keep working hard.",
        "Nice work! Continue to improve.",
    ),
    "average": (
        "Fair performance. More effort needed.",
        "You can do better with more practice.",
        "Average work. Focus on improvement areas.",
    ),
    "poor": (
        "Needs improvement. Please seek extra help.",
        "Below average. More effort is required.",
        "Requires attention. Please work harder.",
    ),
    "fail": (
        "Needs significant improvement. Seek help immediately.",
        "Poor performance. Immediate attention required.",
        "Failing grade. Extra lessons recommended.",
    ),
}

ASSESSMENT_TYPES = ("quiz", "exam", "assignment", "project", "midterm", "final")


@dataclass(frozen=True)
class GradeResult:
    percentage: float
    grade: str
    performance: str
    comment: str


def calculate_grade(percentage: float) -> str:
    for lower, letter in GRADE_BOUNDARIES:
        if percentage >= lower:
            return letter
    return "F"


def performance_level(grade: str) -> str:
    return PERFORMANCE_BY_GRADE.get(grade, "fail")


def generate_comment(grade: str, rng: Optional[random.Random] = None) -> str:
    choices = COMMENTS[performance_level(grade)]
    return (rng or random).choice(choices)


def validate_score(score: float, max_score: float) -> Optional[str]:
    """Return an error message, or ``None`` when the score is acceptable."""

    try:
        value = float(score)
        limit = float(max_score)
    except (TypeError, ValueError):
        return "Score must be a number"
    if limit <= 0:
        return "Maximum score must be greater than zero"
    if value < 0:
        return "Score cannot be negative"
    if value > limit:
        return f"Score cannot exceed {max_score}"
    return None


def grade_result(score: float, max_score: float, rng: Optional[random.Random] = None) -> GradeResult:
    percentage = round(float(score) / float(max_score) * 100, 2)
    grade = calculate_grade(percentage)
    return GradeResult(
        percentage=percentage,
        grade=grade,
        performance=performance_level(grade),
        comment=generate_comment(grade, rng),
    )


def average_percentage(records: Iterable[Mapping]) -> float:
    """Weighted average: sum of scores over sum of maximums, to 2dp."""

    score = 0.0
    maximum = 0.0
    for record in records:
        score += float(record.get("score") or 0)
        maximum += float(record.get("max_score") or 0)
    if maximum <= 0:
        return 0.0
    return round(score / maximum * 100, 2)


__all__ = [
    "ASSESSMENT_TYPES",
    "GRADE_BOUNDARIES",
    "GradeResult",
    "average_percentage",
    "calculate_grade",
    "generate_comment",
    "grade_result",
    "performance_level",
    "validate_score",
]
