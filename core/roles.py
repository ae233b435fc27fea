"""Roles, role-filtered navigation and teacher access checks."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

ADMIN = "admin"
TEACHER = "teacher"
ACCOUNTANT = "accountant"

ROLES = (ADMIN, TEACHER, ACCOUNTANT)

ROLE_LABELS: Dict[str, str] = {
    ADMIN: "Administrator",
    TEACHER: "Teacher",
    ACCOUNTANT: "Accountant",
}


@dataclass(frozen=True)
class NavItem:
    key: str
    title: str
    group: str
    icon: str
    roles: tuple[str, ...]

    def route(self, role: Optional[str]) -> str:
        base = f"/{role or ADMIN}"
        return base if self.key == "dashboard" else f"{base}/{self.key}"


# Order here is the order in the sidebar. Icon names map to ``flet.Icons``.
NAV_ITEMS: tuple[NavItem, ...] = (
    NavItem("dashboard", "Dashboard", "Main", "DASHBOARD", (ADMIN, TEACHER, ACCOUNTANT)),
    NavItem("students", "Students", "Academic", "PEOPLE", (ADMIN, TEACHER)),
    NavItem("teachers", "Teachers", "Academic", "SCHOOL", (ADMIN,)),
    NavItem("classes", "Classes & Subjects", "Academic", "MENU_BOOK", (ADMIN, TEACHER)),
    NavItem("admissions", "Admissions", "Management", "PERSON_ADD", (ADMIN,)),
    NavItem("grades", "Grades & Records", "Management", "GRADING", (ADMIN, TEACHER)),
    NavItem("promotions", "Promotions", "Management", "TRENDING_UP", (ADMIN, TEACHER)),
    NavItem("reports", "Reports & Analytics", "Management", "INSIGHTS", (ADMIN, TEACHER, ACCOUNTANT)),
    NavItem("users", "User Management", "System", "MANAGE_ACCOUNTS", (ADMIN,)),
    NavItem("billing", "Fees & Billing", "Financial", "CALCULATE", (ADMIN, ACCOUNTANT)),
    NavItem("sync", "Sync Status", "System", "SYNC", (ADMIN,)),
    NavItem("settings", "Settings", "System", "SETTINGS", (ADMIN, TEACHER, ACCOUNTANT)),
)


def normalize_role(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    role = str(value).strip().lower()
    return role if role in ROLES else None


def filter_nav_items(role: Optional[str]) -> List[NavItem]:
    """Sidebar destinations visible to ``role``. Unknown roles see nothing."""

    normalized = normalize_role(role)
    if normalized is None:
        return []
    return [item for item in NAV_ITEMS if normalized in item.roles]


def group_nav_items(items: Iterable[NavItem]) -> Dict[str, List[NavItem]]:
    grouped: Dict[str, List[NavItem]] = {}
    for item in items:
        grouped.setdefault(item.group, []).append(item)
    return grouped


def can_access(role: Optional[str], key: str) -> bool:
    return any(item.key == key for item in filter_nav_items(role))


# ----- teacher access -----
def validate_teacher_class_access(teacher_id: str, class_item: Mapping) -> bool:
    return teacher_id in (class_item.get("teacher_ids") or [])


def filter_teacher_classes(teacher_id: str, classes: Sequence[Mapping]) -> List[Mapping]:
    return [c for c in classes if validate_teacher_class_access(teacher_id, c)]


def validate_teacher_student_access(
    teacher_id: str, student: Mapping, classes: Sequence[Mapping]
) -> bool:
    class_name = student.get("class_name")
    return any(
        validate_teacher_class_access(teacher_id, c)
        for c in classes
        if c.get("class_name") == class_name
    )


def filter_teacher_students(
    teacher_id: str, students: Sequence[Mapping], classes: Sequence[Mapping]
) -> List[Mapping]:
    """Active students enrolled in one of the teacher's classes."""

    names = {c.get("class_name") for c in filter_teacher_classes(teacher_id, classes)}
    return [s for s in students if s.get("status") == "active" and s.get("class_name") in names]


def access_denied_message(resource: str) -> str:
    return (
        f"Access denied: you are not authorized to access this {resource}. "
        "Please contact your administrator if you believe this is an error."
    )


__all__ = [
    "ACCOUNTANT",
    "ADMIN",
    "NAV_ITEMS",
    "NavItem",
    "ROLES",
    "ROLE_LABELS",
    "TEACHER",
    "access_denied_message",
    "can_access",
    "filter_nav_items",
    "filter_teacher_classes",
    "filter_teacher_students",
    "group_nav_items",
    "normalize_role",
    "validate_teacher_class_access",
    "validate_teacher_student_access",
]
