"""Form dialogs that call the domain operations. Each ``open_*`` takes the shell and a refresh callback."""
from __future__ import annotations

import flet as ft

from core.errors import ValidationError
from core.grading import ASSESSMENT_TYPES
from core.roles import ROLE_LABELS
from services.attendance import STATUSES
from services.fees import PAYMENT_METHODS
from services.students import full_name
from storage.config import load_config
from ui.dialogs import form_dialog


def _field(label: str, value: str = "", **kwargs) -> ft.TextField:
    return ft.TextField(label=label, value=value, dense=True, **kwargs)


def _choice(label: str, options, value=None) -> ft.Dropdown:
    pairs = [(o, o.replace("_", " ").capitalize()) if isinstance(o, str) else o for o in options]
    return ft.Dropdown(
        label=label,
        dense=True,
        value=value if value is not None else (pairs[0][0] if pairs else None),
        options=[ft.dropdown.Option(key, text) for key, text in pairs],
    )


def _text(control) -> str:
    return (control.value or "").strip()


def _number(control, label: str) -> float:
    try:
        return float(_text(control))
    except ValueError:
        raise ValidationError(f"{label} must be a number") from None


def _class_options(app) -> list[tuple[str, str]]:
    return [(c["id"], c.get("class_name") or c["id"]) for c in app.classes.visible_classes(app.session)]


def _student_options(app) -> list[tuple[str, str]]:
    return [(s["id"], f"{full_name(s)} ({s.get('class_name') or '-'})") for s in app.classes.visible_students(app.session)]


def _class_names(app) -> list[tuple[str, str]]:
    names = sorted({c.get("class_name") for c in app.classes.list_classes("active") if c.get("class_name")})
    return [(name, name) for name in names]


def _student_name(app, student_id) -> str:
    student = app.local.get_record("students", student_id) if student_id else None
    return full_name(student) if student else ""


def _label_of(dropdown: ft.Dropdown) -> str:
    for option in dropdown.options:
        if option.key == dropdown.value:
            return option.text
    return ""


# ----- students -----
def open_add_student(app, on_done):
    first, last = _field("First name"), _field("Last name")
    class_dd = _choice("Class", _class_names(app))
    parent, phone = _field("Parent / guardian"), _field("Parent phone")

    def submit():
        student_id = app.students.add_student(
            app.session,
            {
                "first_name": _text(first),
                "last_name": _text(last),
                "class_name": class_dd.value,
                "parent_name": _text(parent),
                "parent_phone": _text(phone),
            },
        )
        on_done()
        return f"Student {app.students.get_student(student_id)['student_code']} added"

    form_dialog(app.page, title="Add student", fields=[first, last, class_dd, parent, phone], submit_label="Add", on_submit=submit)


def open_process_admission(app, on_done):
    pending = app.local.find_records("applications", status="pending")
    application_dd = _choice("Application", [(a["id"], full_name(a)) for a in pending])
    class_dd = _choice("Admit to class", _class_names(app))
    decision = _choice("Decision", [("approve", "Admit"), ("reject", "Reject")])
    reason = _field("Rejection reason")

    def submit():
        if not application_dd.value:
            raise ValidationError("No pending application selected")
        if decision.value == "reject":
            app.students.reject_application(app.session, application_dd.value, _text(reason) or None)
            on_done()
            return "Application rejected"
        app.students.process_admission(app.session, application_dd.value, class_dd.value)
        on_done()
        return "Student admitted"

    form_dialog(
        app.page,
        title="Process admission",
        fields=[application_dd, decision, class_dd, reason],
        submit_label="Save",
        on_submit=submit,
    )


# ----- classes -----
def open_create_class(app, on_done):
    name, section, room = _field("Class name"), _field("Section"), _field("Room")
    capacity = _field("Capacity", keyboard_type=ft.KeyboardType.NUMBER)
    teachers = [u for u in app.auth.list_users() if u.role == "teacher"]
    teacher_dd = _choice("Class teacher", [("", "Unassigned")] + [(u.id, u.display_name) for u in teachers], "")

    def submit():
        app.classes.create_class(
            app.session,
            {
                "class_name": _text(name),
                "section": _text(section) or None,
                "room": _text(room) or None,
                "capacity": _text(capacity) or None,
                "teacher_ids": [teacher_dd.value] if teacher_dd.value else [],
                "academic_year": load_config().academic_year,
            },
        )
        on_done()
        return "Class created"

    form_dialog(app.page, title="New class", fields=[name, section, room, capacity, teacher_dd], submit_label="Create", on_submit=submit)


def open_create_subject(app, on_done):
    name, code, department = _field("Subject name"), _field("Code"), _field("Department")
    category = _choice("Category", ("core", "elective", "extracurricular"))

    def submit():
        app.classes.create_subject(
            app.session,
            {"name": _text(name), "code": _text(code), "category": category.value, "department": _text(department) or None},
        )
        on_done()
        return "Subject created"

    form_dialog(app.page, title="New subject", fields=[name, code, category, department], submit_label="Create", on_submit=submit)


# ----- attendance and grades -----
def open_mark_attendance(app, on_done):
    class_dd = _choice("Class", _class_options(app))
    student_dd = _choice("Student", _student_options(app))
    status = _choice("Status", STATUSES)
    day = _field("Date (YYYY-MM-DD)", hint_text="today")

    def submit():
        app.attendance.mark_attendance(
            app.session,
            class_dd.value,
            student_dd.value,
            status.value,
            _text(day) or None,
            student_name=_student_name(app, student_dd.value),
            class_name=_label_of(class_dd),
        )
        on_done()
        return "Attendance saved"

    form_dialog(app.page, title="Mark attendance", fields=[class_dd, student_dd, status, day], submit_label="Save", on_submit=submit)


def open_enter_grade(app, on_done):
    class_dd = _choice("Class", _class_options(app))
    student_dd = _choice("Student", _student_options(app))
    subject_dd = _choice("Subject", [(s["id"], s.get("name") or s["id"]) for s in app.classes.list_subjects("active")])
    kind = _choice("Assessment", ASSESSMENT_TYPES)
    score = _field("Score", keyboard_type=ft.KeyboardType.NUMBER)
    max_score = _field("Out of", "100", keyboard_type=ft.KeyboardType.NUMBER)

    def submit():
        if not subject_dd.value:
            raise ValidationError("Create a subject first")
        app.grades.enter_grade(
            app.session,
            student_dd.value,
            _student_name(app, student_dd.value),
            class_dd.value,
            subject_dd.value,
            kind.value,
            _number(score, "Score"),
            _number(max_score, "Maximum score"),
            class_name=_label_of(class_dd),
            subject_name=_label_of(subject_dd),
            term_id=load_config().term_id,
            academic_year=load_config().academic_year,
        )
        on_done()
        return "Grade recorded"

    form_dialog(
        app.page,
        title="Enter grade",
        fields=[class_dd, student_dd, subject_dd, kind, score, max_score],
        submit_label="Save",
        on_submit=submit,
    )


# ----- fees -----
def open_record_payment(app, on_done):
    student_dd = _choice("Student", [(s["id"], f"{full_name(s)} ({s.get('class_name') or '-'})") for s in app.students.list_students(status="active")])
    amount = _field("Amount", keyboard_type=ft.KeyboardType.NUMBER)
    method = _choice("Method", PAYMENT_METHODS)
    remarks = _field("Remarks")

    def submit():
        student = app.students.get_student(student_dd.value) if student_dd.value else {}
        receipt = app.fees.record_payment(
            app.session,
            student_dd.value,
            _number(amount, "Amount"),
            method.value,
            student_name=full_name(student),
            class_name=student.get("class_name") or "",
            term_id=load_config().term_id,
            academic_year=load_config().academic_year,
            remarks=_text(remarks) or None,
        )
        on_done()
        return f"Payment saved, receipt {receipt.receipt_number}"

    form_dialog(app.page, title="Record payment", fields=[student_dd, amount, method, remarks], submit_label="Record", on_submit=submit)


# ----- promotions -----
def open_promotion_request(app, on_done):
    class_dd = _choice("Class", _class_options(app))
    year = _field("Academic year", load_config().academic_year or "")
    listing = ft.Column(spacing=4, tight=True)
    decisions: dict[str, ft.Dropdown] = {}

    def fill(_=None):
        class_name = _label_of(class_dd)
        decisions.clear()
        listing.controls = []
        for student in app.students.list_students(class_name=class_name, status="active"):
            dd = _choice(full_name(student), (("promote", "Promote"), ("repeat", "Repeat")))
            decisions[student["id"]] = dd
            listing.controls.append(dd)
        app.page.update()

    class_dd.on_change = fill
    fill()

    def submit():
        app.promotions.create_promotion_request(
            app.session,
            class_dd.value,
            _label_of(class_dd),
            _text(year),
            [{"student_id": sid, "student_name": dd.label, "decision": dd.value} for sid, dd in decisions.items()],
        )
        on_done()
        return "Promotion request submitted"

    form_dialog(app.page, title="Request promotions", fields=[class_dd, year, listing], submit_label="Submit", on_submit=submit, width=480)


def open_review_promotion(app, on_done):
    pending = app.promotions.list_requests("pending")
    request_dd = _choice(
        "Request", [(r["id"], f"{r.get('class_name')} {r.get('academic_year')} by {r.get('teacher_name')}") for r in pending]
    )
    decision = _choice("Decision", [("approve", "Approve"), ("reject", "Reject")])
    comments = _field("Comments", multiline=True, min_lines=2)

    def submit():
        if not request_dd.value:
            raise ValidationError("No pending request selected")
        status = app.promotions.review_promotion_request(
            app.session, request_dd.value, decision.value == "approve", _text(comments) or None
        )
        on_done()
        return f"Request {status}"

    form_dialog(app.page, title="Review promotion", fields=[request_dd, decision, comments], submit_label="Save", on_submit=submit)


# ----- users -----
def open_create_user(app, on_done, roles=None):
    """With no signed-in user this is the first-run administrator setup."""

    username, name = _field("Username"), _field("Full name")
    secret = _field("Password", password=True, can_reveal_password=True)
    role = _choice("Role", [(key, ROLE_LABELS[key]) for key in (roles or ROLE_LABELS)])

    def submit():
        user = app.auth.create_user(_text(username), secret.value or "", _text(name), role.value, session=app.session)
        on_done()
        return f"Account {user.username} created"

    form_dialog(app.page, title="New account", fields=[username, name, secret, role], submit_label="Create", on_submit=submit)


__all__ = [
    "open_add_student",
    "open_create_class",
    "open_create_subject",
    "open_create_user",
    "open_enter_grade",
    "open_mark_attendance",
    "open_process_admission",
    "open_promotion_request",
    "open_record_payment",
    "open_review_promotion",
]
