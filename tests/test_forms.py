from types import SimpleNamespace

import flet as ft
import pytest

from services.attendance import AttendanceService
from services.auth import AuthService
from services.classes import ClassService
from services.fees import PAYMENTS, FeeService
from services.students import STUDENTS, StudentService
from ui import forms
from ui.app_shell import AppShell


class FakePage:
    """Records dialogs and snack bars instead of rendering them."""

    def __init__(self):
        self.opened = []
        self.closed = []
        self.controls = []
        self.overlay = []

    def open(self, control):
        self.opened.append(control)

    def close(self, control):
        self.closed.append(control)

    def add(self, *controls):
        self.controls.extend(controls)

    def update(self):
        pass


def _app(local_store, session):
    return SimpleNamespace(
        page=FakePage(),
        session=session,
        local=local_store,
        auth=AuthService(local_store),
        classes=ClassService(local_store),
        students=StudentService(local_store),
        attendance=AttendanceService(local_store),
        fees=FeeService(local_store),
    )


def _dialog(app):
    (dlg,) = [c for c in app.page.opened if isinstance(c, ft.AlertDialog)]
    return dlg, dlg.content.content.controls


def _submit(dlg):
    dlg.actions[-1].on_click(None)


def _snacks(app):
    return [c.content.value for c in app.page.opened if isinstance(c, ft.SnackBar)]


def test_add_student_form_writes_through_the_service(local_store, admin):
    app = _app(local_store, admin)
    app.classes.create_class(admin, {"class_name": "KG 2"})
    refreshed = []

    forms.open_add_student(app, lambda: refreshed.append(True))
    dlg, (first, last, class_dd, parent, phone) = _dialog(app)
    first.value, last.value = "Akua", "Asante"
    parent.value, phone.value = "Kwesi", "0244"
    assert class_dd.value == "KG 2"
    _submit(dlg)

    (student,) = local_store.list_records(STUDENTS)
    assert student["class_name"] == "KG 2"
    assert refreshed == [True]
    assert app.page.closed == [dlg]
    assert "added" in _snacks(app)[0]


def test_form_stays_open_and_reports_domain_errors(local_store, accountant):
    app = _app(local_store, accountant)
    StudentService(local_store).add_student(
        SimpleNamespace(user_id="u-admin", display_name="Ama", role="admin"),
        {"first_name": "Yaw", "last_name": "Mensah", "class_name": "KG 1"},
    )

    forms.open_record_payment(app, lambda: None)
    dlg, (student_dd, amount, method, _remarks) = _dialog(app)
    amount.value = "lots"
    _submit(dlg)

    assert app.page.closed == []
    assert _snacks(app) == ["Amount must be a number"]

    amount.value = "150"
    method.value = "mobile_money"
    _submit(dlg)
    (payment,) = local_store.list_records(PAYMENTS)
    assert payment["student_name"] == "Yaw Mensah"
    assert app.page.closed == [dlg]


def test_attendance_form_offers_only_the_teachers_classes(local_store, admin, teacher):
    other = ClassService(local_store).create_class(admin, {"class_name": "Primary 5", "teacher_ids": ["u-other"]})
    app = _app(local_store, teacher)

    forms.open_mark_attendance(app, lambda: None)
    dlg, (class_dd, student_dd, _status, _day) = _dialog(app)

    assert other not in [option.key for option in class_dd.options]
    class_dd.value = other
    student_dd.value = "s1"
    _submit(dlg)
    assert app.page.closed == []
    assert _snacks(app)[0].startswith("Access denied")
    assert local_store.get_pending_sync_items("attendance") == []


@pytest.fixture()
def shell(local_store, remote):
    app = AppShell(FakePage(), remote=remote, local=local_store)
    yield app
    app.close()


def test_shell_follows_remote_changes_until_logout(shell, local_store, remote, admin):
    shell.session = admin
    shell._subscribe_remote()

    remote.set(STUDENTS, "s9", {"first_name": "Efua", "updated_at": "2030-01-01T00:00:00+00:00"})
    assert local_store.get_record(STUDENTS, "s9")["first_name"] == "Efua"

    shell.logout()
    remote.set(STUDENTS, "s10", {"first_name": "Ato", "updated_at": "2030-01-01T00:00:00+00:00"})
    assert local_store.get_record(STUDENTS, "s10") is None
