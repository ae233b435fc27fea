# ui/app_shell.py
from __future__ import annotations

import asyncio
import logging

import flet as ft

from core.errors import RemoteStoreError
from core.roles import ADMIN, filter_nav_items
from core.session import SessionContext
from core.settings import SYNC, UI
from services.attendance import AttendanceService
from services.audit_log import AuditLogger
from services.auth import AuthService
from services.classes import CLASSES, ClassService
from services.fees import FeeService
from services.grades import GradeService
from services.promotions import PromotionService
from services.remote_store import RemoteStore, create_remote_store
from services.reports import ReportService
from services.students import StudentService
from services.sync_service import SyncResult, SyncService
from storage.config import load_config
from storage.local_store import LocalStore

from . import forms
from .pages.dashboard import DashboardPage
from .pages.login import LoginPage
from .pages.records import RecordsPage
from .pages.reports import ReportsPage
from .pages.settings import SettingsPage
from .pages.sync_status import SyncStatusPage


logger = logging.getLogger("schooldesk.ui")


class AppShell:
    def __init__(self, page: ft.Page, *, remote: RemoteStore | None = None, local: LocalStore | None = None):
        self.page = page
        self.page.title = UI.app_title
        self.page.horizontal_alignment = ft.CrossAxisAlignment.STRETCH
        self.page.vertical_alignment = ft.MainAxisAlignment.START

        self.local = local or LocalStore()
        self.remote = remote or self._connect_remote()
        self.audit = AuditLogger(self.remote)
        self.sync_service = SyncService(self.remote, self.local) if self.remote else None

        self.auth = AuthService(self.local, self.remote, self.audit)
        self.classes = ClassService(self.local, self.audit)
        self.students = StudentService(self.local, self.audit)
        self.attendance = AttendanceService(self.local, self.audit)
        self.grades = GradeService(self.local, self.audit)
        self.fees = FeeService(self.local, self.audit)
        self.promotions = PromotionService(self.local, self.audit)
        self.reports = ReportService(self.local, self.audit)

        self.session: SessionContext | None = None
        self._login = LoginPage(self)
        self._pages: dict = {}
        self._nav_keys: list[str] = []

        self.content = ft.Container(expand=True)
        self.nav = ft.NavigationRail(
            selected_index=0,
            label_type=ft.NavigationRailLabelType.ALL,
            min_width=UI.nav_width,
            min_extended_width=200,
            group_alignment=-0.9,
            on_change=self.on_nav_change,
            destinations=[],
        )
        self.sync_badge = ft.Icon(ft.Icons.CLOUD_DONE, color=UI.theme.status_ok, size=18)
        self.root = ft.Row(
            controls=[
                ft.Container(
                    ft.Column([ft.Container(self.nav, expand=True), ft.Container(self.sync_badge, padding=12)]),
                    width=UI.nav_width,
                    bgcolor=UI.theme.safe_surface_bg,
                ),
                ft.VerticalDivider(width=1),
                self.content,
            ],
            expand=True,
            spacing=0,
        )

        self._auto_task: asyncio.Task | None = None
        self._active_view: str | None = None

    def _connect_remote(self) -> RemoteStore | None:
        backend = load_config().remote_backend
        try:
            return create_remote_store(backend)
        except RemoteStoreError as exc:
            logger.warning("Remote store unavailable, running offline only: %s", exc)
            return None

    # ---------- pages ----------
    def _build_page(self, key: str):
        admin = self.session is not None and self.session.role == ADMIN
        if key == "dashboard":
            return DashboardPage(self)
        if key == "students":
            return RecordsPage(
                self,
                "Students",
                "students",
                [("student_code", "Code"), ("first_name", "First name"), ("last_name", "Last name"), ("class_name", "Class"), ("status", "Status")],
                sort_key="last_name",
                source=lambda: self.classes.visible_students(self.session),
                actions=[("Add student", "PERSON_ADD", forms.open_add_student)] if admin else [],
            )
        if key == "teachers":
            return RecordsPage(
                self,
                "Teachers",
                "users",
                [("username", "Username"), ("display_name", "Name")],
                row_filter=lambda r: r.get("role") == "teacher",
                sort_key="display_name",
                actions=[("New account", "PERSON_ADD", forms.open_create_user)],
            )
        if key == "classes":
            actions = [("Mark attendance", "FACT_CHECK", forms.open_mark_attendance)]
            if admin:
                actions = [
                    ("New class", "ADD", forms.open_create_class),
                    ("New subject", "MENU_BOOK", forms.open_create_subject),
                ] + actions
            return RecordsPage(
                self,
                "Classes & Subjects",
                CLASSES,
                [("class_name", "Class"), ("section", "Section"), ("room", "Room"), ("capacity", "Capacity"), ("status", "Status")],
                sort_key="class_name",
                source=lambda: self.classes.visible_classes(self.session),
                actions=actions,
            )
        if key == "admissions":
            return RecordsPage(
                self,
                "Admissions",
                "applications",
                [("first_name", "First name"), ("last_name", "Last name"), ("parent_phone", "Parent phone"), ("status", "Status")],
                sort_key="created_at",
                actions=[("Process application", "HOW_TO_REG", forms.open_process_admission)],
            )
        if key == "grades":
            return RecordsPage(
                self,
                "Grades & Records",
                "assessments",
                [("student_name", "Student"), ("subject_name", "Subject"), ("assessment_type", "Type"), ("percentage", "%"), ("grade", "Grade")],
                sort_key="date",
                actions=[("Enter grade", "EDIT_NOTE", forms.open_enter_grade)],
            )
        if key == "promotions":
            actions = [("Request promotions", "TRENDING_UP", forms.open_promotion_request)]
            if admin:
                actions.append(("Review request", "GAVEL", forms.open_review_promotion))
            return RecordsPage(
                self,
                "Promotions",
                "promotionRequests",
                [("class_name", "Class"), ("academic_year", "Year"), ("teacher_name", "Teacher"), ("status", "Status")],
                sort_key="submitted_at",
                actions=actions,
            )
        if key == "reports":
            return ReportsPage(self)
        if key == "users":
            return RecordsPage(
                self,
                "User Management",
                "users",
                [("username", "Username"), ("display_name", "Name"), ("role", "Role")],
                sort_key="username",
                actions=[("New account", "PERSON_ADD", forms.open_create_user)],
            )
        if key == "billing":
            return RecordsPage(
                self,
                "Fees & Billing",
                "payments",
                [("receipt_number", "Receipt"), ("student_name", "Student"), ("amount", "Amount"), ("payment_method", "Method"), ("payment_date", "Date")],
                sort_key="receipt_number",
                actions=[("Record payment", "PAYMENTS", forms.open_record_payment)],
            )
        if key == "sync":
            return SyncStatusPage(self)
        return SettingsPage(self)

    def _page_for(self, key: str):
        if key not in self._pages:
            self._pages[key] = self._build_page(key)
        return self._pages[key]

    # ---------- utilities ----------
    def _has_open_overlay(self) -> bool:
        """Skip background refreshes while a dialog is open."""
        try:
            return any(getattr(c, "open", False) for c in (self.page.overlay or []))
        except Exception:
            return False

    def _update_sync_badge(self, result: SyncResult | None = None) -> None:
        pending = sum(self.local.pending_counts().values())
        if result is not None and not result.success and not result.skipped:
            icon, color, tip = ft.Icons.SYNC_PROBLEM, UI.theme.status_error, f"{len(result.errors)} change(s) failed"
        elif pending:
            icon, color, tip = ft.Icons.CLOUD_UPLOAD, UI.theme.status_pending, f"{pending} change(s) waiting"
        else:
            icon, color, tip = ft.Icons.CLOUD_DONE, UI.theme.status_ok, "All changes synced"
        self.sync_badge.name = icon
        self.sync_badge.color = color
        self.sync_badge.tooltip = tip

    def run_sync(self) -> SyncResult | None:
        if self.sync_service is None:
            return None
        result = self.sync_service.sync_all_tables()
        self._update_sync_badge(result)
        return result

    def _start_auto_sync(self) -> None:
        self._stop_auto_sync()
        if self.sync_service is None or not SYNC.enabled:
            return
        interval = max(5, SYNC.auto_sync_interval_sec)

        async def _loop():
            while self.session is not None:
                await asyncio.sleep(interval)
                if self.session is None:
                    break
                if self._has_open_overlay():
                    continue
                self.run_sync()
                page = self._pages.get(self._active_view)
                if page is not None:
                    page.load()
                else:
                    self.page.update()

        self._auto_task = self.page.run_task(_loop)

    def _stop_auto_sync(self) -> None:
        if self._auto_task:
            self._auto_task.cancel()
        self._auto_task = None

    def _subscribe_remote(self) -> None:
        for table_name in self.sync_service.tables:
            try:
                self.sync_service.subscribe_remote(table_name, self._on_remote_change)
            except RemoteStoreError as exc:
                logger.warning("Live updates unavailable for %s: %s", table_name, exc)

    def _on_remote_change(self, event: str, record_id: str, _data) -> None:
        logger.debug("Remote %s for %s", event, record_id)
        if self.session is None or self._has_open_overlay():
            return
        page = self._pages.get(self._active_view)
        if page is not None:
            page.load()

    # ---------- mount / session ----------
    def mount(self):
        self.page.controls.clear()
        self._login.reset()
        self.page.add(self._login.view)
        self.page.update()

    def on_login(self, session: SessionContext):
        self.session = session
        items = filter_nav_items(session.role)
        self._nav_keys = [item.key for item in items]
        self._pages = {}
        self.nav.destinations = [
            ft.NavigationRailDestination(icon=getattr(ft.Icons, item.icon, ft.Icons.CIRCLE), label=item.title)
            for item in items
        ]
        self.nav.selected_index = 0

        if self.sync_service is not None:
            try:
                self.sync_service.pull_all()
            except Exception as exc:
                logger.warning("Initial download failed: %s", exc)
            self.run_sync()
            self._subscribe_remote()

        self.page.controls.clear()
        self.page.add(self.root)
        self._show(self._nav_keys[0])
        self._start_auto_sync()

    def logout(self):
        if self.session is not None:
            self.auth.logout(self.session)
        self.session = None
        self._stop_auto_sync()
        if self.sync_service is not None:
            self.sync_service.close()
        self._active_view = None
        self.mount()

    # ---------- navigation ----------
    def _show(self, key: str):
        page = self._page_for(key)
        self._active_view = key
        self.content.content = page.view
        self.page.update()
        page.activate_from_menu()

    def on_nav_change(self, e: ft.ControlEvent):
        idx = int(e.control.selected_index)
        if 0 <= idx < len(self._nav_keys):
            self._show(self._nav_keys[idx])

    def close(self):
        self._stop_auto_sync()
        if self.sync_service is not None:
            self.sync_service.close()
        self.audit.shutdown()
        if self.remote is not None:
            self.remote.close()
