# ui/pages/dashboard.py
import flet as ft

from core.roles import ROLE_LABELS
from core.settings import SCHOOL, UI


def _card(title: str, value: str, icon, color=None) -> ft.Container:
    return ft.Container(
        width=220,
        padding=16,
        border=ft.border.all(1, UI.theme.outline),
        border_radius=10,
        content=ft.Row(
            [
                ft.Icon(icon, color=color or UI.color_scheme_seed, size=30),
                ft.Column(
                    [ft.Text(title, color=UI.theme.text_subtle, size=12), ft.Text(value, size=20, weight=ft.FontWeight.BOLD)],
                    spacing=2,
                ),
            ],
            spacing=12,
        ),
    )


class DashboardPage:
    def __init__(self, app):
        self.app = app
        self.greeting = ft.Text(size=24, weight=ft.FontWeight.BOLD)
        self.subtitle = ft.Text(color=UI.theme.text_subtle)
        self.cards = ft.Row(wrap=True, spacing=12, run_spacing=12)
        self.view = ft.Container(
            content=ft.Column([self.greeting, self.subtitle, self.cards], spacing=16, scroll=ft.ScrollMode.AUTO),
            expand=True,
            padding=20,
        )

    def load(self):
        session = self.app.session
        if session is None:
            return
        summary = self.app.reports.dashboard_summary()
        self.greeting.value = f"Welcome, {session.display_name}"
        self.subtitle.value = f"{SCHOOL.name} - {ROLE_LABELS.get(session.role, session.role)}"

        cards = [
            _card("Active students", str(summary["active_students"]), ft.Icons.PEOPLE),
            _card(
                "Attendance today",
                f"{summary['attendance_today']['rate']:.0f}% of {summary['attendance_today']['marked']}",
                ft.Icons.FACT_CHECK,
            ),
        ]
        if session.role in ("admin", "accountant"):
            cards += [
                _card("Collected this month", f"{SCHOOL.currency} {summary['collected_this_month']:,.2f}", ft.Icons.PAYMENTS, UI.theme.status_ok),
                _card("Outstanding fees", f"{SCHOOL.currency} {summary['outstanding_fees']:,.2f}", ft.Icons.ACCOUNT_BALANCE_WALLET),
                _card("Overdue accounts", str(summary["overdue_accounts"]), ft.Icons.WARNING_AMBER, UI.theme.status_error),
            ]
        if session.role == "admin":
            cards += [
                _card("Pending admissions", str(summary["pending_applications"]), ft.Icons.PERSON_ADD),
                _card("Pending promotions", str(summary["pending_promotions"]), ft.Icons.TRENDING_UP),
            ]
        pending = summary["pending_sync_count"]
        cards.append(
            _card(
                "Unsynced changes",
                str(pending),
                ft.Icons.CLOUD_OFF if pending else ft.Icons.CLOUD_DONE,
                UI.theme.status_pending if pending else UI.theme.status_ok,
            )
        )
        self.cards.controls = cards
        self.app.page.update()

    def activate_from_menu(self):
        self.load()
