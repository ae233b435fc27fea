# ui/pages/reports.py
from datetime import timedelta

import flet as ft

from core.errors import ValidationError
from core.settings import UI
from datetime_utils import utc_now
from services.reports import REPORT_TYPES


class ReportsPage:
    def __init__(self, app):
        self.app = app
        today = utc_now().date()

        self.kind = ft.Dropdown(
            label="Report",
            width=200,
            value=REPORT_TYPES[0],
            options=[ft.dropdown.Option(kind, kind.capitalize()) for kind in REPORT_TYPES],
        )
        self.start = ft.TextField(label="From (YYYY-MM-DD)", width=180, value=(today - timedelta(days=30)).isoformat())
        self.end = ft.TextField(label="To (YYYY-MM-DD)", width=180, value=today.isoformat())
        self.synced_only = ft.Checkbox(label="Synced data only", value=True)
        self.run_btn = ft.FilledButton("Generate", icon=ft.Icons.INSIGHTS, on_click=self.generate)

        self.banner = ft.Text(color=UI.theme.status_pending)
        self.summary = ft.Column(spacing=4)
        self.view = ft.Container(
            content=ft.Column(
                [
                    ft.Text("Reports & Analytics", size=24, weight=ft.FontWeight.BOLD),
                    ft.Row([self.kind, self.start, self.end, self.synced_only, self.run_btn], wrap=True, spacing=12),
                    self.banner,
                    self.summary,
                ],
                spacing=16,
                scroll=ft.ScrollMode.AUTO,
            ),
            expand=True,
            padding=20,
        )

    def _render(self, summary: dict, depth: int = 0) -> list[ft.Control]:
        controls: list[ft.Control] = []
        for key, value in summary.items():
            label = key.replace("_", " ").capitalize()
            if isinstance(value, dict):
                controls.append(ft.Text(label, weight=ft.FontWeight.W_600))
                controls.extend(self._render(value, depth + 1))
            else:
                text = f"{value:,.2f}" if isinstance(value, float) else str(value)
                controls.append(ft.Container(ft.Text(f"{label}: {text}"), padding=ft.padding.only(left=16 * depth)))
        return controls

    def generate(self, _):
        try:
            report = self.app.reports.generate_report(
                self.app.session,
                self.kind.value,
                self.start.value or None,
                self.end.value or None,
                synced_only=bool(self.synced_only.value),
            )
        except ValidationError as exc:
            self.banner.value = str(exc)
            self.summary.controls = []
            self.app.page.update()
            return
        if report.has_pending_syncs:
            self.banner.value = (
                f"{report.pending_sync_count} local change(s) have not synced yet"
                + ("; they are excluded." if report.synced_only else "; figures include them.")
            )
        else:
            self.banner.value = ""
        self.summary.controls = [ft.Text(report.title, size=18, weight=ft.FontWeight.W_600)] + self._render(
            report.data.get("summary", {})
        )
        self.app.page.update()

    def load(self):
        self.generate(None)

    def activate_from_menu(self):
        self.load()
