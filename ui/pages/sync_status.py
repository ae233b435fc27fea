# ui/pages/sync_status.py
from datetime import timezone

import flet as ft

from core.settings import UI
from services.sync_service import read_sync_log
from ui.dialogs import confirm_dialog, show_snack


_STATUS_COLORS = {
    "idle": UI.theme.text_subtle,
    "syncing": UI.theme.status_pending,
    "completed": UI.theme.status_ok,
    "error": UI.theme.status_error,
}


class SyncStatusPage:
    """Per-table queue state plus the operator actions for the sync queue."""

    def __init__(self, app):
        self.app = app

        self.summary = ft.Text()
        self.last_pass = ft.Text(color=UI.theme.text_subtle)
        self.table = ft.DataTable(
            columns=[
                ft.DataColumn(ft.Text("Table")),
                ft.DataColumn(ft.Text("Pending"), numeric=True),
                ft.DataColumn(ft.Text("Status")),
                ft.DataColumn(ft.Text("Last error")),
            ],
            rows=[],
        )
        self.sync_btn = ft.FilledButton("Sync now", icon=ft.Icons.SYNC, on_click=self.sync_now)
        self.pull_btn = ft.OutlinedButton("Download changes", icon=ft.Icons.CLOUD_DOWNLOAD, on_click=self.pull_now)
        self.retry_btn = ft.OutlinedButton("Retry failed", icon=ft.Icons.REPLAY, on_click=self.retry_failed)
        self.clear_btn = ft.TextButton(
            "Clear queue",
            icon=ft.Icons.DELETE_FOREVER,
            on_click=self.clear_queue,
            style=ft.ButtonStyle(color=UI.theme.status_error),
        )
        self.log_view = ft.Text("", selectable=True, size=12, font_family="monospace")

        content = ft.Column(
            controls=[
                ft.Text("Sync Status", size=24, weight=ft.FontWeight.BOLD),
                self.summary,
                self.last_pass,
                ft.Row([self.sync_btn, self.pull_btn, self.retry_btn, self.clear_btn], spacing=12, wrap=True),
                self.table,
                ft.Column(
                    [
                        ft.Row(
                            [
                                ft.Text("Sync log", size=18, weight=ft.FontWeight.W_600),
                                ft.IconButton(ft.Icons.REFRESH, tooltip="Reload log", on_click=self.refresh_log),
                            ]
                        ),
                        ft.Container(
                            ft.Column([self.log_view], scroll=ft.ScrollMode.AUTO),
                            height=220,
                            padding=10,
                            bgcolor=UI.theme.safe_surface_bg,
                        ),
                    ],
                    spacing=8,
                ),
            ],
            expand=True,
            spacing=16,
            scroll=ft.ScrollMode.AUTO,
        )
        self.view = ft.Container(content=content, expand=True, padding=20)

    def _format_dt(self, value) -> str:
        if not value:
            return "-"
        if getattr(value, "tzinfo", None) is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")

    def load(self):
        service = self.app.sync_service
        if service is None:
            self.summary.value = "Remote store is not configured; changes stay on this device."
            self.table.rows = []
            for btn in (self.sync_btn, self.pull_btn, self.retry_btn, self.clear_btn):
                btn.disabled = True
            self.app.page.update()
            return

        status = service.status()
        self.summary.value = (
            f"Backend: {status['backend']}  |  queued: {status['queueSize']}  |  parked: {status['parked']}"
        )
        self.last_pass.value = "Last pass: " + self._format_dt(status.get("lastPassAt"))
        self.table.rows = [
            ft.DataRow(
                cells=[
                    ft.DataCell(ft.Text(row.table_name)),
                    ft.DataCell(ft.Text(str(row.total))),
                    ft.DataCell(ft.Text(row.status, color=_STATUS_COLORS.get(row.status))),
                    ft.DataCell(ft.Text((row.error or "")[:80], tooltip=row.error)),
                ]
            )
            for row in service.get_sync_status()
        ]
        self.log_view.value = read_sync_log()
        self.app.page.update()

    def activate_from_menu(self):
        self.load()

    # ---------- actions ----------
    def sync_now(self, _):
        result = self.app.run_sync()
        if result is None:
            return
        if result.skipped:
            show_snack(self.app.page, "A sync is already running")
        elif result.success:
            show_snack(self.app.page, f"Synced {result.total_synced} change(s)")
        else:
            show_snack(self.app.page, f"{len(result.errors)} change(s) failed to sync", error=True)
        self.load()

    def pull_now(self, _):
        applied = self.app.sync_service.pull_all()
        show_snack(self.app.page, f"Downloaded {sum(applied.values())} record(s)")
        self.load()

    def retry_failed(self, _):
        count = self.app.sync_service.retry_failed()
        show_snack(self.app.page, f"{count} change(s) will be retried")
        self.load()

    def clear_queue(self, _):
        def _do_clear():
            count = self.app.sync_service.clear_queue()
            show_snack(self.app.page, f"Dropped {count} unsynced change(s)")
            self.load()

        confirm_dialog(
            self.app.page,
            title="Clear sync queue?",
            message="Every unsynced change on this device will be discarded and never reach the server.",
            confirm_label="Clear queue",
            on_confirm=_do_clear,
        )

    def refresh_log(self, _):
        self.log_view.value = read_sync_log()
        self.app.page.update()
