# ui/pages/settings.py
import flet as ft

from core.roles import ROLE_LABELS
from core.settings import DATA_DIR, REMOTE, UI
from storage.config import load_config, update_config
from ui.dialogs import show_snack


class SettingsPage:
    def __init__(self, app):
        self.app = app
        config = load_config()

        self.account = ft.Text()
        self.academic_year = ft.TextField(label="Academic year", hint_text="2025/2026", value=config.academic_year or "", width=220)
        self.term = ft.TextField(label="Term", value=config.term_id or "", width=220)
        self.backend = ft.Dropdown(
            label="Remote backend",
            width=220,
            value=config.remote_backend or REMOTE.backend,
            options=[ft.dropdown.Option("firebase", "Firebase"), ft.dropdown.Option("postgres", "Postgres")],
        )
        self.save_btn = ft.FilledButton("Save", icon=ft.Icons.SAVE, on_click=self.save)
        self.logout_btn = ft.OutlinedButton("Sign out", icon=ft.Icons.LOGOUT, on_click=lambda _: self.app.logout())

        self.view = ft.Container(
            content=ft.Column(
                [
                    ft.Text("Settings", size=24, weight=ft.FontWeight.BOLD),
                    self.account,
                    self.academic_year,
                    self.term,
                    self.backend,
                    ft.Text("Backend changes apply after restart.", color=UI.theme.text_subtle, size=12),
                    ft.Text(f"Data folder: {DATA_DIR}", color=UI.theme.text_subtle, size=12, selectable=True),
                    ft.Row([self.save_btn, self.logout_btn], spacing=12),
                ],
                spacing=14,
            ),
            expand=True,
            padding=20,
        )

    def load(self):
        session = self.app.session
        if session is not None:
            self.account.value = (
                f"Signed in as {session.display_name} ({ROLE_LABELS.get(session.role, session.role)})"
            )
        self.app.page.update()

    def activate_from_menu(self):
        self.load()

    def save(self, _):
        update_config(
            academic_year=(self.academic_year.value or "").strip() or None,
            term_id=(self.term.value or "").strip() or None,
            remote_backend=self.backend.value,
        )
        show_snack(self.app.page, "Settings saved")
