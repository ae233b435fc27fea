# ui/pages/login.py
import flet as ft

from core.errors import AuthenticationError
from core.roles import ADMIN
from core.settings import SCHOOL, UI
from storage.config import load_config, update_config
from ui.forms import open_create_user


class LoginPage:
    def __init__(self, app):
        self.app = app
        config = load_config()

        self.username = ft.TextField(
            label="Username",
            value=config.last_username or "",
            autofocus=not config.last_username,
            on_submit=self.submit,
        )
        self.password = ft.TextField(
            label="Password",
            password=True,
            can_reveal_password=True,
            autofocus=bool(config.last_username),
            on_submit=self.submit,
        )
        self.error = ft.Text("", color=UI.theme.status_error, visible=False)
        self.submit_btn = ft.FilledButton("Sign in", icon=ft.Icons.LOGIN, on_click=self.submit)
        self.setup_btn = ft.TextButton(
            "First-time setup",
            on_click=lambda _: open_create_user(self.app, lambda: None, roles=(ADMIN,)),
        )

        card = ft.Container(
            width=360,
            padding=24,
            border=ft.border.all(1, UI.theme.outline),
            border_radius=12,
            content=ft.Column(
                [
                    ft.Text(SCHOOL.name, size=22, weight=ft.FontWeight.BOLD),
                    ft.Text("Sign in to continue", color=UI.theme.text_subtle),
                    self.username,
                    self.password,
                    self.error,
                    ft.Row([self.setup_btn, self.submit_btn], alignment=ft.MainAxisAlignment.SPACE_BETWEEN),
                ],
                spacing=14,
                tight=True,
            ),
        )
        self.view = ft.Container(content=card, alignment=ft.alignment.center, expand=True)

    def reset(self):
        self.password.value = ""
        self.error.visible = False

    def submit(self, _):
        identifier = (self.username.value or "").strip()
        self.submit_btn.disabled = True
        self.app.page.update()
        try:
            session = self.app.auth.login(identifier, self.password.value or "")
        except AuthenticationError as exc:
            self.error.value = str(exc)
            self.error.visible = True
            self.submit_btn.disabled = False
            self.app.page.update()
            return
        update_config(last_username=identifier)
        self.submit_btn.disabled = False
        self.reset()
        self.app.on_login(session)
