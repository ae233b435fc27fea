import flet as ft

from core.errors import SchoolDeskError


def open_alert_dialog(page: ft.Page, *, title: str, content: ft.Control, actions: list[ft.Control]):
    dlg = ft.AlertDialog(
        modal=True,
        title=ft.Text(title),
        content=content,
        actions=actions,
        actions_alignment=ft.MainAxisAlignment.END,
    )
    page.open(dlg)
    return dlg


def close_alert_dialog(page: ft.Page, dlg: ft.AlertDialog | None):
    if dlg is not None:
        page.close(dlg)


def confirm_dialog(page: ft.Page, *, title: str, message: str, confirm_label: str, on_confirm):
    """Two-button confirmation; ``on_confirm`` runs only on the destructive choice."""

    dlg = None

    def _cancel(_):
        close_alert_dialog(page, dlg)

    def _confirm(_):
        close_alert_dialog(page, dlg)
        on_confirm()

    dlg = open_alert_dialog(
        page,
        title=title,
        content=ft.Text(message),
        actions=[
            ft.TextButton("Cancel", on_click=_cancel),
            ft.FilledButton(confirm_label, on_click=_confirm, style=ft.ButtonStyle(bgcolor=ft.Colors.ERROR)),
        ],
    )
    return dlg


def show_snack(page: ft.Page, message: str, *, error: bool = False):
    page.open(ft.SnackBar(ft.Text(message), bgcolor=ft.Colors.ERROR if error else None))


def form_dialog(page: ft.Page, *, title: str, fields: list[ft.Control], submit_label: str, on_submit, width: int = 420):
    """Modal form. ``on_submit`` returns a success message; domain errors keep the form open."""

    dlg = None

    def _cancel(_):
        close_alert_dialog(page, dlg)

    def _submit(_):
        try:
            message = on_submit()
        except SchoolDeskError as exc:
            show_snack(page, str(exc), error=True)
            return
        close_alert_dialog(page, dlg)
        if message:
            show_snack(page, message)

    dlg = open_alert_dialog(
        page,
        title=title,
        content=ft.Container(width=width, content=ft.Column(fields, spacing=12, tight=True, scroll=ft.ScrollMode.AUTO)),
        actions=[
            ft.TextButton("Cancel", on_click=_cancel),
            ft.FilledButton(submit_label, icon=ft.Icons.SAVE, on_click=_submit),
        ],
    )
    return dlg
