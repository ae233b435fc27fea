# ui/pages/records.py
from typing import Callable, Optional, Sequence

import flet as ft

from core.settings import UI


class RecordsPage:
    """Table over one local collection with a per-row sync marker.

    ``actions`` are ``(label, icon, opener)`` triples; each opener gets the
    shell and a refresh callback and usually shows a form from ``ui.forms``.
    """

    def __init__(
        self,
        app,
        title: str,
        table_name: str,
        columns: Sequence[tuple[str, str]],
        *,
        row_filter: Optional[Callable[[dict], bool]] = None,
        sort_key: Optional[str] = None,
        source: Optional[Callable[[], list[dict]]] = None,
        actions: Sequence[tuple[str, str, Callable]] = (),
    ):
        self.app = app
        self.table_name = table_name
        self.columns = list(columns)
        self.row_filter = row_filter
        self.sort_key = sort_key
        self.source = source
        buttons = [
            ft.FilledTonalButton(label, icon=getattr(ft.Icons, icon, None), on_click=lambda _, opener=opener: opener(self.app, self.load))
            for label, icon, opener in actions
        ]

        self.search = ft.TextField(
            hint_text="Search",
            prefix_icon=ft.Icons.SEARCH,
            dense=True,
            width=280,
            on_change=lambda _: self.load(),
        )
        self.count = ft.Text(color=UI.theme.text_subtle)
        self.table = ft.DataTable(
            columns=[ft.DataColumn(ft.Text(label)) for _, label in self.columns] + [ft.DataColumn(ft.Text(""))],
            rows=[],
        )
        self.view = ft.Container(
            content=ft.Column(
                [
                    ft.Text(title, size=24, weight=ft.FontWeight.BOLD),
                    ft.Row([self.search, self.count, *buttons], spacing=16, wrap=True),
                    ft.Column([self.table], scroll=ft.ScrollMode.AUTO, expand=True),
                ],
                spacing=16,
                expand=True,
            ),
            expand=True,
            padding=20,
        )

    def _rows(self) -> list[dict]:
        records = self.source() if self.source is not None else self.app.local.list_records(self.table_name)
        if self.row_filter is not None:
            records = [r for r in records if self.row_filter(r)]
        needle = (self.search.value or "").strip().lower()
        if needle:
            records = [
                r for r in records if any(needle in str(r.get(key, "")).lower() for key, _ in self.columns)
            ]
        if self.sort_key:
            records.sort(key=lambda r: str(r.get(self.sort_key) or ""))
        return records

    def load(self):
        records = self._rows()
        rows = []
        for record in records:
            pending = self.app.local.record_status(self.table_name, record["id"]) == "pending"
            marker = ft.Icon(
                ft.Icons.CLOUD_UPLOAD if pending else ft.Icons.CLOUD_DONE,
                color=UI.theme.status_pending if pending else UI.theme.status_ok,
                size=16,
                tooltip="Waiting to sync" if pending else "Synced",
            )
            cells = [
                ft.DataCell(ft.Text("" if record.get(key) is None else str(record.get(key))))
                for key, _ in self.columns
            ]
            rows.append(ft.DataRow(cells=cells + [ft.DataCell(marker)]))
        self.table.rows = rows
        self.count.value = f"{len(records)} record(s)"
        self.app.page.update()

    def activate_from_menu(self):
        self.load()
