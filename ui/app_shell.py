# ui/app_shell.py
from __future__ import annotations

import flet as ft

from core.settings import UI
from services.event_service import EventService

from .pages.calendar import CalendarPage


class AppShell:
    def __init__(self, page: ft.Page, *, events: EventService | None = None):
        self.page = page

        # базовые настройки окна
        self.page.title = UI.app_title
        self.page.horizontal_alignment = ft.CrossAxisAlignment.STRETCH
        self.page.vertical_alignment = ft.MainAxisAlignment.START

        # хранилище событий; календарь по умолчанию нужен для новых событий
        self.events = events or EventService()
        self.events.ensure_default_calendar()

        self._calendar = CalendarPage(self)
        self.root = ft.Container(self._calendar.view, expand=True)

    def cleanup_overlays(self):
        """Remove closed dialogs left in the page overlay."""
        overlays = getattr(self.page, "overlay", None) or []
        changed = False
        for ctrl in list(overlays):
            if isinstance(ctrl, (ft.AlertDialog, ft.SnackBar)) and not getattr(ctrl, "open", False):
                overlays.remove(ctrl)
                changed = True
        if changed:
            self.page.update()

    # ---------- монтаж ----------
    def mount(self):
        self.page.controls.clear()
        self.page.add(self.root)
        self._calendar.activate_from_menu()

    def teardown(self):
        self._calendar.deactivate()
