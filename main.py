# streamline/main.py
import os, sys
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
import logging

import flet as ft

from core.settings import APP_NAME, DB_PATH, LOGGING, UI
from storage.db import init_db
from ui.app_shell import AppShell

logger = logging.getLogger(LOGGING.logger_name)


def main(page: ft.Page):
    page.title = UI.app_title
    page.theme_mode = UI.theme_mode
    page.theme = ft.Theme(color_scheme_seed=UI.color_scheme_seed)
    page.appbar = ft.AppBar(title=ft.Text(f"{APP_NAME} · Календарь"), center_title=False)
    page.padding = 0
    page.window.min_width = UI.window_min_width
    page.window.min_height = UI.window_min_height

    init_db()
    shell = AppShell(page)
    logger.info("Calendar opened, database %s", DB_PATH)

    # незавершённый жест не должен пережить закрытие окна
    page.on_disconnect = lambda e: shell.teardown()
    shell.mount()


def run():
    ft.app(target=main)


if __name__ == "__main__":
    run()
