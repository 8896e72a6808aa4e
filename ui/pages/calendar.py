# ui/pages/calendar.py
from __future__ import annotations

import re
import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import List, Optional

import flet as ft

from core.settings import UI
from helpers.datetime_utils import start_of_day
from models.event import Calendar, Event, RecurrenceFrequency, RecurrencePattern
from services.calendar_controller import CalendarController, UICallbacks, WeekLayout
from services.event_service import EventService
from services.geometry import EventGeometry, map_vertical
from services.scoped_edit import EditScope

# ===== настройки =====
CAL_UI = UI.calendar
THEME = UI.theme

SLOT_H = CAL_UI.slot_height
DAY_COL_W = CAL_UI.day_column_width
HOURS_COL_W = CAL_UI.hours_column_width
HEADER_H = CAL_UI.header_height
ALL_DAY_ROW_H = CAL_UI.all_day_row_height
SIDE_PANEL_W = 220
DIALOG_W = 520

SCOPE_LABELS = {
    EditScope.OCCURRENCE: "Только это событие",
    EditScope.THIS_AND_FUTURE: "Это и последующие",
    EditScope.SERIES: "Все события серии",
}

FREQUENCY_LABELS = {
    RecurrenceFrequency.NONE: "Не повторять",
    RecurrenceFrequency.DAILY: "Каждый день",
    RecurrenceFrequency.WEEKLY: "Каждую неделю",
    RecurrenceFrequency.BIWEEKLY: "Каждые две недели",
    RecurrenceFrequency.MONTHLY: "Каждый месяц",
    RecurrenceFrequency.YEARLY: "Каждый год",
}


class CalendarPage:
    """
    Недельный вид с масштабируемой осью времени.
    - Колёсико мыши меняет окно часов, перетаскивание по пустому месту его сдвигает.
    - Перетаскивание события переносит его, края события меняют длительность.
    - ESC снимает индикатор вложения в групповое событие.
    """

    def __init__(self, app):
        self.app = app
        self.svc: EventService = app.events
        self.controller = CalendarController(
            self.svc,
            ui=UICallbacks(
                open_edit_dialog=self._open_edit_dialog,
                open_new_event_dialog=self._open_new_event_dialog,
                report_error=self._toast,
            ),
        )
        self._layout: Optional[WeekLayout] = None
        self._last_pointer: Optional[tuple] = None
        self._panning = False

        # ---------- Шапка экрана ----------
        self.title_text = ft.Text("", size=24, weight=ft.FontWeight.BOLD)
        self.zoom_text = ft.Text("", size=12, color=THEME.text_subtle)
        self.home_btn = ft.IconButton(icon=ft.Icons.HOME, tooltip="Текущая неделя", on_click=lambda e: self.go_home())
        self.prev_btn = ft.IconButton(icon=ft.Icons.CHEVRON_LEFT, tooltip="Назад на неделю", on_click=lambda e: self.shift_week(-1))
        self.next_btn = ft.IconButton(icon=ft.Icons.CHEVRON_RIGHT, tooltip="Вперёд на неделю", on_click=lambda e: self.shift_week(1))
        self.unzoom_btn = ft.IconButton(icon=ft.Icons.ZOOM_OUT_MAP, tooltip="Весь день", on_click=lambda e: self.clear_zoom())

        header = ft.Row(
            controls=[
                ft.Row([self.prev_btn, self.home_btn, self.next_btn], spacing=6),
                self.title_text,
                ft.Row([self.zoom_text, self.unzoom_btn], spacing=6),
            ],
            alignment=ft.MainAxisAlignment.SPACE_BETWEEN,
        )

        # ---------- Календари ----------
        self.calendar_list = ft.Column(spacing=4)
        self.side_panel = ft.Container(
            width=SIDE_PANEL_W,
            content=ft.Column(
                [ft.Text("Календари", size=16, weight=ft.FontWeight.W_600), ft.Divider(height=1), self.calendar_list],
                spacing=8,
            ),
            padding=10,
            border=ft.border.all(0.5, THEME.outline),
            border_radius=8,
        )

        # ---------- Область сетки ----------
        self.grid = ft.Container(expand=True)
        self.view = ft.Container(
            content=ft.Column(
                [header, ft.Divider(height=1), ft.Row([self.side_panel, self.grid], expand=True, spacing=12)],
                spacing=12,
                expand=True,
            ),
            expand=True,
            padding=20,
        )

    # ===== публичное =====
    def activate_from_menu(self):
        self.app.page.on_keyboard_event = self._on_key
        self.controller.go_to_week(date.today())
        self.load()

    def deactivate(self):
        self.controller.teardown()
        if self.app.page.on_keyboard_event == self._on_key:
            self.app.page.on_keyboard_event = None

    def go_home(self):
        self.controller.go_to_week(date.today())
        self.load()

    def shift_week(self, delta_weeks: int):
        self.controller.teardown()
        self.controller.shift_week(delta_weeks)
        self.load()

    def clear_zoom(self):
        self.controller.clear_zoom()
        self._render()

    # ===== Загрузка =====
    def load(self):
        start, end = self.controller.range
        self.controller.set_calendars(self.svc.list_calendars())
        self.controller.set_events(self.svc.list_in_range(start, end))
        ws = self.controller.week_start
        we = ws + timedelta(days=6)
        self.title_text.value = f"Неделя {ws.strftime('%d.%m')}–{we.strftime('%d.%m.%Y')}"
        self._build_calendar_list()
        self.controller.layout_week()
        self._render()

    def _render(self):
        self._layout = self.controller.layout or self.controller.layout_week()
        window = self.controller.zoom.effective_window
        self.zoom_text.value = f"{int(window.start_hour):02d}:00–{int(window.end_hour):02d}:00"
        self.grid.content = self._build_week_grid(self._layout)
        self.app.page.update()

    # ===== Календари =====
    def _build_calendar_list(self):
        self.calendar_list.controls.clear()
        for cal in self.controller.calendars.values():
            label = cal.name + (" (только чтение)" if cal.read_only else "")
            self.calendar_list.controls.append(
                ft.Checkbox(
                    label=label,
                    value=cal.is_visible,
                    fill_color=cal.color,
                    on_change=lambda e, c=cal: self._toggle_calendar(c, bool(e.control.value)),
                )
            )

    def _toggle_calendar(self, cal: Calendar, visible: bool):
        self.svc.save_calendar(replace(cal, is_visible=visible))
        self.load()

    # ===== Сетка =====
    def _build_week_grid(self, layout: WeekLayout) -> ft.Control:
        today = date.today()
        width = DAY_COL_W * len(layout.days)

        header_cells: List[ft.Control] = []
        for i, d in enumerate(layout.days):
            header_cells.append(
                ft.Container(
                    width=DAY_COL_W,
                    height=HEADER_H,
                    content=ft.Column(
                        [
                            ft.Text(d.strftime("%a"), size=14, weight=ft.FontWeight.W_600),
                            ft.Text(d.strftime("%d.%m"), size=12, color=THEME.text_subtle),
                        ],
                        spacing=2,
                        horizontal_alignment=ft.CrossAxisAlignment.CENTER,
                    ),
                    alignment=ft.alignment.center,
                    bgcolor=THEME.today_bg if d == today else None,
                    border=ft.border.only(right=ft.BorderSide(0.5, THEME.outline)) if i < len(layout.days) - 1 else None,
                )
            )
        top_header = ft.Row([ft.Container(width=HOURS_COL_W, height=HEADER_H), *header_cells], spacing=0)

        all_day = ft.Row(
            [ft.Container(width=HOURS_COL_W, content=ft.Text("весь день", size=10, color=THEME.text_subtle)),
             self._build_all_day_row(layout, width)],
            spacing=0,
        )

        body = ft.Row(
            [self._build_hours_column(layout), self._build_timed_area(layout, width)],
            spacing=0,
            vertical_alignment=ft.CrossAxisAlignment.START,
        )
        vscroll_body = ft.Column([body], spacing=0, expand=True, scroll=ft.ScrollMode.ALWAYS)

        return ft.Container(
            content=ft.Column(
                [top_header, all_day, ft.Divider(height=1, color=THEME.outline), vscroll_body],
                spacing=0,
                expand=True,
            ),
            expand=True,
            border_radius=8,
            border=ft.border.all(0.5, THEME.outline),
            padding=8,
            bgcolor="#fff",
        )

    def _build_all_day_row(self, layout: WeekLayout, width: float) -> ft.Control:
        rows = max([p.row for p in layout.all_day], default=-1) + 1
        height = max(rows, 1) * ALL_DAY_ROW_H
        controls: List[ft.Control] = []
        for i, d in enumerate(layout.days):
            controls.append(
                ft.Container(
                    left=i * DAY_COL_W,
                    top=0,
                    width=DAY_COL_W,
                    height=height,
                    border=ft.border.only(right=ft.BorderSide(0.5, THEME.outline)),
                    on_click=lambda e, _d=d: self.controller.tap_all_day(_d),
                )
            )
        for p in layout.all_day:
            ev = p.event
            controls.append(
                ft.Container(
                    left=p.first_day_index * DAY_COL_W + 2,
                    top=p.top + 1,
                    width=p.day_span * DAY_COL_W - 4,
                    height=ALL_DAY_ROW_H - 2,
                    bgcolor=THEME.read_only_bg if not self.controller.is_editable(ev) else THEME.event_bg,
                    border_radius=4,
                    padding=ft.padding.symmetric(horizontal=6),
                    content=ft.Text(ev.title, size=11, no_wrap=True, overflow=ft.TextOverflow.ELLIPSIS),
                    on_click=lambda e, _ev=ev: self._open_edit_dialog(_ev),
                )
            )
        return ft.Container(width=width, height=height, content=ft.Stack(controls, width=width, height=height))

    def _tick_top(self, minute: float) -> float:
        state = self.controller.zoom.state
        unit = state.granularity.main_minutes if state.is_active else 60
        return (minute - state.start_minutes) / unit * SLOT_H

    def _build_hours_column(self, layout: WeekLayout) -> ft.Control:
        labels: List[ft.Control] = []
        for tick in layout.ticks:
            if not tick.labeled:
                continue
            labels.append(
                ft.Container(
                    top=max(self._tick_top(tick.minute) - 7, 0),
                    right=8,
                    content=ft.Text(tick.label, size=11, color=THEME.text_subtle),
                )
            )
        return ft.Container(
            width=HOURS_COL_W,
            height=layout.axis_height,
            content=ft.Stack(labels, width=HOURS_COL_W, height=layout.axis_height),
        )

    def _build_timed_area(self, layout: WeekLayout, width: float) -> ft.Control:
        today = date.today()
        height = layout.axis_height
        controls: List[ft.Control] = []

        for i, d in enumerate(layout.days):
            controls.append(
                ft.Container(
                    left=i * DAY_COL_W,
                    top=0,
                    width=DAY_COL_W,
                    height=height,
                    bgcolor=THEME.today_bg if d == today else None,
                    border=ft.border.only(right=ft.BorderSide(0.5, THEME.outline)),
                )
            )
        for tick in layout.ticks:
            controls.append(
                ft.Container(
                    left=0,
                    top=self._tick_top(tick.minute),
                    width=width,
                    height=1,
                    bgcolor=THEME.outline if tick.labeled else THEME.surface_variant,
                )
            )

        dragged_id = self.controller.drag.session.event.id if self.controller.drag.session else None
        reparent = self.controller.drag.reparent_target
        for geo in layout.geometries():
            controls.append(
                self._event_box(
                    geo,
                    layout,
                    faded=geo.event.id == dragged_id,
                    highlighted=reparent is not None and reparent.id == geo.event.id,
                )
            )

        preview = self._drag_preview()
        if preview is not None:
            controls.append(preview)

        return ft.GestureDetector(
            content=ft.Container(width=width, height=height, content=ft.Stack(controls, width=width, height=height)),
            on_tap_up=self._on_tap_up,
            on_pan_start=self._on_pan_start,
            on_pan_update=self._on_pan_update,
            on_pan_end=self._on_pan_end,
            on_scroll=self._on_scroll,
            drag_interval=10,
        )

    def _event_box(self, geo: EventGeometry, layout: WeekLayout, *, faded: bool, highlighted: bool) -> ft.Control:
        ev = geo.event
        column = layout.grid.column_for(geo.day)
        left, width = geo.horizontal.to_pixels(DAY_COL_W)
        if not self.controller.is_editable(ev):
            bg = THEME.read_only_bg
        elif ev.is_group_event:
            bg = THEME.group_bg
        else:
            bg = THEME.event_bg

        time_label = f"{ev.start_time:%H:%M}–{ev.end_time:%H:%M}"
        inner: List[ft.Control] = [
            ft.Container(
                left=0,
                top=0,
                right=0,
                content=ft.Column(
                    [
                        ft.Text(ev.title, size=11, weight=ft.FontWeight.W_600, color=THEME.event_text,
                                no_wrap=True, overflow=ft.TextOverflow.ELLIPSIS),
                        ft.Text(time_label, size=10, color=THEME.text_subtle),
                    ],
                    spacing=0,
                    tight=True,
                ),
            )
        ]
        for child in layout.children.get(ev.id, []):
            c_left, c_width = child.horizontal.to_pixels(width)
            inner.append(
                ft.Container(
                    left=c_left,
                    top=geo.vertical.height * child.top_pct / 100,
                    width=c_width,
                    height=max(geo.vertical.height * child.height_pct / 100, 4),
                    bgcolor=THEME.event_bg,
                    border_radius=4,
                    padding=ft.padding.symmetric(horizontal=4),
                    content=ft.Text(child.event.title, size=10, no_wrap=True, overflow=ft.TextOverflow.ELLIPSIS),
                    on_click=lambda e, _ev=child.event: self._open_edit_dialog(_ev),
                )
            )

        return ft.Container(
            left=column.left + left,
            top=geo.vertical.top,
            width=width,
            height=max(geo.vertical.height, 4),
            bgcolor=bg,
            opacity=0.4 if faded else 1.0,
            border_radius=6,
            padding=4,
            border=ft.border.all(2 if highlighted else 0.5, THEME.reparent_outline if highlighted else THEME.outline),
            content=ft.Stack(inner),
            tooltip=f"{ev.title}\n{time_label}" + (f"\n{ev.location}" if ev.location else ""),
        )

    def _drag_preview(self) -> Optional[ft.Control]:
        drag = self.controller.drag
        candidate = drag.candidate
        if drag.session is None or candidate is None or self._layout is None:
            return None
        column = self._layout.grid.column_for(candidate.day)
        if column is None:
            return None
        ghost = replace(drag.session.event, start_time=candidate.start_time, end_time=candidate.end_time)
        vertical = map_vertical(ghost, candidate.day, self.controller.zoom.state, SLOT_H)
        if vertical is None:
            return None
        return ft.Container(
            left=column.left + 2,
            top=vertical.top,
            width=DAY_COL_W - 4,
            height=max(vertical.height, 4),
            bgcolor=THEME.drag_preview_bg,
            opacity=0.8,
            border_radius=6,
            padding=4,
            content=ft.Text(f"{candidate.start_time:%H:%M}–{candidate.end_time:%H:%M}", size=11),
        )

    # ===== Жесты =====
    def _on_tap_up(self, e: ft.TapEvent):
        self.controller.tap(e.local_x, e.local_y)

    def _on_pan_start(self, e: ft.DragStartEvent):
        self._last_pointer = (e.local_x, e.local_y)
        session = self.controller.pointer_down(e.local_x, e.local_y)
        # пустое место: сдвиг масштабированного окна
        self._panning = session is None
        self._render()

    def _on_pan_update(self, e: ft.DragUpdateEvent):
        self._last_pointer = (e.local_x, e.local_y)
        if self._panning:
            if self.controller.zoom.is_active:
                self.controller.pan(e.delta_y)
                self._render()
            return
        self.controller.pointer_move(e.local_x, e.local_y)
        self._render()

    async def _on_pan_end(self, e: ft.DragEndEvent):
        if self._panning:
            self._panning = False
            return
        x, y = self._last_pointer or (None, None)
        await self.controller.pointer_up(x, y)
        self._last_pointer = None
        self._render()

    def _on_scroll(self, e: ft.ScrollEvent):
        delta = e.scroll_delta_y or 0
        if not delta:
            return
        # вниз: окно шире, вверх: уже
        self.controller.wheel(delta, e.local_y)
        self._render()

    def _on_key(self, e: ft.KeyboardEvent):
        self.controller.key_pressed(e.key)
        if self.controller.drag.is_active:
            self._render()

    # ===== Диалоги =====
    def _open_dialog(self, dlg: ft.AlertDialog):
        self.app.page.open(dlg)

    def _close_dialog(self, dlg: Optional[ft.AlertDialog]):
        if dlg is None:
            return
        self.app.page.close(dlg)
        self.app.cleanup_overlays()

    def _open_new_event_dialog(self, day: date, is_all_day: bool):
        default = self.svc.ensure_default_calendar()
        start_dt = start_of_day(day) + timedelta(hours=9)
        title_tf = ft.TextField(label="Название", width=DIALOG_W - 40, autofocus=True)
        start_tf = ft.TextField(label="Начало", value="09:00", width=110, disabled=is_all_day)
        end_tf = ft.TextField(label="Конец", value="10:00", width=110, disabled=is_all_day)
        location_tf = ft.TextField(label="Место", width=DIALOG_W - 40)
        freq_dd = ft.Dropdown(
            label="Повтор",
            width=220,
            value=RecurrenceFrequency.NONE.value,
            options=[ft.dropdown.Option(f.value, label) for f, label in FREQUENCY_LABELS.items()],
        )
        group_cb = ft.Checkbox(label="Групповое событие", value=False)
        dlg = None

        async def on_save(_):
            title = (title_tf.value or "").strip()
            if not title:
                return self._toast("Введите название")
            if is_all_day:
                start, end = start_of_day(day), start_of_day(day) + timedelta(days=1)
            else:
                start = self._combine(day, start_tf.value)
                end = self._combine(day, end_tf.value)
                if start is None or end is None:
                    return self._toast("Неверный формат времени. Пример: 09:30")
                if end <= start:
                    return self._toast("Конец должен быть позже начала")
            frequency = RecurrenceFrequency.parse(freq_dd.value)
            event = Event(
                id=str(uuid.uuid4()),
                title=title,
                start_time=start,
                end_time=end,
                calendar_id=default.id,
                location=(location_tf.value or "").strip() or None,
                all_day=is_all_day,
                is_group_event=bool(group_cb.value),
                recurrence=RecurrencePattern(frequency) if frequency is not RecurrenceFrequency.NONE else None,
            )
            self._close_dialog(dlg)
            if await self.controller.save_event(event):
                self._toast("Создано")
            self._render()

        dlg = ft.AlertDialog(
            modal=False,
            title=ft.Text(f"Новое событие: {start_dt.strftime('%a, %d.%m')}"),
            content=ft.Container(
                width=DIALOG_W,
                content=ft.Column(
                    [title_tf, ft.Row([start_tf, end_tf], spacing=8), location_tf, freq_dd, group_cb],
                    spacing=10,
                    tight=True,
                ),
            ),
            actions=[
                ft.TextButton("Отмена", on_click=lambda e: self._close_dialog(dlg)),
                ft.FilledButton("Сохранить", icon=ft.Icons.SAVE, on_click=on_save),
            ],
            actions_alignment=ft.MainAxisAlignment.END,
        )
        self._open_dialog(dlg)

    def _open_edit_dialog(self, event: Event):
        editable = self.controller.is_editable(event)
        recurring = event.is_recurring or event.is_recurrence_instance

        title_tf = ft.TextField(label="Название", value=event.title, width=DIALOG_W - 40, disabled=not editable)
        date_tf = ft.TextField(label="Дата", value=event.start_time.strftime("%d.%m.%Y"), width=140, disabled=not editable)
        start_tf = ft.TextField(label="Начало", value=event.start_time.strftime("%H:%M"), width=110,
                                disabled=not editable or event.all_day)
        end_tf = ft.TextField(label="Конец", value=event.end_time.strftime("%H:%M"), width=110,
                              disabled=not editable or event.all_day)
        location_tf = ft.TextField(label="Место", value=event.location or "", width=DIALOG_W - 40, disabled=not editable)
        notes_tf = ft.TextField(label="Описание", value=event.description or "", multiline=True,
                                min_lines=3, max_lines=6, disabled=not editable)
        scope_dd = ft.Dropdown(
            label="Применить к",
            width=260,
            value=EditScope.OCCURRENCE.value,
            options=[ft.dropdown.Option(s.value, label) for s, label in SCOPE_LABELS.items()],
            visible=recurring and editable,
        )
        dlg = None

        def _scope() -> EditScope:
            return EditScope(scope_dd.value) if recurring else EditScope.SERIES

        async def on_save(_):
            day = self._parse_date(date_tf.value)
            if day is None:
                return self._toast("Неверный формат даты. Пример: 10.10.2025")
            if event.all_day:
                start = start_of_day(day)
                end = start + event.duration
            else:
                start = self._combine(day, start_tf.value)
                end = self._combine(day, end_tf.value)
                if start is None or end is None:
                    return self._toast("Неверный формат времени. Пример: 09:30")
            title = (title_tf.value or "").strip()
            if not title:
                return self._toast("Введите название")
            fields = {
                "title": title,
                "location": (location_tf.value or "").strip() or None,
                "description": notes_tf.value or None,
            }
            if start != event.start_time or end != event.end_time:
                fields["start_time"] = start
                fields["end_time"] = end
            self._close_dialog(dlg)
            if await self.controller.modify(event, _scope(), fields):
                self._toast("Сохранено")
            self._render()

        async def on_delete(_):
            self._close_dialog(dlg)
            if await self.controller.delete(event, _scope()):
                self._toast("Удалено")
            self._render()

        actions: List[ft.Control] = [ft.TextButton("Закрыть", on_click=lambda e: self._close_dialog(dlg))]
        if editable:
            actions = [
                ft.TextButton("Удалить", icon=ft.Icons.DELETE_OUTLINE, on_click=on_delete),
                *actions,
                ft.FilledButton("Сохранить", icon=ft.Icons.SAVE, on_click=on_save),
            ]

        body: List[ft.Control] = [title_tf, ft.Row([date_tf, start_tf, end_tf], spacing=8), location_tf, notes_tf]
        if recurring and editable:
            body.append(scope_dd)
        if not editable:
            body.append(ft.Text("Событие из подписки, только для чтения", size=12, color=THEME.text_subtle))

        dlg = ft.AlertDialog(
            modal=False,
            title=ft.Text("Событие"),
            content=ft.Container(width=DIALOG_W, content=ft.Column(body, spacing=10, tight=True)),
            actions=actions,
            actions_alignment=ft.MainAxisAlignment.END,
        )
        self._open_dialog(dlg)

    # ===== сервис =====
    def _parse_date(self, s: str) -> Optional[date]:
        m = re.match(r"^\s*(\d{1,2})\.(\d{1,2})\.(\d{4})\s*$", s or "")
        if not m:
            return None
        try:
            return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        except ValueError:
            return None

    def _combine(self, day: date, time_str: str) -> Optional[datetime]:
        m = re.match(r"^\s*(\d{1,2}):(\d{2})\s*$", time_str or "")
        if not m:
            return None
        h, minute = int(m.group(1)), int(m.group(2))
        if h == 24 and minute == 0:
            return start_of_day(day) + timedelta(days=1)
        if 0 <= h <= 23 and 0 <= minute <= 59:
            return datetime(day.year, day.month, day.day, h, minute)
        return None

    def _toast(self, text: str):
        self.app.page.open(ft.SnackBar(ft.Text(text)))
        self.app.page.update()
