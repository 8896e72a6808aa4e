"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "Streamline"


DATA_DIR = get_default_data_dir(APP_NAME)
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "calendar.db"

# Ids of events imported from subscribed ICS feeds carry this prefix.
READ_ONLY_ID_PREFIX = "ics-"


@dataclass(frozen=True)
class ThemeColors:
    outline: str = "#E5E7EB"
    surface_variant: str = "#F1F5F9"
    text_subtle: str = "#6B7280"
    today_bg: str = "#EEF2FF"
    event_bg: str = "#E0E7FF"
    event_text: str = "#1F2937"
    group_bg: str = "#FEF3C7"
    read_only_bg: str = "#E2E8F0"
    drag_preview_bg: str = "#C7D2FE"
    reparent_outline: str = "#F59E0B"


@dataclass(frozen=True)
class CalendarUISettings:
    slot_height: int = 48           # pixels per main-interval tick
    day_column_width: int = 160
    hours_column_width: int = 64
    header_height: int = 54
    column_gutter_px: int = 4
    all_day_row_height: int = 24


@dataclass(frozen=True)
class ZoomSettings:
    min_hours: int = 2
    max_hours: int = 24
    step_hours: int = 2


@dataclass(frozen=True)
class DragSettings:
    threshold_px: int = 5


@dataclass(frozen=True)
class RecurrenceSettings:
    max_occurrences: int = 5000


@dataclass(frozen=True)
class LoggingSettings:
    logger_name: str = "streamline"
    filename: str = "calendar.log"
    max_bytes: int = 1_000_000
    backup_count: int = 3
    level: str = "INFO"


@dataclass(frozen=True)
class UISettings:
    app_title: str = APP_NAME
    theme_mode: str = "system"
    color_scheme_seed: str = "#4F46E5"
    window_min_width: int = 900
    window_min_height: int = 600
    theme: ThemeColors = ThemeColors()
    calendar: CalendarUISettings = CalendarUISettings()


UI = UISettings()
ZOOM = ZoomSettings()
DRAG = DragSettings()
RECURRENCE = RecurrenceSettings()
LOGGING = LoggingSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOG_DIR",
    "DB_PATH",
    "READ_ONLY_ID_PREFIX",
    "UI",
    "ZOOM",
    "DRAG",
    "RECURRENCE",
    "LOGGING",
    "get_default_data_dir",
]
