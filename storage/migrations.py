"""Ad-hoc database migrations for Streamline."""

from __future__ import annotations

from sqlalchemy import text


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_event_columns(conn) -> None:
    """Add columns introduced after the first calendar_event schema."""
    columns = {
        "location": "TEXT",
        "is_group_event": "BOOLEAN NOT NULL DEFAULT 0",
        "parent_group_event_id": "TEXT",
        "recurrence_exception": "TEXT",
    }
    for name, ddl_type in columns.items():
        if not _column_exists(conn, "calendar_event", name):
            conn.execute(text(f"ALTER TABLE calendar_event ADD COLUMN {name} {ddl_type}"))


def ensure_event_indexes(conn) -> None:
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS ix_calendar_event_parent
            ON calendar_event (parent_group_event_id)
            """
        )
    )


def ensure_calendar_columns(conn) -> None:
    if not _column_exists(conn, "calendar", "is_read_only"):
        conn.execute(text("ALTER TABLE calendar ADD COLUMN is_read_only BOOLEAN NOT NULL DEFAULT 0"))
    # Subscribed feeds were created before the flag existed.
    conn.execute(text("UPDATE calendar SET is_read_only = 1 WHERE id LIKE 'ics-%'"))


def run_all(engine) -> None:
    with engine.begin() as conn:
        ensure_event_columns(conn)
        ensure_event_indexes(conn)
        ensure_calendar_columns(conn)


__all__ = ["run_all"]
