"""Ad-hoc database migrations for SchoolDesk."""

from __future__ import annotations

from sqlalchemy import text


def _table_exists(conn, table: str) -> bool:
    result = conn.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name=:name"),
        {"name": table},
    )
    return result.first() is not None


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_queue_columns(conn) -> None:
    """Databases created before retry backoff lack ``next_try_at``."""

    if not _table_exists(conn, "syncqueueitem"):
        return
    if not _column_exists(conn, "syncqueueitem", "next_try_at"):
        conn.execute(text("ALTER TABLE syncqueueitem ADD COLUMN next_try_at TEXT"))
        conn.execute(
            text(
                """
                UPDATE syncqueueitem
                SET next_try_at = timestamp
                WHERE next_try_at IS NULL
                """
            )
        )


def ensure_queue_indexes(conn) -> None:
    if not _table_exists(conn, "syncqueueitem"):
        return
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS ix_syncqueueitem_table_order
            ON syncqueueitem (table_name, timestamp, id)
            """
        )
    )


def ensure_record_columns(conn) -> None:
    if not _table_exists(conn, "localrecord"):
        return
    if not _column_exists(conn, "localrecord", "deleted"):
        conn.execute(text("ALTER TABLE localrecord ADD COLUMN deleted BOOLEAN NOT NULL DEFAULT 0"))
    if not _column_exists(conn, "localrecord", "last_synced_at"):
        conn.execute(text("ALTER TABLE localrecord ADD COLUMN last_synced_at TEXT"))


def run_all(engine) -> None:
    with engine.begin() as conn:
        ensure_queue_columns(conn)
        ensure_queue_indexes(conn)
        ensure_record_columns(conn)


__all__ = ["run_all"]
