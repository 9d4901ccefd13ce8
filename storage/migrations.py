"""Additive schema migrations for the sync tables.

Older installs created ``sync_queue`` before dead-lettering and API context
were tracked. Columns are only ever added; existing column meanings stay put
because diagnostic tooling outside the engine reads them.
"""

from __future__ import annotations

from sqlalchemy import text


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def _table_exists(conn, table: str) -> bool:
    result = conn.execute(
        text("SELECT 1 FROM sqlite_master WHERE type='table' AND name=:name"),
        {"name": table},
    )
    return result.first() is not None


QUEUE_COLUMNS = {
    "direction": "TEXT NOT NULL DEFAULT 'PUSH'",
    "last_error_category": "TEXT",
    "retry_after": "DATETIME",
    "dead_lettered": "BOOLEAN NOT NULL DEFAULT 0",
    "dead_letter_reason": "TEXT",
    "api_endpoint": "TEXT",
    "http_status": "INTEGER",
    "response_body": "TEXT",
}


def ensure_queue_columns(conn) -> None:
    if not _table_exists(conn, "sync_queue"):
        return
    for name, ddl_type in QUEUE_COLUMNS.items():
        if not _column_exists(conn, "sync_queue", name):
            conn.execute(text(f"ALTER TABLE sync_queue ADD COLUMN {name} {ddl_type}"))


def ensure_queue_indexes(conn) -> None:
    if not _table_exists(conn, "sync_queue"):
        return
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS ix_sync_queue_due
            ON sync_queue (direction, synced, dead_lettered, retry_after)
            """
        )
    )
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS ix_sync_queue_entity_dedup
            ON sync_queue (entity_type, entity_id, operation, direction)
            """
        )
    )
    # superseded by ix_sync_queue_entity_dedup
    conn.execute(text("DROP INDEX IF EXISTS ix_sync_queue_dedup"))


def backfill_dead_letters(conn) -> None:
    """Rows exhausted before dead-lettering existed are dead-lettered now."""

    if not _table_exists(conn, "sync_queue"):
        return
    conn.execute(
        text(
            """
            UPDATE sync_queue
            SET dead_lettered = 1,
                dead_letter_reason = COALESCE(dead_letter_reason, 'MAX_ATTEMPTS_EXCEEDED')
            WHERE synced = 0 AND dead_lettered = 0 AND attempts >= max_attempts
            """
        )
    )


def run_all(engine) -> None:
    with engine.begin() as conn:
        ensure_queue_columns(conn)
        ensure_queue_indexes(conn)
        backfill_dead_letters(conn)


__all__ = ["QUEUE_COLUMNS", "run_all"]
