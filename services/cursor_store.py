from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select

from core.entity_types import EntityType
from datetime_utils import ensure_utc
from models.sync_cursor import SyncCursor


class CursorStore:
    """Per entity type pull/push watermarks, scoped to one store."""

    def __init__(self, store_id: str) -> None:
        self.store_id = store_id

    def get(self, session: Session, entity_type: EntityType) -> Optional[SyncCursor]:
        return session.get(SyncCursor, (self.store_id, entity_type.value))

    def last_pull_at(self, session: Session, entity_type: EntityType) -> Optional[datetime]:
        cursor = self.get(session, entity_type)
        return ensure_utc(cursor.last_pull_at) if cursor else None

    def _ensure(self, session: Session, entity_type: EntityType) -> SyncCursor:
        cursor = self.get(session, entity_type)
        if cursor is None:
            cursor = SyncCursor(store_id=self.store_id, entity_type=entity_type.value)
        return cursor

    def advance_pull(
        self,
        session: Session,
        entity_type: EntityType,
        high_water_mark: Optional[datetime],
        *,
        records: int,
        now: datetime,
        pages: int = 1,
    ) -> SyncCursor:
        """Move ``last_pull_at`` forward; a watermark never goes backwards."""

        cursor = self._ensure(session, entity_type)
        current = ensure_utc(cursor.last_pull_at)
        mark = ensure_utc(high_water_mark)
        if mark is not None and (current is None or mark > current):
            cursor.last_pull_at = mark
        cursor.pages_pulled += pages
        cursor.records_pulled += records
        cursor.updated_at = now
        session.add(cursor)
        session.flush()
        return cursor

    def mark_pushed(self, session: Session, entity_type: EntityType, now: datetime) -> None:
        cursor = self._ensure(session, entity_type)
        cursor.last_push_at = now
        cursor.updated_at = now
        session.add(cursor)
        session.flush()

    def reset(self, session: Session, entity_type: Optional[EntityType] = None) -> int:
        """Forget pull watermarks so the next pull is a full resync."""

        stmt = select(SyncCursor).where(SyncCursor.store_id == self.store_id)
        if entity_type is not None:
            stmt = stmt.where(SyncCursor.entity_type == entity_type.value)
        rows = session.exec(stmt).all()
        for row in rows:
            row.last_pull_at = None
            row.pages_pulled = 0
            row.records_pulled = 0
            session.add(row)
        session.flush()
        return len(rows)

    def all(self, session: Session) -> List[SyncCursor]:
        stmt = (
            select(SyncCursor)
            .where(SyncCursor.store_id == self.store_id)
            .order_by(SyncCursor.entity_type)
        )
        return list(session.exec(stmt))


__all__ = ["CursorStore"]
