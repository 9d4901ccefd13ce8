"""Data access for ``sync_queue`` rows. No retry or routing policy lives here."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, case, func, literal_column, or_, text
from sqlmodel import Session, select

from core.entity_types import EntityType, SyncDirection
from datetime_utils import ensure_utc
from models.queue_item import SyncQueueItem


MAX_BATCH_SIZE = 500
MAX_ERROR_LENGTH = 1000
MAX_RESPONSE_LENGTH = 2000


def _truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


def load_payload(item: SyncQueueItem) -> Dict[str, Any]:
    try:
        data = json.loads(item.payload or "{}")
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def dump_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)


def _pending():
    return and_(
        SyncQueueItem.synced == False,  # noqa: E712
        SyncQueueItem.dead_lettered == False,  # noqa: E712
    )


@dataclass
class EntityQueueStats:
    pending: int = 0
    synced: int = 0
    dead_lettered: int = 0


@dataclass
class QueueStats:
    by_entity_type: Dict[str, EntityQueueStats] = field(default_factory=dict)
    pending: int = 0
    synced: int = 0
    dead_lettered: int = 0
    oldest_pending_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "pending": self.pending,
            "synced": self.synced,
            "deadLettered": self.dead_lettered,
            "oldestPendingAt": self.oldest_pending_at,
            "byEntityType": {
                name: {
                    "pending": stats.pending,
                    "synced": stats.synced,
                    "deadLettered": stats.dead_lettered,
                }
                for name, stats in self.by_entity_type.items()
            },
        }


class QueueStore:
    """Queries and state transitions over ``sync_queue`` for one store."""

    def __init__(self, store_id: str) -> None:
        self.store_id = store_id

    # ----- reads -----
    def get(self, session: Session, item_id: str) -> Optional[SyncQueueItem]:
        return session.get(SyncQueueItem, item_id)

    def find_active(
        self,
        session: Session,
        entity_type: EntityType,
        entity_id: str,
        operation: str,
        direction: SyncDirection,
    ) -> Optional[SyncQueueItem]:
        stmt = (
            select(SyncQueueItem)
            .where(SyncQueueItem.store_id == self.store_id)
            .where(SyncQueueItem.entity_type == entity_type.value)
            .where(SyncQueueItem.entity_id == entity_id)
            .where(SyncQueueItem.operation == operation)
            .where(SyncQueueItem.direction == direction.value)
            .where(_pending())
            .order_by(SyncQueueItem.created_at.asc())
        )
        return session.exec(stmt).first()

    def due_push(
        self,
        session: Session,
        now: datetime,
        limit: int,
        entity_type: Optional[EntityType] = None,
    ) -> List[SyncQueueItem]:
        """Pending PUSH rows whose retry time has passed, highest priority first."""

        safe_limit = max(0, min(limit, MAX_BATCH_SIZE))
        stmt = (
            select(SyncQueueItem)
            .where(SyncQueueItem.store_id == self.store_id)
            .where(SyncQueueItem.direction == SyncDirection.PUSH.value)
            .where(_pending())
            .where(
                or_(
                    SyncQueueItem.retry_after == None,  # noqa: E711
                    SyncQueueItem.retry_after <= now,
                )
            )
        )
        if entity_type is not None:
            stmt = stmt.where(SyncQueueItem.entity_type == entity_type.value)
        stmt = stmt.order_by(
            SyncQueueItem.priority.desc(),
            SyncQueueItem.created_at.asc(),
            literal_column("sync_queue.rowid").asc(),
        ).limit(safe_limit)
        return list(session.exec(stmt))

    def has_older_pending(self, session: Session, item: SyncQueueItem) -> bool:
        """True when an earlier non-terminal PUSH for the same entity is still open."""

        row = session.connection().execute(
            text(
                """
                SELECT 1 FROM sync_queue AS older, sync_queue AS me
                WHERE me.id = :id
                  AND older.id != me.id
                  AND older.store_id = me.store_id
                  AND older.entity_type = me.entity_type
                  AND older.entity_id = me.entity_id
                  AND older.direction = 'PUSH'
                  AND older.synced = 0
                  AND older.dead_lettered = 0
                  AND (older.created_at < me.created_at
                       OR (older.created_at = me.created_at AND older.rowid < me.rowid))
                LIMIT 1
                """
            ),
            {"id": item.id},
        ).first()
        return row is not None

    def is_current(self, session: Session, item: SyncQueueItem) -> bool:
        """True while ``item`` is still pending at the attempt count it was read with."""

        return self._reload(session, item.id, item.attempts) is not None

    def list_dead_lettered(
        self,
        session: Session,
        entity_type: Optional[EntityType] = None,
        *,
        error_category: Optional[str] = None,
        operation: Optional[str] = None,
        limit: int = MAX_BATCH_SIZE,
    ) -> List[SyncQueueItem]:
        stmt = (
            select(SyncQueueItem)
            .where(SyncQueueItem.store_id == self.store_id)
            .where(SyncQueueItem.dead_lettered == True)  # noqa: E712
        )
        if entity_type is not None:
            stmt = stmt.where(SyncQueueItem.entity_type == entity_type.value)
        if error_category is not None:
            stmt = stmt.where(SyncQueueItem.last_error_category == error_category)
        if operation is not None:
            stmt = stmt.where(SyncQueueItem.operation == operation)
        stmt = stmt.order_by(SyncQueueItem.created_at.asc()).limit(limit)
        return list(session.exec(stmt))

    def count_pending(self, session: Session, direction: Optional[SyncDirection] = None) -> int:
        stmt = (
            select(func.count())
            .select_from(SyncQueueItem)
            .where(SyncQueueItem.store_id == self.store_id)
            .where(_pending())
        )
        if direction is not None:
            stmt = stmt.where(SyncQueueItem.direction == direction.value)
        return int(session.exec(stmt).one())

    def count(self, session: Session) -> int:
        stmt = (
            select(func.count())
            .select_from(SyncQueueItem)
            .where(SyncQueueItem.store_id == self.store_id)
        )
        return int(session.exec(stmt).one())

    def stats(self, session: Session) -> QueueStats:
        is_pending = and_(
            SyncQueueItem.synced == False,  # noqa: E712
            SyncQueueItem.dead_lettered == False,  # noqa: E712
        )
        stmt = (
            select(
                SyncQueueItem.entity_type,
                func.sum(case((is_pending, 1), else_=0)),
                func.sum(case((SyncQueueItem.synced == True, 1), else_=0)),  # noqa: E712
                func.sum(case((SyncQueueItem.dead_lettered == True, 1), else_=0)),  # noqa: E712
            )
            .where(SyncQueueItem.store_id == self.store_id)
            .group_by(SyncQueueItem.entity_type)
            .order_by(SyncQueueItem.entity_type)
        )
        result = QueueStats()
        for entity_type, pending, synced, dead in session.exec(stmt):
            entry = EntityQueueStats(int(pending or 0), int(synced or 0), int(dead or 0))
            result.by_entity_type[entity_type] = entry
            result.pending += entry.pending
            result.synced += entry.synced
            result.dead_lettered += entry.dead_lettered

        oldest = session.exec(
            select(func.min(SyncQueueItem.created_at))
            .where(SyncQueueItem.store_id == self.store_id)
            .where(_pending())
        ).one()
        result.oldest_pending_at = ensure_utc(oldest) if isinstance(oldest, datetime) else None
        return result

    # ----- writes -----
    def insert(self, session: Session, item: SyncQueueItem) -> SyncQueueItem:
        session.add(item)
        session.flush()
        return item

    def _reload(self, session: Session, item_id: str, expected_attempts: int) -> Optional[SyncQueueItem]:
        """Fresh copy of a row still pending at ``expected_attempts``, else ``None``."""

        row = session.get(SyncQueueItem, item_id, populate_existing=True)
        if row is None or row.synced or row.dead_lettered:
            return None
        if row.attempts != expected_attempts:
            return None
        return row

    def mark_synced(
        self,
        session: Session,
        item_id: str,
        *,
        expected_attempts: int,
        now: datetime,
        http_status: Optional[int] = None,
        response_body: Optional[str] = None,
        api_endpoint: Optional[str] = None,
        error: Optional[str] = None,
        error_category: Optional[str] = None,
    ) -> bool:
        row = self._reload(session, item_id, expected_attempts)
        if row is None:
            return False
        row.synced = True
        row.synced_at = now
        row.last_attempt_at = now
        row.retry_after = None
        row.http_status = http_status
        row.response_body = _truncate(response_body, MAX_RESPONSE_LENGTH)
        if api_endpoint is not None:
            row.api_endpoint = api_endpoint
        if error is not None:
            row.last_error = _truncate(error, MAX_ERROR_LENGTH)
            row.last_error_category = error_category
        session.add(row)
        session.flush()
        return True

    def record_failure(
        self,
        session: Session,
        item_id: str,
        *,
        expected_attempts: int,
        now: datetime,
        error: str,
        error_category: str,
        retry_after: Optional[datetime],
        dead_letter_reason: Optional[str] = None,
        http_status: Optional[int] = None,
        response_body: Optional[str] = None,
        api_endpoint: Optional[str] = None,
    ) -> Optional[SyncQueueItem]:
        """Count a failed attempt; dead-letter when ``dead_letter_reason`` is given."""

        row = self._reload(session, item_id, expected_attempts)
        if row is None:
            return None
        row.attempts = min(row.attempts + 1, row.max_attempts)
        row.last_attempt_at = now
        row.last_error = _truncate(error, MAX_ERROR_LENGTH)
        row.last_error_category = error_category
        row.http_status = http_status
        row.response_body = _truncate(response_body, MAX_RESPONSE_LENGTH)
        if api_endpoint is not None:
            row.api_endpoint = api_endpoint
        if dead_letter_reason is not None:
            row.dead_lettered = True
            row.dead_letter_reason = dead_letter_reason
            row.retry_after = None
        else:
            if retry_after is None or ensure_utc(retry_after) <= ensure_utc(now):
                raise ValueError("retry_after must be later than the attempt time")
            row.retry_after = retry_after
        session.add(row)
        session.flush()
        return row

    def purge_synced(self, session: Session, before: datetime) -> int:
        """Delete synced rows older than ``before``; operator tooling only."""

        rows = session.exec(
            select(SyncQueueItem)
            .where(SyncQueueItem.store_id == self.store_id)
            .where(SyncQueueItem.synced == True)  # noqa: E712
            .where(SyncQueueItem.synced_at < before)
        ).all()
        for row in rows:
            session.delete(row)
        session.flush()
        return len(rows)


__all__ = [
    "EntityQueueStats",
    "MAX_BATCH_SIZE",
    "QueueStats",
    "QueueStore",
    "dump_payload",
    "load_payload",
]
