from __future__ import annotations

from typing import List, Optional, Union

from pydantic import ValidationError

from core.entity_types import EntityType, SyncDirection, SyncOperation, parse_entity_type
from core.logs import get_logger
from models.queue_item import SyncQueueItem
from services.entity_repository import EntityRepository
from services.errors import ErrorCategory, PayloadValidationError, QueueItemError
from services.outbox import Outbox
from services.queue_store import MAX_BATCH_SIZE, QueueStore, load_payload
from storage.db import Database


logger = get_logger("dead_letter")


class DeadLetterManager:
    """Operator view of dead-lettered rows and the way back into the queue.

    A dead-lettered row is never resurrected in place; requeueing always
    enqueues a fresh PUSH row built from the current local entity.
    """

    def __init__(
        self,
        database: Database,
        queue: QueueStore,
        outbox: Outbox,
        *,
        repository: Optional[EntityRepository] = None,
    ) -> None:
        self.db = database
        self.queue = queue
        self.outbox = outbox
        self.repo = repository or EntityRepository()

    def list_dead_lettered(
        self,
        entity_type: Union[EntityType, str, None] = None,
        *,
        error_category: Union[ErrorCategory, str, None] = None,
        operation: Union[SyncOperation, str, None] = None,
        limit: int = MAX_BATCH_SIZE,
    ) -> List[SyncQueueItem]:
        kind = parse_entity_type(entity_type) if entity_type is not None else None
        with self.db.session() as session:
            return self.queue.list_dead_lettered(
                session,
                kind,
                error_category=_value(error_category),
                operation=_value(operation),
                limit=limit,
            )

    def requeue(self, queue_item_id: str) -> SyncQueueItem:
        with self.db.transaction() as session:
            return self._requeue(session, queue_item_id)

    def requeue_matching(
        self,
        entity_type: Union[EntityType, str, None] = None,
        error_category: Union[ErrorCategory, str, None] = None,
        operation: Union[SyncOperation, str, None] = None,
    ) -> List[SyncQueueItem]:
        """Requeue every dead-lettered PUSH row matching the filters."""

        kind = parse_entity_type(entity_type) if entity_type is not None else None
        created: List[SyncQueueItem] = []
        with self.db.transaction() as session:
            rows = self.queue.list_dead_lettered(
                session,
                kind,
                error_category=_value(error_category),
                operation=_value(operation),
            )
            for row in rows:
                if row.direction != SyncDirection.PUSH.value:
                    continue
                # validation fails before anything is written for the row
                try:
                    created.append(self._requeue(session, row.id))
                except (PayloadValidationError, ValidationError) as exc:
                    logger.warning(
                        "Not requeueing %s %s %s: %s", row.entity_type, row.entity_id, row.id, exc
                    )
        logger.info("Requeued %s dead-lettered row(s)", len(created))
        return created

    def _requeue(self, session, queue_item_id: str) -> SyncQueueItem:
        row = self.queue.get(session, queue_item_id)
        if row is None:
            raise QueueItemError(f"queue item {queue_item_id} not found")
        if not row.dead_lettered:
            raise QueueItemError(f"queue item {queue_item_id} is not dead-lettered")
        if row.direction != SyncDirection.PUSH.value:
            raise QueueItemError(f"queue item {queue_item_id} is a pull tracking row")

        kind = EntityType(row.entity_type)
        payload = None
        if row.operation != SyncOperation.DELETE.value:
            payload = self.repo.current_payload(session, kind, row.entity_id)
        if payload is None:
            payload = load_payload(row)

        item = self.outbox.enqueue(
            session,
            kind,
            row.entity_id,
            row.operation,
            payload,
            priority=row.priority,
            api_endpoint=row.api_endpoint,
        )
        logger.info("Requeued %s %s %s as %s", kind.value, row.entity_id, row.operation, item.id)
        return item


def _value(value) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", value)


__all__ = ["DeadLetterManager"]
