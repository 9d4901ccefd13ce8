"""Deduplicating enqueue of sync operations.

Business-mutation handlers call :meth:`Outbox.enqueue` with the same session
they used for the mutation, so the entity change and its outbox row commit
together or not at all.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import ValidationError
from sqlmodel import Session, SQLModel

from core.entity_types import (
    EntityType,
    SyncDirection,
    SyncOperation,
    parse_entity_type,
    parse_operation,
)
from core.lifecycle import LIFECYCLES
from core.logs import get_logger
from datetime_utils import utc_fields, utc_now
from models.entities import ENTITY_MODELS
from models.queue_item import SyncQueueItem
from services.errors import PayloadValidationError
from services.queue_store import QueueStore, dump_payload


Payload = Union[Mapping[str, Any], SQLModel]

logger = get_logger("outbox")


def validate_payload(
    entity_type: EntityType,
    entity_id: str,
    operation: SyncOperation,
    payload: Payload,
    store_id: str,
) -> Dict[str, Any]:
    """Validate a PUSH payload against its entity shape and return the snapshot."""

    spec = ENTITY_MODELS[entity_type]
    raw = utc_fields(payload.model_dump()) if isinstance(payload, SQLModel) else dict(payload)

    if operation is SyncOperation.DELETE:
        # the row may already be gone locally; only the identity is required
        if str(raw.get(spec.id_field) or "") != entity_id:
            raise PayloadValidationError(
                f"{entity_type.value} delete payload must carry {spec.id_field}={entity_id!r}"
            )
        try:
            return spec.payload.model_validate(raw).model_dump(mode="json")
        except ValidationError:
            return raw

    try:
        model = spec.payload.model_validate(raw)
    except ValidationError as exc:
        raise PayloadValidationError(f"invalid {entity_type.value} payload: {exc}") from exc

    if str(getattr(model, spec.id_field)) != entity_id:
        raise PayloadValidationError(
            f"{entity_type.value} payload {spec.id_field} does not match entity id {entity_id!r}"
        )
    if getattr(model, "store_id", store_id) != store_id:
        raise PayloadValidationError(f"{entity_type.value} payload belongs to another store")

    graph = LIFECYCLES.get(entity_type)
    if graph is not None and spec.status_field:
        status = getattr(model, spec.status_field)
        if status not in graph:
            raise PayloadValidationError(f"unknown {entity_type.value} status {status!r}")

    return model.model_dump(mode="json")


class Outbox:
    def __init__(
        self,
        queue: QueueStore,
        *,
        max_attempts: int = 5,
        clock: Callable = utc_now,
    ) -> None:
        self.queue = queue
        self.max_attempts = max_attempts
        self.clock = clock

    @property
    def store_id(self) -> str:
        return self.queue.store_id

    def enqueue(
        self,
        session: Session,
        entity_type: Union[EntityType, str],
        entity_id: str,
        operation: Union[SyncOperation, str],
        payload: Payload,
        direction: Union[SyncDirection, str] = SyncDirection.PUSH,
        priority: int = 0,
        *,
        api_endpoint: Optional[str] = None,
    ) -> SyncQueueItem:
        """Insert a queue row, or return the open row for the same mutation."""

        kind = parse_entity_type(entity_type)
        op = parse_operation(operation)
        direction = SyncDirection(direction)
        if not entity_id:
            raise PayloadValidationError("entity_id is required")

        existing = self.queue.find_active(session, kind, entity_id, op.value, direction)
        if existing is not None:
            logger.debug(
                "Enqueue deduplicated: %s %s %s -> %s",
                kind.value,
                entity_id,
                op.value,
                existing.id,
            )
            return existing

        if direction is SyncDirection.PUSH:
            snapshot = validate_payload(kind, entity_id, op, payload, self.store_id)
        else:
            snapshot = dict(payload) if not isinstance(payload, SQLModel) else payload.model_dump()

        item = SyncQueueItem(
            store_id=self.store_id,
            entity_type=kind.value,
            entity_id=entity_id,
            operation=op.value,
            direction=direction.value,
            payload=dump_payload(snapshot),
            priority=int(priority),
            max_attempts=self.max_attempts,
            api_endpoint=api_endpoint or f"/sync/{kind.value}",
            created_at=self.clock(),
        )
        self.queue.insert(session, item)
        logger.debug("Enqueued %s %s %s %s", direction.value, kind.value, entity_id, op.value)
        return item


__all__ = ["Outbox", "validate_payload"]
