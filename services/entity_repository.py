from __future__ import annotations

from typing import Any, Dict, Optional

from sqlmodel import Session, SQLModel

from core.entity_types import EntityType
from datetime_utils import utc_fields
from models.entities import ENTITY_MODELS


class EntityRepository:
    """Generic access to the local entity tables by :class:`EntityType`."""

    def get(self, session: Session, entity_type: EntityType, entity_id: str) -> Optional[SQLModel]:
        spec = ENTITY_MODELS[entity_type]
        return session.get(spec.table, entity_id)

    def add(self, session: Session, entity_type: EntityType, **fields: Any) -> SQLModel:
        spec = ENTITY_MODELS[entity_type]
        row = spec.table(**fields)
        session.add(row)
        session.flush()
        return row

    def update(self, session: Session, row: SQLModel, **fields: Any) -> SQLModel:
        for key, value in fields.items():
            setattr(row, key, value)
        session.add(row)
        session.flush()
        return row

    def snapshot(self, entity_type: EntityType, row: SQLModel) -> Dict[str, Any]:
        """JSON-ready point-in-time copy of ``row`` in its payload shape."""
        spec = ENTITY_MODELS[entity_type]
        return spec.payload.model_validate(utc_fields(row.model_dump())).model_dump(mode="json")

    def current_payload(
        self, session: Session, entity_type: EntityType, entity_id: str
    ) -> Optional[Dict[str, Any]]:
        row = self.get(session, entity_type, entity_id)
        if row is None:
            return None
        return self.snapshot(entity_type, row)


__all__ = ["EntityRepository"]
