"""Merge pulled cloud records into local entity tables.

Rules, in order:

1. Records for another store are rejected.
2. A record identical to the last applied copy is ``skipped-unchanged``.
3. No local row: create it.
4. Last write wins on ``updated_at``; ties and older remote copies keep the
   local row (``skipped-stale``).
5. Entities with a lifecycle only accept forward moves; a newer remote copy
   that would move the row backwards is rejected as a conflict.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError
from sqlmodel import Session

from core.entity_types import EntityType
from core.lifecycle import transition_allowed
from core.logs import get_logger
from datetime_utils import ensure_utc, utc_fields, utc_now
from models.entities import ENTITY_MODELS
from models.sync_cursor import SyncAppliedRecord
from services.entity_repository import EntityRepository


logger = get_logger("reconciler")


class ReconcileOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED_STALE = "skipped-stale"
    SKIPPED_UNCHANGED = "skipped-unchanged"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    entity_id: Optional[str] = None
    conflict: bool = False
    reason: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome in (ReconcileOutcome.CREATED, ReconcileOutcome.UPDATED)


def payload_hash(data: Mapping[str, Any]) -> str:
    normalized = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:32]


class Reconciler:
    def __init__(
        self,
        store_id: str,
        *,
        repository: Optional[EntityRepository] = None,
        clock=utc_now,
    ) -> None:
        self.store_id = store_id
        self.repo = repository or EntityRepository()
        self.clock = clock

    def reconcile(
        self, session: Session, entity_type: EntityType, record: Mapping[str, Any]
    ) -> ReconcileResult:
        spec = ENTITY_MODELS[entity_type]
        raw: Dict[str, Any] = dict(record)
        raw.setdefault("store_id", self.store_id)

        if raw["store_id"] != self.store_id:
            logger.warning(
                "Rejected %s %s from store %s", entity_type.value, raw.get(spec.id_field), raw["store_id"]
            )
            return ReconcileResult(
                ReconcileOutcome.SKIPPED_STALE,
                raw.get(spec.id_field),
                conflict=True,
                reason="foreign store",
            )
        if not raw.get("updated_at"):
            logger.warning("Remote %s %s has no updated_at", entity_type.value, raw.get(spec.id_field))
            return ReconcileResult(
                ReconcileOutcome.SKIPPED_STALE, raw.get(spec.id_field), reason="missing updated_at"
            )
        try:
            remote = spec.payload.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Invalid remote %s record: %s", entity_type.value, exc)
            return ReconcileResult(
                ReconcileOutcome.SKIPPED_STALE, raw.get(spec.id_field), reason="invalid record"
            )

        entity_id = str(getattr(remote, spec.id_field))
        fields = utc_fields(remote.model_dump())
        snapshot = spec.payload.model_validate(fields).model_dump(mode="json")
        digest = payload_hash(snapshot)

        applied = session.get(SyncAppliedRecord, (self.store_id, entity_type.value, entity_id))
        if applied is not None and applied.payload_hash == digest:
            return ReconcileResult(ReconcileOutcome.SKIPPED_UNCHANGED, entity_id)

        local = self.repo.get(session, entity_type, entity_id)
        if local is None:
            self.repo.add(session, entity_type, **fields)
            self._remember(session, entity_type, entity_id, digest, applied)
            logger.debug("Created %s %s from cloud", entity_type.value, entity_id)
            return ReconcileResult(ReconcileOutcome.CREATED, entity_id)

        if self.repo.snapshot(entity_type, local) == snapshot:
            self._remember(session, entity_type, entity_id, digest, applied)
            return ReconcileResult(ReconcileOutcome.SKIPPED_UNCHANGED, entity_id)

        remote_updated = ensure_utc(remote.updated_at)
        local_updated = ensure_utc(local.updated_at)
        if local_updated is not None and remote_updated <= local_updated:
            logger.debug("Local %s %s wins over cloud copy", entity_type.value, entity_id)
            return ReconcileResult(ReconcileOutcome.SKIPPED_STALE, entity_id, reason="local newer")

        if spec.status_field:
            current = getattr(local, spec.status_field)
            incoming = getattr(remote, spec.status_field)
            if not transition_allowed(entity_type, current, incoming):
                logger.warning(
                    "Rejected %s %s status change %s -> %s from cloud",
                    entity_type.value,
                    entity_id,
                    current,
                    incoming,
                )
                return ReconcileResult(
                    ReconcileOutcome.SKIPPED_STALE,
                    entity_id,
                    conflict=True,
                    reason=f"backward transition {current} -> {incoming}",
                )

        self.repo.update(session, local, **fields)
        self._remember(session, entity_type, entity_id, digest, applied)
        logger.debug("Updated %s %s from cloud", entity_type.value, entity_id)
        return ReconcileResult(ReconcileOutcome.UPDATED, entity_id)

    def _remember(
        self,
        session: Session,
        entity_type: EntityType,
        entity_id: str,
        digest: str,
        existing: Optional[SyncAppliedRecord],
    ) -> None:
        row = existing or SyncAppliedRecord(
            store_id=self.store_id,
            entity_type=entity_type.value,
            remote_id=entity_id,
            payload_hash=digest,
        )
        row.payload_hash = digest
        row.applied_at = self.clock()
        session.add(row)
        session.flush()


__all__ = ["ReconcileOutcome", "ReconcileResult", "Reconciler", "payload_hash"]
