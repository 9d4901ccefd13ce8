"""Closed vocabularies shared by the queue, workers and reconciler."""
from __future__ import annotations

from enum import Enum
from typing import Tuple

from services.errors import PayloadValidationError, UnknownEntityTypeError


class EntityType(str, Enum):
    GAME = "game"
    BIN = "bin"
    PACK = "pack"
    USER = "user"
    BUSINESS_DAY = "business_day"
    SHIFT = "shift"


class SyncOperation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ACTIVATE = "ACTIVATE"
    DEPLETE = "DEPLETE"
    RETURN = "RETURN"
    CLOSE = "CLOSE"


class SyncDirection(str, Enum):
    PUSH = "PUSH"
    PULL = "PULL"


# Reference data first so packs can resolve their games and bins.
CYCLE_ORDER: Tuple[EntityType, ...] = (
    EntityType.GAME,
    EntityType.BIN,
    EntityType.PACK,
    EntityType.USER,
    EntityType.BUSINESS_DAY,
    EntityType.SHIFT,
)

# Operation recorded on PULL tracking rows.
PULL_OPERATION = SyncOperation.UPDATE


def pull_tracking_id(entity_type: EntityType) -> str:
    return f"pull:{entity_type.value}"


def parse_entity_type(value: EntityType | str) -> EntityType:
    """Coerce ``value`` into :class:`EntityType` or raise ``UnknownEntityTypeError``."""
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(str(value).strip().lower())
    except ValueError:
        raise UnknownEntityTypeError(value) from None


def parse_operation(value: SyncOperation | str) -> SyncOperation:
    if isinstance(value, SyncOperation):
        return value
    try:
        return SyncOperation(str(value).strip().upper())
    except ValueError:
        raise PayloadValidationError(f"unsupported operation: {value!r}") from None


__all__ = [
    "CYCLE_ORDER",
    "EntityType",
    "PULL_OPERATION",
    "SyncDirection",
    "SyncOperation",
    "parse_entity_type",
    "parse_operation",
    "pull_tracking_id",
]
