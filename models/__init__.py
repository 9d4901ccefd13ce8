"""ORM models exposed by the sync engine."""
from .entities import (
    ENTITY_MODELS,
    BusinessDay,
    EntityModel,
    LotteryBin,
    LotteryGame,
    LotteryPack,
    Shift,
    StoreUser,
)
from .queue_item import SyncQueueItem
from .sync_cursor import SyncAppliedRecord, SyncCursor

__all__ = [
    "ENTITY_MODELS",
    "BusinessDay",
    "EntityModel",
    "LotteryBin",
    "LotteryGame",
    "LotteryPack",
    "Shift",
    "StoreUser",
    "SyncAppliedRecord",
    "SyncCursor",
    "SyncQueueItem",
]
