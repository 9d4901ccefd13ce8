"""Local business entities kept in sync with the cloud.

Every entity has a non-table ``*Base`` model which is the validated payload
shape for that entity type, and a table model inheriting from it. Primary keys
are the cloud identifiers, so pulled records map onto local rows directly.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Type

from sqlmodel import Field, SQLModel

from core.entity_types import EntityType
from datetime_utils import utc_now


class GameBase(SQLModel):
    game_id: str = Field(primary_key=True)
    store_id: str = Field(index=True)
    game_code: str
    name: str
    price: float = 0.0
    tickets_per_pack: int = 0
    status: str = "ACTIVE"
    deleted_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utc_now)


class LotteryGame(GameBase, table=True):
    __tablename__ = "lottery_game"


class BinBase(SQLModel):
    bin_id: str = Field(primary_key=True)
    store_id: str = Field(index=True)
    name: str
    location: Optional[str] = None
    display_order: int = 0
    is_active: bool = True
    deleted_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utc_now)


class LotteryBin(BinBase, table=True):
    __tablename__ = "lottery_bin"


class PackBase(SQLModel):
    pack_id: str = Field(primary_key=True)
    store_id: str = Field(index=True)
    game_id: str = Field(index=True)
    pack_number: str
    bin_id: Optional[str] = None
    status: str = "RECEIVED"
    opening_serial: Optional[str] = None
    closing_serial: Optional[str] = None
    activated_at: Optional[datetime] = None
    depleted_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    return_reason: Optional[str] = None
    updated_at: datetime = Field(default_factory=utc_now)


class LotteryPack(PackBase, table=True):
    __tablename__ = "lottery_pack"


class UserBase(SQLModel):
    user_id: str = Field(primary_key=True)
    store_id: str = Field(index=True)
    name: str
    role: str = "cashier"
    status: str = "ACTIVE"
    deleted_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utc_now)


class StoreUser(UserBase, table=True):
    __tablename__ = "store_user"


class BusinessDayBase(SQLModel):
    day_id: str = Field(primary_key=True)
    store_id: str = Field(index=True)
    business_date: str
    status: str = "OPEN"
    opened_at: Optional[datetime] = None
    opened_by: Optional[str] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    updated_at: datetime = Field(default_factory=utc_now)


class BusinessDay(BusinessDayBase, table=True):
    __tablename__ = "business_day"


class ShiftBase(SQLModel):
    shift_id: str = Field(primary_key=True)
    store_id: str = Field(index=True)
    business_date: str
    shift_number: int = 1
    register_id: Optional[str] = None
    cashier_id: Optional[str] = None
    status: str = "OPEN"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utc_now)


class Shift(ShiftBase, table=True):
    __tablename__ = "shift"


@dataclass(frozen=True)
class EntityModel:
    entity_type: EntityType
    payload: Type[SQLModel]
    table: Type[SQLModel]
    id_field: str
    status_field: Optional[str] = "status"
    soft_delete: bool = False


ENTITY_MODELS: Dict[EntityType, EntityModel] = {
    EntityType.GAME: EntityModel(EntityType.GAME, GameBase, LotteryGame, "game_id", soft_delete=True),
    EntityType.BIN: EntityModel(
        EntityType.BIN, BinBase, LotteryBin, "bin_id", status_field=None, soft_delete=True
    ),
    EntityType.PACK: EntityModel(EntityType.PACK, PackBase, LotteryPack, "pack_id"),
    EntityType.USER: EntityModel(EntityType.USER, UserBase, StoreUser, "user_id", soft_delete=True),
    EntityType.BUSINESS_DAY: EntityModel(
        EntityType.BUSINESS_DAY, BusinessDayBase, BusinessDay, "day_id"
    ),
    EntityType.SHIFT: EntityModel(EntityType.SHIFT, ShiftBase, Shift, "shift_id"),
}


__all__ = [
    "BinBase",
    "BusinessDay",
    "BusinessDayBase",
    "ENTITY_MODELS",
    "EntityModel",
    "GameBase",
    "LotteryBin",
    "LotteryGame",
    "LotteryPack",
    "PackBase",
    "Shift",
    "ShiftBase",
    "StoreUser",
    "UserBase",
]
