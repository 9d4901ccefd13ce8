"""SQLModel tables for pull watermarks and applied-record tracking."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class SyncCursor(SQLModel, table=True):
    """Per store and entity type watermark of the last reconciled pull."""

    __tablename__ = "sync_cursor"

    store_id: str = Field(primary_key=True)
    entity_type: str = Field(primary_key=True)
    last_pull_at: Optional[datetime] = None
    last_push_at: Optional[datetime] = None
    pages_pulled: int = 0
    records_pulled: int = 0
    updated_at: datetime = Field(default_factory=utc_now)


class SyncAppliedRecord(SQLModel, table=True):
    """Hash of the last remote payload applied for a record."""

    __tablename__ = "sync_applied_record"

    store_id: str = Field(primary_key=True)
    entity_type: str = Field(primary_key=True)
    remote_id: str = Field(primary_key=True)
    payload_hash: str
    applied_at: datetime = Field(default_factory=utc_now)


__all__ = ["SyncAppliedRecord", "SyncCursor"]
