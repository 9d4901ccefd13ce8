"""SQLModel table for outbound and tracking sync operations."""

import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


def _new_id() -> str:
    return uuid.uuid4().hex


class SyncQueueItem(SQLModel, table=True):
    __tablename__ = "sync_queue"

    id: str = Field(default_factory=_new_id, primary_key=True)
    store_id: str = Field(index=True)
    entity_type: str = Field(index=True)
    entity_id: str = Field(index=True)
    operation: str
    direction: str = Field(default="PUSH", index=True)
    payload: str = "{}"
    priority: int = 0
    attempts: int = 0
    max_attempts: int = 5
    last_error: Optional[str] = None
    last_error_category: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    retry_after: Optional[datetime] = Field(default=None, index=True)
    dead_lettered: bool = Field(default=False, index=True)
    dead_letter_reason: Optional[str] = None
    synced: bool = Field(default=False, index=True)
    synced_at: Optional[datetime] = None
    api_endpoint: Optional[str] = None
    http_status: Optional[int] = None
    response_body: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, index=True)

    @property
    def terminal(self) -> bool:
        return bool(self.synced or self.dead_lettered)


__all__ = ["SyncQueueItem"]
