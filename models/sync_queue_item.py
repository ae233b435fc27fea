"""SQLModel table for mutations waiting to reach the remote store."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


OPERATIONS = ("create", "update", "delete")


class SyncQueueItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    table_name: str = Field(index=True)
    operation: str
    record_id: str = Field(index=True)
    payload: str = "{}"
    timestamp: datetime = Field(default_factory=utc_now, index=True)
    attempts: int = Field(default=0)
    last_error: Optional[str] = None
    next_try_at: datetime = Field(default_factory=utc_now, index=True)


__all__ = ["OPERATIONS", "SyncQueueItem"]
