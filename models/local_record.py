"""SQLModel tables for the on-device record cache."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class LocalRecord(SQLModel, table=True):
    """One document of a logical collection (``students``, ``payments`` ...)."""

    table_name: str = Field(primary_key=True)
    record_id: str = Field(primary_key=True)
    data: str = "{}"
    sync_status: str = Field(default="pending", index=True)  # pending / synced
    deleted: bool = False
    updated_at: datetime = Field(default_factory=utc_now)
    last_synced_at: Optional[datetime] = None


class TableSyncMeta(SQLModel, table=True):
    """Per-collection pull/push anchors shown on the sync page."""

    table_name: str = Field(primary_key=True)
    last_pull_at: Optional[datetime] = None
    last_push_at: Optional[datetime] = None


__all__ = ["LocalRecord", "TableSyncMeta"]
