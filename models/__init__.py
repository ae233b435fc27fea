"""ORM models exposed by the SchoolDesk application."""
from .local_record import LocalRecord, TableSyncMeta
from .sync_queue_item import OPERATIONS, SyncQueueItem

__all__ = ["LocalRecord", "OPERATIONS", "SyncQueueItem", "TableSyncMeta"]
