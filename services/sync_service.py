from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from core.errors import RemoteStoreError
from core.log import get_logger, read_log_tail
from core.settings import SYNC
from datetime_utils import utc_now
from services.remote_store import ChangeCallback, RemoteStore, Unsubscribe
from services.sync_queue import PendingSyncItem
from storage.local_store import LocalStore


SYNC_LOG_FILE = "sync.log"

STATUS_IDLE = "idle"
STATUS_SYNCING = "syncing"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"

# callback(event, result); event is "started" or "finished", result is None on start
SyncListener = Callable[[str, Optional["SyncResult"]], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a ceiling on attempts.

    Items whose ``attempts`` reached ``max_attempts`` are parked: they stay in
    the queue but a pass skips them until :meth:`SyncService.retry_failed`.
    """

    max_attempts: Optional[int] = 10
    base_delay_sec: float = 2
    max_delay_sec: float = 300

    @classmethod
    def from_settings(cls, settings=SYNC) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_sec=settings.base_delay_sec,
            max_delay_sec=settings.max_delay_sec,
        )

    @classmethod
    def immediate(cls) -> "RetryPolicy":
        """Retry on every pass, forever."""
        return cls(max_attempts=None, base_delay_sec=0, max_delay_sec=0)

    def delay_for(self, attempts: int) -> float:
        if attempts <= 0 or self.base_delay_sec <= 0:
            return 0
        return min(self.max_delay_sec, self.base_delay_sec * 2 ** (attempts - 1))

    def next_try_at(self, attempts: int, now: Optional[datetime] = None) -> datetime:
        return (now or utc_now()) + timedelta(seconds=self.delay_for(attempts))

    def is_parked(self, attempts: int) -> bool:
        return self.max_attempts is not None and attempts >= self.max_attempts


@dataclass
class SyncError:
    table_name: str
    record_id: str
    queue_item_id: int
    message: str


@dataclass
class SyncResult:
    success: bool
    total_synced: int = 0
    errors: List[SyncError] = field(default_factory=list)
    synced_tables: List[str] = field(default_factory=list)
    skipped: bool = False


@dataclass
class SyncStatus:
    table_name: str
    total: int
    progress: int
    status: str
    error: Optional[str] = None


def read_sync_log(lines: int = 100) -> str:
    return read_log_tail(SYNC_LOG_FILE, lines)


class SyncService:
    """Drains the local sync queue into the remote store.

    One pass runs at a time; a trigger that arrives while a pass is running
    returns a skipped result instead of waiting.
    """

    def __init__(
        self,
        remote: RemoteStore,
        local: Optional[LocalStore] = None,
        *,
        policy: Optional[RetryPolicy] = None,
        tables: Optional[Iterable[str]] = None,
        enabled: Optional[bool] = None,
    ) -> None:
        self.remote = remote
        self.local = local or LocalStore()
        self.policy = policy or RetryPolicy.from_settings()
        self.tables = tuple(tables if tables is not None else SYNC.tables)
        self.enabled = SYNC.enabled if enabled is None else enabled
        self.logger = get_logger("schooldesk.sync", SYNC_LOG_FILE)
        self._lock = threading.Lock()
        self._running = False
        self._last_touched: set[str] = set()
        self._last_result: Optional[SyncResult] = None
        self._last_pass_at: Optional[datetime] = None
        self._listeners: List[SyncListener] = []
        self._subscriptions: List[Unsubscribe] = []

    # ------------------------------------------------------------------
    # Listeners
    def add_sync_listener(self, callback: SyncListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _remove

    def _notify(self, event: str, result: Optional[SyncResult]) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, result)
            except Exception:
                self.logger.exception("Sync listener failed on %s", event)

    # ------------------------------------------------------------------
    # Push
    @property
    def is_syncing(self) -> bool:
        return self._running

    def sync_all_tables(self) -> SyncResult:
        if not self.enabled:
            self.logger.info("Sync disabled; pass skipped")
            return SyncResult(success=False, skipped=True)
        if not self._lock.acquire(blocking=False):
            self.logger.info("Sync pass already running; trigger skipped")
            return SyncResult(success=False, skipped=True)
        try:
            self._running = True
            self._notify("started", None)
            result = self._run_pass()
            self._last_result = result
            self._last_pass_at = utc_now()
        finally:
            self._running = False
            self._lock.release()
        self._notify("finished", result)
        return result

    def _run_pass(self) -> SyncResult:
        now = utc_now()
        due = self.local.queue.due(now=now, max_attempts=self.policy.max_attempts)
        grouped: Dict[str, List[PendingSyncItem]] = {}
        for item in due:
            grouped.setdefault(item.table_name, []).append(item)

        result = SyncResult(success=True)
        self._last_touched = set(grouped)
        if not grouped:
            self.logger.debug("Sync pass: nothing due")
            return result

        self.logger.info("Sync pass started: %s item(s) in %s table(s)", len(due), len(grouped))
        for table_name, items in grouped.items():
            synced_here = 0
            for item in items:
                try:
                    self._apply(item)
                except Exception as exc:
                    message = str(exc) or exc.__class__.__name__
                    if not isinstance(exc, RemoteStoreError):
                        self.logger.error("Unexpected error syncing %s/%s: %r", table_name, item.record_id, exc)
                    attempts = self.local.record_failure(
                        item.id, message, self.policy.next_try_at(item.attempts + 1, now)
                    )
                    self.logger.warning(
                        "Sync %s %s/%s failed (attempt %s): %s",
                        item.operation,
                        table_name,
                        item.record_id,
                        attempts,
                        message,
                    )
                    result.errors.append(SyncError(table_name, item.record_id, item.id, message))
                    continue
                self.local.remove_sync_queue_item(item.id)
                self.local.mark_synced(table_name, item.record_id)
                synced_here += 1
            if synced_here:
                result.total_synced += synced_here
                result.synced_tables.append(table_name)
                self.local.touch_table_meta(table_name, pushed_at=now)

        result.success = not result.errors
        self.logger.info(
            "Sync pass finished: synced=%s failed=%s", result.total_synced, len(result.errors)
        )
        return result

    def _apply(self, item: PendingSyncItem) -> None:
        if item.operation == "create":
            self.remote.set(item.table_name, item.record_id, item.payload)
        elif item.operation == "update":
            self.remote.update(item.table_name, item.record_id, item.payload)
        elif item.operation == "delete":
            self.remote.delete(item.table_name, item.record_id)
        else:
            raise RemoteStoreError(f"Unsupported operation: {item.operation}")

    def retry_failed(self, table_name: Optional[str] = None) -> int:
        count = self.local.reset_attempts(table_name)
        self.logger.info("Retry requested for %s queued item(s) (%s)", count, table_name or "all tables")
        return count

    def clear_queue(self) -> int:
        count = self.local.clear_sync_queue()
        self.logger.warning("Sync queue cleared by operator: %s item(s) dropped", count)
        return count

    # ------------------------------------------------------------------
    # Status
    def get_sync_status(self) -> List[SyncStatus]:
        by_table: Dict[str, List[PendingSyncItem]] = {}
        for item in self.local.get_pending_sync_items():
            by_table.setdefault(item.table_name, []).append(item)

        names = list(self.tables) + sorted(name for name in by_table if name not in self.tables)
        statuses: List[SyncStatus] = []
        for name in names:
            items = by_table.get(name, [])
            errors = [item.last_error for item in items if item.last_error]
            if self._running and items:
                state = STATUS_SYNCING
            elif errors:
                state = STATUS_ERROR
            elif not items and name in self._last_touched:
                state = STATUS_COMPLETED
            else:
                state = STATUS_IDLE
            statuses.append(
                SyncStatus(
                    table_name=name,
                    total=len(items),
                    progress=len(items),
                    status=state,
                    error=errors[-1] if errors else None,
                )
            )
        return statuses

    def parked_items(self) -> List[PendingSyncItem]:
        return [item for item in self.local.get_pending_sync_items() if self.policy.is_parked(item.attempts)]

    def status(self) -> dict:
        last = self._last_result
        return {
            "backend": getattr(self.remote, "name", None),
            "running": self._running,
            "queueSize": self.local.queue.count(),
            "parked": len(self.parked_items()),
            "lastPassAt": self._last_pass_at,
            "lastSynced": last.total_synced if last else None,
            "lastErrors": len(last.errors) if last else None,
        }

    # ------------------------------------------------------------------
    # Pull
    def pull_table(self, table_name: str) -> int:
        records = self.remote.list(table_name)
        applied = 0
        for record_id, data in records.items():
            if self.local.apply_remote_record(table_name, record_id, data):
                applied += 1
        self.local.touch_table_meta(table_name, pulled_at=utc_now())
        self.logger.info("Pulled %s: %s of %s record(s) applied", table_name, applied, len(records))
        return applied

    def pull_all(self) -> Dict[str, int]:
        if not self.enabled:
            return {}
        applied: Dict[str, int] = {}
        for table_name in self.tables:
            try:
                applied[table_name] = self.pull_table(table_name)
            except RemoteStoreError as exc:
                self.logger.error("Pull of %s failed: %s", table_name, exc)
        return applied

    def subscribe_remote(self, table_name: str, callback: Optional[ChangeCallback] = None) -> Unsubscribe:
        """Apply remote changes to the local cache as they arrive."""

        def _on_change(event: str, record_id: str, data) -> None:
            if event == "delete":
                applied = self.local.apply_remote_delete(table_name, record_id)
            else:
                applied = self.local.apply_remote_record(table_name, record_id, data or {})
            if applied and callback is not None:
                callback(event, record_id, data)

        unsubscribe = self.remote.subscribe(table_name, _on_change)
        self._subscriptions.append(unsubscribe)
        return unsubscribe

    def close(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()


__all__ = [
    "RetryPolicy",
    "SYNC_LOG_FILE",
    "SyncError",
    "SyncResult",
    "SyncService",
    "SyncStatus",
    "read_sync_log",
]
