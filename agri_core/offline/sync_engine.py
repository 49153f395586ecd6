# =============================================================================
# agri_core/offline/sync_engine.py
# Automatic Synchronization Engine
# =============================================================================
"""
SyncEngine - drains the operation queue to the remote service and pulls
remote changes into the offline caches.

Features:
- Single-flight sync passes (concurrent triggers collapse into the running one)
- Per-collection FIFO with head-of-line blocking
- Exponential backoff per failed operation, plateauing at a maximum delay
- Quarantine into sync_failures after the retry ceiling
- Watermarked pull with at-least-once semantics
- Optional background thread for periodic passes
- State callbacks for UI status
"""

from __future__ import annotations
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional
import logging

from agri_core.errors import PermanentRemoteError, UnknownOperationError, safe_execute
from agri_core.logging import LogContext
from agri_core.offline.connection_manager import ConnectionMonitor, ConnectionState, ConnectionStatus
from agri_core.offline.local_store import LocalStore
from agri_core.offline.models import OperationKind, PendingOperation, utc_now
from agri_core.offline.remote import RemoteCollectionService, classify_remote_error

logger = logging.getLogger(__name__)


class EngineStatus(Enum):
    """Engine-level state (not per operation)."""
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class SyncState:
    """Current sync state."""
    status: EngineStatus = EngineStatus.IDLE
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    total_synced: int = 0
    failed_count: int = 0
    quarantined_count: int = 0

    @property
    def is_syncing(self) -> bool:
        return self.status is EngineStatus.SYNCING


@dataclass
class SyncReport:
    """Outcome of one sync pass."""
    started_at: Optional[datetime] = None
    pushed: int = 0
    failed: int = 0
    quarantined: int = 0
    deferred: int = 0
    pulled: int = 0
    pull_errors: List[str] = field(default_factory=list)
    aborted_offline: bool = False
    local_only: bool = False
    skipped: bool = False

    @property
    def success(self) -> bool:
        return not (
            self.skipped
            or self.aborted_offline
            or self.local_only
            or self.failed
            or self.quarantined
            or self.pull_errors
        )


class SyncEngine:
    """
    Synchronization engine between the local store and the remote service.

    Usage:
        engine = SyncEngine(store, remote, monitor, background_sync=False)
        report = engine.sync_now()   # Blocking pass
        engine.request_sync()        # Fire-and-forget
        engine.start()               # Periodic background passes

    With remote=None (no credentials configured) the engine runs in
    local-only mode: passes never touch the queue, so every operation stays
    pending until a remote is configured.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteCollectionService],
        monitor: ConnectionMonitor,
        tracked_collections: Optional[Iterable[str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_retries: int = 5,
        backoff_base_seconds: float = 300.0,
        backoff_max_seconds: float = 3600.0,
        classify_permanent_errors: bool = False,
        background_sync: bool = True,
        sync_interval: float = 30.0,
    ):
        self.store = store
        self.remote = remote
        self.monitor = monitor
        self.tracked_collections = list(
            store.collections if tracked_collections is None else tracked_collections
        )
        self.clock = clock or utc_now
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.classify_permanent_errors = classify_permanent_errors
        self.background_sync = background_sync
        self.sync_interval = sync_interval

        self._state = SyncState()
        self._sync_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()
        self._callbacks: List[Callable[[SyncState], None]] = []

    @classmethod
    def from_settings(cls, settings, store, remote, monitor, clock=None) -> SyncEngine:
        return cls(
            store,
            remote,
            monitor,
            tracked_collections=settings.tracked_collections,
            clock=clock,
            max_retries=settings.max_retries,
            backoff_base_seconds=settings.backoff_base_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
            classify_permanent_errors=settings.classify_permanent_errors,
            background_sync=settings.background_sync,
            sync_interval=settings.sync_interval,
        )

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @property
    def local_only(self) -> bool:
        return self.remote is None

    def backoff_delay(self, retry_count: int) -> timedelta:
        """base * 2^(retry_count - 1), capped at backoff_max_seconds."""
        exponent = max(retry_count - 1, 0)
        seconds = min(self.backoff_base_seconds * (2 ** exponent), self.backoff_max_seconds)
        return timedelta(seconds=seconds)

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    def request_sync(self) -> bool:
        """
        Fire-and-forget sync trigger. Never raises.

        Returns:
            True if a pass was started (or run inline)
        """
        if self.local_only:
            return False
        if not self.monitor.is_online:
            logger.debug("Sync requested while offline; skipped")
            return False
        if self.is_syncing:
            return False

        if not self.background_sync:
            self._run_guarded()
            return True

        worker = threading.Thread(target=self._run_guarded, daemon=True, name="SyncPass")
        self._worker = worker
        worker.start()
        return True

    def _run_guarded(self) -> None:
        safe_execute(self.sync_now, error_message="Sync pass failed")

    def on_connection_change(self, state: ConnectionState) -> None:
        """ConnectionMonitor callback: sync when connectivity returns."""
        if state.status is ConnectionStatus.ONLINE:
            logger.info("Connection restored, triggering sync")
            self.request_sync()

    def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        """Join the most recent background pass. Returns True if it finished."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
            return not worker.is_alive()
        return True

    # =========================================================================
    # SYNC PASS
    # =========================================================================

    def sync_now(self) -> SyncReport:
        """
        Run one blocking pass: drain the queue, then pull remote changes.

        Returns:
            SyncReport (skipped=True if another pass is already running)

        Raises:
            LocalStoreError: the local store failed during the pass
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Sync already in progress")
            return SyncReport(skipped=True)

        report = SyncReport(started_at=self.clock())
        try:
            if self.local_only:
                report.local_only = True
                logger.debug("No remote configured; operations stay queued")
                return report

            if not self.monitor.is_online:
                report.aborted_offline = True
                logger.debug("Cannot sync: offline")
                return report

            self._state.status = EngineStatus.SYNCING
            self._state.last_sync = report.started_at
            self._notify_callbacks()

            with LogContext(logger, "Sync pass"):
                self._drain(report)
                if not report.aborted_offline:
                    self._pull(report)

            self._state.total_synced += report.pushed
            self._state.failed_count = report.failed
            self._state.quarantined_count += report.quarantined

            logger.info(
                f"Sync complete: {report.pushed} pushed, {report.failed} rescheduled, "
                f"{report.quarantined} quarantined, {report.deferred} deferred, "
                f"{report.pulled} pulled"
            )
            return report

        finally:
            was_syncing = self._state.is_syncing
            self._state.status = EngineStatus.IDLE
            self._sync_lock.release()
            if was_syncing:
                self._notify_callbacks()

    def _drain(self, report: SyncReport) -> None:
        """
        Apply every eligible pending operation once.

        Only the oldest pending operation of each collection (its head) is a
        candidate; heads are taken in next-attempt order. A collection whose
        head is not due or fails is blocked for the rest of the pass.
        """
        now = self.clock()
        operations = self.store.list_operations()
        if not operations:
            return

        queues: Dict[str, Deque[PendingOperation]] = defaultdict(deque)
        for op in sorted(operations, key=lambda o: o.order_key):
            queues[op.collection].append(op)
        blocked = set()

        logger.info(f"Draining {len(operations)} pending operations")

        while True:
            heads = [q[0] for c, q in queues.items() if q and c not in blocked]
            if not heads:
                break

            if not self.monitor.is_online:
                report.aborted_offline = True
                logger.info("Went offline during drain; remaining operations kept")
                return

            op = min(heads, key=lambda o: (o.next_attempt_at, o.order_key))
            if not op.is_due(now):
                blocked.add(op.collection)
                continue

            queues[op.collection].popleft()
            try:
                self._apply(op)
            except Exception as e:
                blocked.add(op.collection)
                self._handle_failure(op, e, report)
                continue

            self.store.remove_operation(op.id)
            report.pushed += 1

        report.deferred = sum(len(queues[c]) for c in blocked)

    def _apply(self, op: PendingOperation) -> None:
        """Send one operation to the remote service by kind."""
        if op.kind is OperationKind.CREATE:
            self.remote.insert(op.collection, op.payload)
        elif op.kind is OperationKind.UPDATE:
            self.remote.update_by_id(op.collection, op.payload)
        elif op.kind is OperationKind.DELETE:
            self.remote.delete_by_id(op.collection, op.payload)
        else:
            raise UnknownOperationError(
                f"Unknown operation: {op.kind}",
                collection=op.collection,
            )

    def _handle_failure(self, op: PendingOperation, error: Exception, report: SyncReport) -> None:
        """Reschedule with backoff, or quarantine once the retry budget is spent."""
        remote_error = classify_remote_error(error, op.collection)
        now = self.clock()
        op.retry_count += 1
        op.last_error = remote_error.message

        permanent = self.classify_permanent_errors and isinstance(remote_error, PermanentRemoteError)
        if permanent or op.retry_count >= self.max_retries:
            self.store.quarantine(op, remote_error.message, now)
            report.quarantined += 1
            logger.warning(
                f"Operation {op.id} ({op.describe()}) quarantined after "
                f"{op.retry_count} attempt(s): [{remote_error.code}] {remote_error.message}"
            )
            return

        op.next_attempt_at = max(now + self.backoff_delay(op.retry_count), op.next_attempt_at)
        self.store.update_operation(op)
        report.failed += 1
        logger.warning(
            f"Sync error for operation {op.id} (attempt {op.retry_count}/{self.max_retries}), "
            f"retry at {op.next_attempt_at.isoformat()}: {remote_error.message}"
        )

    def _pull(self, report: SyncReport) -> None:
        """
        Upsert remote rows newer than the watermark for every tracked collection.

        The watermark moves to this pull's start time only if every
        collection succeeded; otherwise the same window is pulled again.
        """
        started_at = self.clock()
        watermark = self.store.get_watermark()

        with LogContext(logger, "Pull phase"):
            for collection in self.tracked_collections:
                try:
                    rows = self.remote.select_updated_since(collection, watermark)
                except Exception as e:
                    remote_error = classify_remote_error(e, collection)
                    report.pull_errors.append(collection)
                    logger.error(f"Error pulling changes for {collection}: {remote_error}")
                    continue
                report.pulled += self.store.upsert_rows(collection, rows, started_at)

        if report.pull_errors:
            logger.warning(
                f"Pull incomplete ({', '.join(report.pull_errors)}); watermark unchanged"
            )
            return

        self.store.set_watermark(started_at)
        self._state.last_sync_success = started_at

    # =========================================================================
    # BACKGROUND LOOP
    # =========================================================================

    def start(self) -> None:
        """Start periodic background sync passes."""
        if self._loop_thread is not None and self._loop_thread.is_alive():
            return

        self._stop_sync.clear()
        self._loop_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="SyncEngine"
        )
        self._loop_thread.start()
        logger.info("Sync engine started")

    def stop(self) -> None:
        """Stop the background loop and wait for a running pass."""
        self._stop_sync.set()
        if self._loop_thread:
            self._loop_thread.join(timeout=10)
            self._loop_thread = None
        self.wait_for_idle(timeout=10)
        logger.info("Sync engine stopped")

    def _sync_loop(self) -> None:
        while not self._stop_sync.is_set():
            if self._stop_sync.wait(timeout=self.sync_interval):
                break

            if self.monitor.is_online:
                self._run_guarded()

    # =========================================================================
    # CALLBACKS & STATUS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            safe_execute(callback, self._state, error_message="Error in sync callback")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        watermark = self.store.get_watermark()
        return {
            "status": self._state.status.value,
            "is_syncing": self._state.is_syncing,
            "local_only": self.local_only,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": watermark.isoformat() if watermark else None,
            "pending_count": self.store.pending_count(),
            "failure_count": self.store.failure_count(),
            "failed_last_pass": self._state.failed_count,
            "total_synced": self._state.total_synced,
        }
