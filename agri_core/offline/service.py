# =============================================================================
# agri_core/offline/service.py
# OfflineSyncService - Public API and Composition Root
# =============================================================================
"""
OfflineSyncService - the one object the host application talks to.

It owns an explicit graph of collaborators (no module-level singletons):

    LocalStore <- OperationQueue -> SyncEngine -> RemoteCollectionService
                                        ^
                               ConnectionMonitor

Usage:
------
from agri_core.offline import build_offline_sync

service = build_offline_sync()
service.initialize_event_listeners()

service.queue_operation("create", "orders", {"id": "o1", "total": 500})
rows = service.get_offline_data("farm_budget", limit=20)

print(service.is_online())
print(service.pending_count, service.failure_count)
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union
import logging

import pandas as pd

from agri_core.config import SyncSettings, load_settings
from agri_core.offline.connection_manager import ConnectionMonitor
from agri_core.offline.local_store import LocalStore
from agri_core.offline.models import OperationKind, PendingOperation, SyncFailure
from agri_core.offline.operation_queue import OperationQueue
from agri_core.offline.remote import RemoteCollectionService, SupabaseRemote
from agri_core.offline.sync_engine import SyncEngine, SyncReport

logger = logging.getLogger(__name__)


class OfflineSyncService:
    """
    Public API over the offline queue, sync engine and caches.

    Construct with build_offline_sync(), or pass collaborators explicitly.
    """

    def __init__(
        self,
        store: LocalStore,
        queue: OperationQueue,
        engine: SyncEngine,
        monitor: ConnectionMonitor,
        settings: Optional[SyncSettings] = None,
    ):
        self.store = store
        self.queue = queue
        self.engine = engine
        self.monitor = monitor
        self.settings = settings
        self._listening = False
        self._started = False

        self.queue.set_trigger(self.engine.request_sync)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def queue_operation(
        self,
        operation: Union[OperationKind, str],
        collection: str,
        data: Dict[str, Any],
    ) -> PendingOperation:
        """
        Record a mutation locally and try to sync it.

        Raises:
            InvalidOperationError: bad kind, collection or payload
            LocalStoreError: the mutation was not durably recorded
        """
        return self.queue.enqueue(operation, collection, data)

    def sync_now(self) -> SyncReport:
        """Manual trigger; blocks until the pass ends."""
        return self.engine.sync_now()

    # =========================================================================
    # OFFLINE READS
    # =========================================================================

    def get_offline_data(
        self,
        collection: str,
        updated_since: Optional[str] = None,
        updated_until: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Cached rows for a tracked collection, as last pulled."""
        return self.store.get_cached(
            collection,
            updated_since=updated_since,
            updated_until=updated_until,
            limit=limit,
        )

    def get_offline_dataframe(self, collection: str) -> pd.DataFrame:
        """Cached rows for a tracked collection as a DataFrame."""
        return self.store.cached_dataframe(collection)

    # =========================================================================
    # STATUS
    # =========================================================================

    def is_online(self) -> bool:
        return self.monitor.is_online

    def get_last_sync_time(self) -> Optional[datetime]:
        """Time of the last fully successful pull (persisted across restarts)."""
        return self.store.get_watermark()

    @property
    def pending_count(self) -> int:
        return self.store.pending_count()

    @property
    def failure_count(self) -> int:
        return self.store.failure_count()

    def list_failures(self) -> List[SyncFailure]:
        return self.store.list_failures()

    def get_status_display(self) -> Dict[str, Any]:
        """Combined connection and sync status for a UI."""
        status = self.engine.get_status_display()
        status["connection"] = self.monitor.get_status_display()
        return status

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def initialize_event_listeners(self) -> None:
        """Sync whenever the monitor reports a transition to online."""
        if self._listening:
            return
        self.monitor.register_callback(self.engine.on_connection_change)
        self._listening = True

    def start(self, monitor_connection: bool = True) -> None:
        """Start periodic sync passes and (optionally) connection checks."""
        self.initialize_event_listeners()
        if monitor_connection:
            self.monitor.start_monitoring()
        self.engine.start()
        self._started = True

    def stop(self) -> None:
        if self._started:
            self.engine.stop()
            self.monitor.stop_monitoring()
            self._started = False
        else:
            self.engine.wait_for_idle(timeout=10)
        if self._listening:
            self.monitor.unregister_callback(self.engine.on_connection_change)
            self._listening = False

    def close(self) -> None:
        self.stop()
        self.store.close()

    def __enter__(self) -> OfflineSyncService:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def clear_offline_data(self, include_failures: bool = False) -> None:
        """Drop queued operations, cached collections and the pull watermark."""
        self.store.reset(include_failures=include_failures)


def build_offline_sync(
    settings: Optional[SyncSettings] = None,
    remote: Optional[RemoteCollectionService] = None,
    monitor: Optional[ConnectionMonitor] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> OfflineSyncService:
    """
    Wire a fresh OfflineSyncService.

    Args:
        settings: Defaults to load_settings()
        remote: Defaults to SupabaseRemote when credentials are configured;
            without credentials the engine runs local-only and never drains
        monitor: Defaults to a ConnectionMonitor built from settings
        clock: Time source (UTC-aware datetimes), for tests

    Returns:
        OfflineSyncService with an initialized local store
    """
    settings = settings or load_settings()

    store = LocalStore(
        settings.db_path,
        collections=settings.tracked_collections,
        id_column=settings.id_column,
        updated_at_column=settings.updated_at_column,
    ).initialize()

    if remote is None:
        if settings.has_remote:
            remote = SupabaseRemote.from_settings(settings)
        else:
            logger.warning(
                "Supabase not configured; running local-only, operations stay queued"
            )

    monitor = monitor or ConnectionMonitor.from_settings(settings)
    queue = OperationQueue(store, clock=clock, id_column=settings.id_column)
    engine = SyncEngine.from_settings(settings, store, remote, monitor, clock=clock)

    return OfflineSyncService(store, queue, engine, monitor, settings=settings)
