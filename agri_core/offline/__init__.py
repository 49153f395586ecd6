# =============================================================================
# agri_core/offline/__init__.py
# Offline Operation Queue and Sync Engine for AgriConnect
# =============================================================================
"""
Offline-First Sync Module

Lets the marketplace client keep working while the hosted Supabase backend is
unreachable: mutations are queued durably and replayed when connectivity
returns; selected collections are cached locally for offline reads.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                  OFFLINE SYNC ARCHITECTURE                       │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                 OfflineSyncService                        │  │
│   │         (Single API - the host app uses this only)        │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                           │                      │
│              ▼                           ▼                      │
│   ┌──────────────────┐        ┌──────────────────┐             │
│   │  OperationQueue  │        │ ConnectionMonitor│             │
│   │ (enqueue, FIFO)  │        │ (online/offline) │             │
│   └──────────────────┘        └──────────────────┘             │
│              │ trigger                   │ on reconnect         │
│              ▼                           ▼                      │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │  SyncEngine (drain, backoff, quarantine, pull)           │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                           │                      │
│              ▼                           ▼                      │
│        ┌──────────┐               ┌────────────┐               │
│        │  SQLite  │               │  Supabase  │               │
│        │ (Local)  │               │  (Cloud)   │               │
│        └──────────┘               └────────────┘               │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from agri_core.offline import build_offline_sync

service = build_offline_sync()
service.initialize_event_listeners()
service.queue_operation("update", "orders", {"id": "o1", "total": 650})

print(service.is_online())
print(service.pending_count)
"""

from agri_core.offline.models import (
    OperationKind,
    PendingOperation,
    SyncFailure,
    clean_payload,
)

from agri_core.offline.local_store import LocalStore

from agri_core.offline.operation_queue import OperationQueue

from agri_core.offline.remote import (
    RemoteCollectionService,
    SupabaseRemote,
    InMemoryRemote,
    classify_remote_error,
)

from agri_core.offline.connection_manager import (
    ConnectionMonitor,
    ConnectionState,
    ConnectionStatus,
)

from agri_core.offline.sync_engine import (
    SyncEngine,
    SyncReport,
    SyncState,
    EngineStatus,
)

from agri_core.offline.service import (
    OfflineSyncService,
    build_offline_sync,
)

__all__ = [
    # Records
    "OperationKind",
    "PendingOperation",
    "SyncFailure",
    "clean_payload",
    # Storage & queue
    "LocalStore",
    "OperationQueue",
    # Remote
    "RemoteCollectionService",
    "SupabaseRemote",
    "InMemoryRemote",
    "classify_remote_error",
    # Connectivity
    "ConnectionMonitor",
    "ConnectionState",
    "ConnectionStatus",
    # Engine
    "SyncEngine",
    "SyncReport",
    "SyncState",
    "EngineStatus",
    # Public API
    "OfflineSyncService",
    "build_offline_sync",
]
