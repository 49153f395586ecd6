# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from agri_core.config import SyncSettings
from agri_core.offline import (
    ConnectionMonitor,
    InMemoryRemote,
    LocalStore,
    OperationQueue,
    SyncEngine,
    build_offline_sync,
)


TRACKED = ["farm_budget", "yield_tracking", "orders"]


# =============================================================================
# TIME
# =============================================================================

class FakeClock:
    """Deterministic UTC clock; advance() moves time forward."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock starting at a fixed morning in UTC"""
    return FakeClock(datetime(2026, 3, 2, 8, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings with inline (non-threaded) sync and a temp database"""
    return SyncSettings(
        db_path=tmp_path / "offline.db",
        tracked_collections=list(TRACKED),
        background_sync=False,
    ).validate()


@pytest.fixture
def store(settings):
    """Initialized local store"""
    store = LocalStore(settings.db_path, collections=settings.tracked_collections)
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def remote(clock):
    """In-memory remote with call log and fault injection"""
    return InMemoryRemote(clock=clock)


@pytest.fixture
def monitor():
    """Connectivity monitor that starts online"""
    return ConnectionMonitor(initially_online=True)


@pytest.fixture
def engine(settings, store, remote, monitor, clock):
    """Sync engine running passes inline"""
    return SyncEngine.from_settings(settings, store, remote, monitor, clock=clock)


@pytest.fixture
def queue(store, engine, clock):
    """Operation queue wired to the engine trigger"""
    queue = OperationQueue(store, clock=clock)
    queue.set_trigger(engine.request_sync)
    return queue


@pytest.fixture
def service(settings, remote, monitor, clock):
    """Fully wired OfflineSyncService"""
    service = build_offline_sync(settings, remote=remote, monitor=monitor, clock=clock)
    service.initialize_event_listeners()
    yield service
    service.close()


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock()
    return mock_client


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def applied_calls(remote, methods=("insert", "update_by_id", "delete_by_id")):
    """(method, collection, id) for every mutation call the remote received"""
    return [
        (call.method, call.collection, (call.payload or {}).get("id"))
        for call in remote.calls
        if call.method in methods
    ]


def cache_snapshot(store, collections=TRACKED):
    """Cached rows per collection, sorted by id"""
    return {
        collection: sorted(store.get_cached(collection), key=lambda r: str(r["id"]))
        for collection in collections
    }


@pytest.fixture
def calls_of():
    return applied_calls


@pytest.fixture
def snapshot_of():
    return cache_snapshot
