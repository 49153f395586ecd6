# =============================================================================
# agri_core/offline/local_store.py
# Local SQLite Store for Offline Operations
# =============================================================================
"""
LocalStore - SQLite-backed durable store for the offline sync engine.

Holds:
- pending_operations: mutations not yet applied remotely (drain-order index)
- sync_failures: operations quarantined after exhausting their retries
- sync_meta: scalar state such as the pull watermark
- cache_<collection>: read-only copies of remote rows, one table per tracked
  collection, indexed by updated_at

Features:
- Versioned schema (PRAGMA user_version)
- Thread-local connections
- Transaction context manager
- DataFrame access to cached collections (pandas)
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
import logging

import pandas as pd

from agri_core.config.settings import COLLECTION_NAME_PATTERN
from agri_core.errors import LocalStoreError
from agri_core.offline.models import (
    OperationKind,
    PendingOperation,
    SyncFailure,
    from_storage_time,
    to_storage_time,
)

logger = logging.getLogger(__name__)

WATERMARK_KEY = "pull_watermark"


class LocalStore:
    """
    Local SQLite database for the operation queue and offline caches.

    Only the OperationQueue and SyncEngine write here; the host application
    reads cached snapshots through OfflineSyncService.
    """

    SCHEMA_VERSION = 1

    SCHEMA = {
        "pending_operations": """
            CREATE TABLE IF NOT EXISTS pending_operations (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                kind TEXT NOT NULL,
                collection TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                enqueued_at TEXT NOT NULL,
                next_attempt_at TEXT NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                last_error TEXT
            )
        """,
        "sync_failures": """
            CREATE TABLE IF NOT EXISTS sync_failures (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation_id TEXT NOT NULL,
                kind TEXT,
                collection TEXT,
                payload_json TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                error TEXT NOT NULL,
                failed_at TEXT NOT NULL
            )
        """,
        "sync_meta": """
            CREATE TABLE IF NOT EXISTS sync_meta (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """,
    }

    INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_pending_by_next_attempt "
        "ON pending_operations (next_attempt_at, enqueued_at, seq)",
        "CREATE INDEX IF NOT EXISTS idx_pending_by_collection "
        "ON pending_operations (collection, enqueued_at, seq)",
        "CREATE INDEX IF NOT EXISTS idx_failures_by_operation "
        "ON sync_failures (operation_id)",
    ]

    CACHE_SCHEMA = """
        CREATE TABLE IF NOT EXISTS {table} (
            id TEXT PRIMARY KEY,
            data_json TEXT NOT NULL,
            updated_at TEXT,
            pulled_at TEXT NOT NULL
        )
    """

    CACHE_INDEX = "CREATE INDEX IF NOT EXISTS idx_{table}_updated_at ON {table} (updated_at)"

    def __init__(
        self,
        db_path: Union[str, Path],
        collections: Iterable[str] = (),
        id_column: str = "id",
        updated_at_column: str = "updated_at",
    ):
        """
        Initialize local store.

        Args:
            db_path: Path to SQLite database file
            collections: Remote collections cached for offline reads
            id_column: Row key in remote rows
            updated_at_column: Last-modified column in remote rows
        """
        self.db_path = Path(db_path)
        self.collections = [self._validate_collection(c) for c in collections]
        self.id_column = id_column
        self.updated_at_column = updated_at_column
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._initialized = False

    # =========================================================================
    # CONNECTION & SCHEMA
    # =========================================================================

    @staticmethod
    def _validate_collection(name: str) -> str:
        if not isinstance(name, str) or not COLLECTION_NAME_PATTERN.match(name):
            raise LocalStoreError(f"Invalid collection name: {name!r}")
        return name

    @staticmethod
    def cache_table(collection: str) -> str:
        return f"cache_{collection}"

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=10,
                    check_same_thread=False,
                )
            except (sqlite3.Error, OSError) as e:
                raise LocalStoreError(
                    f"Cannot open local database: {e}",
                    db_path=str(self.db_path),
                )
            conn.row_factory = sqlite3.Row
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LocalStoreError(
                f"Local database error: {e}",
                db_path=str(self.db_path),
            )
        except Exception:
            conn.rollback()
            raise

    def _query(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, list(params)).fetchall()
        except sqlite3.Error as e:
            raise LocalStoreError(
                f"Local database error: {e}",
                db_path=str(self.db_path),
            )

    def initialize(self) -> LocalStore:
        """Create or verify the schema. Safe to call repeatedly."""
        if self._initialized:
            return self

        with self.transaction() as conn:
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            if version > self.SCHEMA_VERSION:
                raise LocalStoreError(
                    f"Local database schema v{version} is newer than supported "
                    f"v{self.SCHEMA_VERSION}",
                    db_path=str(self.db_path),
                )

            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")
            for statement in self.INDEXES:
                conn.execute(statement)
            for collection in self.collections:
                self._create_cache_table(conn, collection)

            conn.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")

        self._initialized = True
        logger.info(f"Local store initialized at: {self.db_path}")
        return self

    def _create_cache_table(self, conn: sqlite3.Connection, collection: str) -> None:
        table = self.cache_table(collection)
        conn.execute(self.CACHE_SCHEMA.format(table=table))
        conn.execute(self.CACHE_INDEX.format(table=table))

    def _require_tracked(self, collection: str) -> str:
        self._validate_collection(collection)
        if collection not in self.collections:
            raise LocalStoreError(
                f"Collection is not cached offline: {collection}",
                table=collection,
            )
        return collection

    # =========================================================================
    # PENDING OPERATIONS
    # =========================================================================

    @staticmethod
    def _row_to_operation(row: sqlite3.Row) -> PendingOperation:
        try:
            kind = OperationKind(row["kind"])
        except ValueError:
            # Kept as raw text so the engine can count it against the retry budget
            kind = row["kind"]
        return PendingOperation(
            id=row["id"],
            kind=kind,
            collection=row["collection"],
            payload=json.loads(row["payload_json"]) if row["payload_json"] else {},
            enqueued_at=from_storage_time(row["enqueued_at"]),
            next_attempt_at=from_storage_time(row["next_attempt_at"]),
            retry_count=row["retry_count"],
            last_error=row["last_error"],
            seq=row["seq"],
        )

    def add_operation(self, op: PendingOperation) -> PendingOperation:
        """Durably append an operation; assigns op.seq."""
        kind = op.kind.value if isinstance(op.kind, OperationKind) else str(op.kind)
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO pending_operations
                    (id, kind, collection, payload_json, enqueued_at,
                     next_attempt_at, retry_count, last_error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    op.id,
                    kind,
                    op.collection,
                    json.dumps(op.payload),
                    to_storage_time(op.enqueued_at),
                    to_storage_time(op.next_attempt_at),
                    op.retry_count,
                    op.last_error,
                ],
            )
            op.seq = cursor.lastrowid
        return op

    def get_operation(self, operation_id: str) -> Optional[PendingOperation]:
        rows = self._query(
            "SELECT * FROM pending_operations WHERE id = ?", [operation_id]
        )
        return self._row_to_operation(rows[0]) if rows else None

    def list_operations(self) -> List[PendingOperation]:
        """All pending operations in drain order (next attempt, then enqueue)."""
        rows = self._query(
            """
            SELECT * FROM pending_operations
            ORDER BY next_attempt_at ASC, enqueued_at ASC, seq ASC
            """
        )
        return [self._row_to_operation(row) for row in rows]

    def update_operation(self, op: PendingOperation) -> None:
        """Persist retry bookkeeping for an operation."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE pending_operations
                SET retry_count = ?, next_attempt_at = ?, last_error = ?
                WHERE id = ? AND retry_count <= ?
                """,
                [
                    op.retry_count,
                    to_storage_time(op.next_attempt_at),
                    op.last_error,
                    op.id,
                    op.retry_count,
                ],
            )
            if cursor.rowcount == 0:
                raise LocalStoreError(
                    f"Pending operation {op.id} missing or retry count would decrease",
                    table="pending_operations",
                )

    def remove_operation(self, operation_id: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_operations WHERE id = ?", [operation_id]
            )
            return cursor.rowcount > 0

    def latest_enqueued_at(self) -> Optional[datetime]:
        """Newest enqueue timestamp still in the queue, or None when empty."""
        rows = self._query(
            "SELECT MAX(enqueued_at) AS latest FROM pending_operations"
        )
        return from_storage_time(rows[0]["latest"]) if rows else None

    def pending_count(self) -> int:
        rows = self._query("SELECT COUNT(*) AS count FROM pending_operations")
        return rows[0]["count"] if rows else 0

    def quarantine(self, op: PendingOperation, error: str, failed_at: datetime) -> SyncFailure:
        """Move an operation to sync_failures in a single transaction."""
        kind = op.kind.value if isinstance(op.kind, OperationKind) else str(op.kind)
        failure = SyncFailure(
            operation_id=op.id,
            error=error,
            failed_at=failed_at,
            kind=kind,
            collection=op.collection,
            payload=op.payload,
            retry_count=op.retry_count,
        )
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_failures
                    (operation_id, kind, collection, payload_json, retry_count,
                     error, failed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    op.id,
                    kind,
                    op.collection,
                    json.dumps(op.payload),
                    op.retry_count,
                    error,
                    to_storage_time(failed_at),
                ],
            )
            failure.id = cursor.lastrowid
            conn.execute("DELETE FROM pending_operations WHERE id = ?", [op.id])
        return failure

    # =========================================================================
    # SYNC FAILURES
    # =========================================================================

    def list_failures(self) -> List[SyncFailure]:
        rows = self._query("SELECT * FROM sync_failures ORDER BY id ASC")
        return [
            SyncFailure(
                id=row["id"],
                operation_id=row["operation_id"],
                error=row["error"],
                failed_at=from_storage_time(row["failed_at"]),
                kind=row["kind"],
                collection=row["collection"],
                payload=json.loads(row["payload_json"]) if row["payload_json"] else {},
                retry_count=row["retry_count"],
            )
            for row in rows
        ]

    def failure_count(self) -> int:
        rows = self._query("SELECT COUNT(*) AS count FROM sync_failures")
        return rows[0]["count"] if rows else 0

    def clear_failures(self) -> int:
        with self.transaction() as conn:
            return conn.execute("DELETE FROM sync_failures").rowcount

    # =========================================================================
    # CACHED COLLECTIONS
    # =========================================================================

    def upsert_rows(self, collection: str, rows: List[Dict[str, Any]], pulled_at: datetime) -> int:
        """
        Insert or replace pulled rows keyed by their id column.

        Idempotent: writing the same rows twice leaves the same state.

        Returns:
            Number of rows written
        """
        table = self.cache_table(self._require_tracked(collection))
        records = []
        for row in rows:
            row_id = row.get(self.id_column)
            if row_id is None:
                raise LocalStoreError(
                    f"Pulled row without '{self.id_column}' in {collection}",
                    table=table,
                )
            updated_at = row.get(self.updated_at_column)
            records.append((
                str(row_id),
                json.dumps(row, default=str),
                str(updated_at) if updated_at is not None else None,
                to_storage_time(pulled_at),
            ))

        if not records:
            return 0

        with self.transaction() as conn:
            conn.executemany(
                f"""
                INSERT INTO {table} (id, data_json, updated_at, pulled_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data_json = excluded.data_json,
                    updated_at = excluded.updated_at,
                    pulled_at = excluded.pulled_at
                """,
                records,
            )
        return len(records)

    def get_cached(
        self,
        collection: str,
        updated_since: Optional[str] = None,
        updated_until: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Read cached rows, optionally as a range over the updated_at index.

        Args:
            collection: Tracked collection name
            updated_since: Inclusive lower bound on updated_at
            updated_until: Inclusive upper bound on updated_at
            limit: Maximum rows to return

        Returns:
            List of row dicts as last pulled from the remote
        """
        table = self.cache_table(self._require_tracked(collection))
        query = f"SELECT data_json FROM {table}"
        clauses, params = [], []

        if updated_since is not None:
            clauses.append("updated_at >= ?")
            params.append(updated_since)
        if updated_until is not None:
            clauses.append("updated_at <= ?")
            params.append(updated_until)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
            query += " ORDER BY updated_at ASC, id ASC"
        else:
            query += " ORDER BY id ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))

        return [json.loads(row["data_json"]) for row in self._query(query, params)]

    def cached_count(self, collection: str) -> int:
        table = self.cache_table(self._require_tracked(collection))
        rows = self._query(f"SELECT COUNT(*) AS count FROM {table}")
        return rows[0]["count"] if rows else 0

    def cached_dataframe(self, collection: str) -> pd.DataFrame:
        """
        Load a cached collection into a pandas DataFrame.

        Returns:
            DataFrame with one row per cached remote row
        """
        rows = self.get_cached(collection)
        if not rows:
            return pd.DataFrame()
        return pd.DataFrame.from_records(rows)

    # =========================================================================
    # META / WATERMARK
    # =========================================================================

    def get_meta(self, key: str, default: Any = None) -> Any:
        rows = self._query("SELECT value FROM sync_meta WHERE key = ?", [key])
        if not rows or rows[0]["value"] is None:
            return default
        return json.loads(rows[0]["value"])

    def set_meta(self, key: str, value: Any, updated_at: Optional[datetime] = None) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                [
                    key,
                    json.dumps(value),
                    to_storage_time(updated_at) if updated_at else None,
                ],
            )

    def get_watermark(self) -> Optional[datetime]:
        """Timestamp of the last fully successful pull (None: never pulled)."""
        return from_storage_time(self.get_meta(WATERMARK_KEY))

    def set_watermark(self, value: datetime) -> None:
        self.set_meta(WATERMARK_KEY, to_storage_time(value), updated_at=value)

    # =========================================================================
    # RESET / CLOSE
    # =========================================================================

    def reset(self, include_failures: bool = False) -> None:
        """Clear the queue, every cached collection and the watermark."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM pending_operations")
            for collection in self.collections:
                conn.execute(f"DELETE FROM {self.cache_table(collection)}")
            conn.execute("DELETE FROM sync_meta WHERE key = ?", [WATERMARK_KEY])
            if include_failures:
                conn.execute("DELETE FROM sync_failures")
        logger.info("Local store reset")

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing connection: {e}")
            self._connections.clear()
        self._local = threading.local()
        self._initialized = False
