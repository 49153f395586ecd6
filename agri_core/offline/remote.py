# =============================================================================
# agri_core/offline/remote.py
# Remote Collection Service (Supabase) Boundary
# =============================================================================
"""
The sync engine sees the hosted database as an opaque capability with four
calls: insert, update_by_id, delete_by_id and select_updated_since.

Implementations:
- SupabaseRemote: supabase-py client (PostgREST over HTTPS)
- InMemoryRemote: dict-backed stand-in with call log and fault injection
"""

from __future__ import annotations
import copy
import re
import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

import httpx
from postgrest.exceptions import APIError

from agri_core.errors import (
    ConfigurationError,
    PermanentRemoteError,
    RemoteOperationError,
    TransientRemoteError,
)
from agri_core.offline.models import to_storage_time, utc_now

logger = logging.getLogger(__name__)

# SQLSTATE classes that no retry can fix: data exception, integrity
# constraint violation, syntax error or access rule violation
PERMANENT_SQLSTATE_CLASSES = ("22", "23", "42")

# PostgREST request (PGRST1xx) and schema cache (PGRST2xx) errors
PERMANENT_POSTGREST_CODE = re.compile(r"^PGRST[12]\d\d$")


def classify_remote_error(error: Exception, collection: Optional[str] = None) -> RemoteOperationError:
    """
    Map a client-library exception to Transient/PermanentRemoteError.

    Args:
        error: Exception raised by the remote client
        collection: Collection the call targeted

    Returns:
        RemoteOperationError subclass describing the failure
    """
    if isinstance(error, RemoteOperationError):
        return error

    if isinstance(error, APIError):
        code = str(error.code) if error.code is not None else ""
        message = error.message or str(error)
        if code[:2] in PERMANENT_SQLSTATE_CLASSES or PERMANENT_POSTGREST_CODE.match(code):
            return PermanentRemoteError(message, collection=collection, remote_code=code)
        return TransientRemoteError(message, collection=collection, remote_code=code or None)

    if isinstance(error, httpx.HTTPError):
        return TransientRemoteError(
            f"{error.__class__.__name__}: {error}",
            collection=collection,
        )

    return TransientRemoteError(str(error) or error.__class__.__name__, collection=collection)


class RemoteCollectionService(ABC):
    """Abstract remote collection service addressed by collection name and row id."""

    def __init__(self, id_column: str = "id", updated_at_column: str = "updated_at"):
        self.id_column = id_column
        self.updated_at_column = updated_at_column

    def _row_id(self, collection: str, payload: Dict[str, Any]) -> Any:
        row_id = payload.get(self.id_column)
        if row_id is None:
            raise PermanentRemoteError(
                f"Payload has no '{self.id_column}'",
                collection=collection,
            )
        return row_id

    @abstractmethod
    def insert(self, collection: str, payload: Dict[str, Any]) -> None:
        """Insert a row."""

    @abstractmethod
    def update_by_id(self, collection: str, payload: Dict[str, Any]) -> None:
        """Update the row whose id is payload[id_column]."""

    @abstractmethod
    def delete_by_id(self, collection: str, payload: Dict[str, Any]) -> None:
        """Delete the row whose id is payload[id_column]."""

    @abstractmethod
    def select_updated_since(
        self,
        collection: str,
        since: Optional[datetime],
    ) -> List[Dict[str, Any]]:
        """Rows with updated_at strictly after `since` (all rows when None)."""


class SupabaseRemote(RemoteCollectionService):
    """
    Remote collection service backed by a supabase-py client.

    Usage:
        remote = SupabaseRemote.from_settings(settings)
        remote.insert("orders", {"id": "o1", "total": 500})
    """

    PAGE_SIZE = 1000  # PostgREST default max rows per response

    def __init__(self, client, id_column: str = "id", updated_at_column: str = "updated_at"):
        super().__init__(id_column=id_column, updated_at_column=updated_at_column)
        self.client = client

    @classmethod
    def from_settings(cls, settings) -> SupabaseRemote:
        """Create a client from SUPABASE_URL / SUPABASE_KEY settings."""
        if not settings.has_remote:
            raise ConfigurationError(
                "Supabase credentials not configured",
                config_key="supabase_url/supabase_key",
            )
        from supabase import create_client

        client = create_client(settings.supabase_url, settings.supabase_key)
        return cls(
            client,
            id_column=settings.id_column,
            updated_at_column=settings.updated_at_column,
        )

    def _execute(self, collection: str, query):
        try:
            return query.execute()
        except Exception as e:
            raise classify_remote_error(e, collection)

    def insert(self, collection: str, payload: Dict[str, Any]) -> None:
        self._execute(collection, self.client.table(collection).insert(payload))

    def update_by_id(self, collection: str, payload: Dict[str, Any]) -> None:
        row_id = self._row_id(collection, payload)
        changes = {k: v for k, v in payload.items() if k != self.id_column}
        self._execute(
            collection,
            self.client.table(collection).update(changes).eq(self.id_column, row_id),
        )

    def delete_by_id(self, collection: str, payload: Dict[str, Any]) -> None:
        row_id = self._row_id(collection, payload)
        self._execute(
            collection,
            self.client.table(collection).delete().eq(self.id_column, row_id),
        )

    def select_updated_since(
        self,
        collection: str,
        since: Optional[datetime],
    ) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        offset = 0

        while True:
            query = self.client.table(collection).select("*")
            if since is not None:
                query = query.gt(self.updated_at_column, since.isoformat())
            # id breaks updated_at ties so pages neither skip nor repeat rows
            query = (
                query.order(self.updated_at_column)
                .order(self.id_column)
                .range(offset, offset + self.PAGE_SIZE - 1)
            )
            result = self._execute(collection, query)
            page = result.data or []
            rows.extend(page)

            if len(page) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE

        logger.debug(f"Selected {len(rows)} rows from {collection}")
        return rows


@dataclass
class RemoteCall:
    """One call recorded by InMemoryRemote."""
    method: str
    collection: str
    payload: Optional[Dict[str, Any]] = None


class InMemoryRemote(RemoteCollectionService):
    """
    Dict-backed remote used by tests.

    Every call is appended to `calls`. `fail_next(method, times, error)`
    makes the next `times` calls of `method` raise `error`.
    """

    def __init__(
        self,
        id_column: str = "id",
        updated_at_column: str = "updated_at",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(id_column=id_column, updated_at_column=updated_at_column)
        self.clock = clock or utc_now
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.calls: List[RemoteCall] = []
        self.before_call: Optional[Callable[[RemoteCall], None]] = None
        self._faults: Dict[str, List[Tuple[int, Exception]]] = defaultdict(list)
        self._lock = threading.RLock()

    def fail_next(self, method: str, times: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next `times` calls to `method` raise `error`."""
        error = error or TransientRemoteError(f"Simulated network failure in {method}")
        with self._lock:
            self._faults[method].append((times, error))

    def calls_to(self, method: Optional[str] = None) -> List[RemoteCall]:
        return [c for c in self.calls if method is None or c.method == method]

    def _record(self, method: str, collection: str, payload: Optional[Dict[str, Any]] = None) -> None:
        call = RemoteCall(method, collection, copy.deepcopy(payload))
        with self._lock:
            self.calls.append(call)
        if self.before_call is not None:
            self.before_call(call)
        with self._lock:
            faults = self._faults.get(method)
            if faults:
                times, error = faults[0]
                if times <= 1:
                    faults.pop(0)
                else:
                    faults[0] = (times - 1, error)
                raise error

    def _stamp(self, row: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(row)
        row[self.updated_at_column] = to_storage_time(self.clock())
        return row

    def seed(self, collection: str, rows: List[Dict[str, Any]]) -> None:
        """Put rows in a collection without recording a call."""
        with self._lock:
            for row in rows:
                row = dict(row)
                if self.updated_at_column not in row:
                    row = self._stamp(row)
                self.tables[collection][str(row[self.id_column])] = row

    def insert(self, collection: str, payload: Dict[str, Any]) -> None:
        self._record("insert", collection, payload)
        with self._lock:
            row = dict(payload)
            row.setdefault(self.id_column, uuid.uuid4().hex)
            key = str(row[self.id_column])
            if key in self.tables[collection]:
                raise PermanentRemoteError(
                    f"duplicate key value violates unique constraint ({key})",
                    collection=collection,
                    remote_code="23505",
                )
            self.tables[collection][key] = self._stamp(row)

    def update_by_id(self, collection: str, payload: Dict[str, Any]) -> None:
        self._record("update_by_id", collection, payload)
        key = str(self._row_id(collection, payload))
        with self._lock:
            existing = self.tables[collection].get(key)
            if existing is not None:
                existing.update(payload)
                self.tables[collection][key] = self._stamp(existing)

    def delete_by_id(self, collection: str, payload: Dict[str, Any]) -> None:
        self._record("delete_by_id", collection, payload)
        key = str(self._row_id(collection, payload))
        with self._lock:
            self.tables[collection].pop(key, None)

    def select_updated_since(
        self,
        collection: str,
        since: Optional[datetime],
    ) -> List[Dict[str, Any]]:
        self._record("select_updated_since", collection)
        threshold = to_storage_time(since) if since is not None else None
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self.tables[collection].values()
                if threshold is None or str(row.get(self.updated_at_column, "")) > threshold
            ]
        return sorted(
            rows,
            key=lambda r: (str(r.get(self.updated_at_column, "")), str(r.get(self.id_column))),
        )
