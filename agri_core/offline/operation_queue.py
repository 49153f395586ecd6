# =============================================================================
# agri_core/offline/operation_queue.py
# Durable Queue of Client Mutations
# =============================================================================
"""
OperationQueue - records create/update/delete mutations locally and pokes the
sync engine.

The durable write completes before enqueue() returns, so the caller knows the
optimistic change survived. The sync trigger that follows is fire-and-forget.
"""

from __future__ import annotations
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from agri_core.config.settings import COLLECTION_NAME_PATTERN
from agri_core.errors import InvalidOperationError, safe_execute
from agri_core.offline.local_store import LocalStore
from agri_core.offline.models import (
    OperationKind,
    PendingOperation,
    clean_payload,
    utc_now,
)

logger = logging.getLogger(__name__)


class OperationQueue:
    """
    Appends PendingOperations to the local store in enqueue order.

    Usage:
        queue = OperationQueue(store)
        queue.set_trigger(engine.request_sync)
        queue.enqueue("create", "orders", {"id": "o1", "total": 500})
    """

    def __init__(
        self,
        store: LocalStore,
        clock: Optional[Callable[[], datetime]] = None,
        id_column: str = "id",
    ):
        self.store = store
        self.clock = clock or utc_now
        self.id_column = id_column
        self._trigger: Optional[Callable[[], Any]] = None
        self._last_enqueued_at: Optional[datetime] = None
        self._seeded = False
        self._lock = threading.Lock()

    def set_trigger(self, trigger: Optional[Callable[[], Any]]) -> None:
        """Callable run after every successful enqueue (the engine's request_sync)."""
        self._trigger = trigger

    def _next_timestamp(self) -> datetime:
        # Never hand out a timestamp earlier than the newest queued operation
        if not self._seeded:
            self._last_enqueued_at = self.store.latest_enqueued_at()
            self._seeded = True
        now = self.clock()
        if self._last_enqueued_at is not None and now < self._last_enqueued_at:
            now = self._last_enqueued_at
        self._last_enqueued_at = now
        return now

    def enqueue(
        self,
        kind: Union[OperationKind, str],
        collection: str,
        payload: Dict[str, Any],
    ) -> PendingOperation:
        """
        Durably queue a mutation and trigger an opportunistic sync.

        Args:
            kind: create, update or delete
            collection: Remote collection (table) name
            payload: Row data; update/delete need the id column

        Returns:
            The stored PendingOperation

        Raises:
            InvalidOperationError: bad kind, collection or payload
            LocalStoreError: the operation could not be recorded
        """
        op_kind = OperationKind.parse(kind)
        if not isinstance(collection, str) or not COLLECTION_NAME_PATTERN.match(collection):
            raise InvalidOperationError(
                f"Invalid collection name: {collection!r}",
                kind=op_kind.value,
                collection=str(collection),
            )

        data = clean_payload(payload)
        if op_kind is not OperationKind.CREATE and data.get(self.id_column) is None:
            raise InvalidOperationError(
                f"{op_kind.value} requires '{self.id_column}' in the payload",
                kind=op_kind.value,
                collection=collection,
            )

        with self._lock:
            now = self._next_timestamp()
            op = PendingOperation(
                id=uuid.uuid4().hex,
                kind=op_kind,
                collection=collection,
                payload=data,
                enqueued_at=now,
                next_attempt_at=now,
            )
            self.store.add_operation(op)

        logger.debug(f"Queued {op_kind.value} on {collection} ({op.id})")
        self._fire_trigger()
        return op

    def _fire_trigger(self) -> None:
        if self._trigger is None:
            return
        safe_execute(self._trigger, error_message="Sync trigger after enqueue failed")

    def pending(self) -> List[PendingOperation]:
        """Snapshot of queued operations in drain order."""
        return self.store.list_operations()

    def pending_count(self) -> int:
        return self.store.pending_count()
