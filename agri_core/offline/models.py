# =============================================================================
# agri_core/offline/models.py
# Queue Records: PendingOperation and SyncFailure
# =============================================================================
"""
Records owned by the sync engine.

A PendingOperation is a client-originated mutation waiting to be applied to
the remote service. When it exhausts its retry budget it is converted into a
terminal SyncFailure, which is never retried automatically.
"""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

import numpy as np
import pandas as pd

from agri_core.errors import InvalidOperationError


class OperationKind(Enum):
    """Mutation kinds accepted by the queue."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Union[OperationKind, str]) -> OperationKind:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidOperationError(
                f"Unknown operation kind: {value!r}",
                kind=str(value),
            )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_storage_time(value: datetime) -> str:
    """ISO-8601 UTC with fixed microsecond precision (sorts chronologically)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_storage_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _clean_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _clean_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_clean_value(v) for v in value]
    if isinstance(value, np.ndarray):
        return [_clean_value(v) for v in value.tolist()]
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, (pd.Timestamp, datetime)):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (np.floating, float)):
        value = float(value)
        return None if math.isnan(value) else value
    if isinstance(value, Decimal):
        return float(value)
    return value


def clean_payload(data: Any) -> Dict[str, Any]:
    """
    Return a JSON-safe copy of an operation payload.

    Handles rows coming straight out of pandas: numpy scalars become Python
    scalars, timestamps become ISO strings and NaN/NaT become None.
    """
    if isinstance(data, pd.Series):
        data = data.to_dict()
    if not isinstance(data, dict):
        raise InvalidOperationError(
            f"Payload must be a mapping, got {type(data).__name__}",
        )
    return _clean_value(data)


@dataclass
class PendingOperation:
    """A queued mutation against one remote collection."""
    id: str
    kind: OperationKind
    collection: str
    payload: Dict[str, Any]
    enqueued_at: datetime
    next_attempt_at: datetime
    retry_count: int = 0
    last_error: Optional[str] = None
    seq: Optional[int] = None  # Store insertion order, assigned on write

    def describe(self) -> str:
        kind = self.kind.value if isinstance(self.kind, OperationKind) else str(self.kind)
        return f"{kind} {self.collection}"

    def is_due(self, now: datetime) -> bool:
        return self.next_attempt_at <= now

    @property
    def order_key(self):
        """Enqueue order (FIFO within a collection)."""
        return (self.enqueued_at, self.seq or 0)


@dataclass
class SyncFailure:
    """Terminal record for an operation that exhausted its retries."""
    operation_id: str
    error: str
    failed_at: datetime
    kind: Optional[str] = None
    collection: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "error": self.error,
            "failed_at": self.failed_at.isoformat(),
            "kind": self.kind,
            "collection": self.collection,
            "payload": self.payload,
            "retry_count": self.retry_count,
        }
