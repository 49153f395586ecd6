# =============================================================================
# agri_core/errors/__init__.py
# Centralized Error Handling for the Offline Sync Library
# =============================================================================

from .exceptions import (
    AgriSyncError,
    ConfigurationError,
    LocalStoreError,
    InvalidOperationError,
    RemoteOperationError,
    TransientRemoteError,
    PermanentRemoteError,
    UnknownOperationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "AgriSyncError",
    "ConfigurationError",
    "LocalStoreError",
    "InvalidOperationError",
    "RemoteOperationError",
    "TransientRemoteError",
    "PermanentRemoteError",
    "UnknownOperationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "ErrorContext",
]
