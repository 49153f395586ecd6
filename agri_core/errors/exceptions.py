# =============================================================================
# agri_core/errors/exceptions.py
# Custom Exception Hierarchy for the Offline Sync Library
# =============================================================================

from typing import Optional, Dict, Any


class AgriSyncError(Exception):
    """
    Base exception for all offline sync errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "SYNC_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(AgriSyncError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# LOCAL STORE EXCEPTIONS
# =============================================================================

class LocalStoreError(AgriSyncError):
    """Raised when the local durable store is unavailable or corrupt"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        db_path: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if db_path:
            details["db_path"] = db_path

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


class InvalidOperationError(AgriSyncError):
    """Raised when a mutation cannot be queued as given"""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        collection: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if kind:
            details["kind"] = kind
        if collection:
            details["collection"] = collection

        super().__init__(
            message=message,
            code="QUEUE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# REMOTE SERVICE EXCEPTIONS
# =============================================================================

class RemoteOperationError(AgriSyncError):
    """Raised when applying an operation against the remote service fails"""

    default_code = "REMOTE_000"

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        remote_code: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if remote_code:
            details["remote_code"] = remote_code

        super().__init__(
            message=message,
            code=kwargs.pop("code", self.default_code),
            details=details,
            **kwargs,
        )


class TransientRemoteError(RemoteOperationError):
    """Network error, timeout or server-side failure; worth retrying"""

    default_code = "REMOTE_001"


class PermanentRemoteError(RemoteOperationError):
    """Validation or schema rejection from the remote; retrying cannot help"""

    default_code = "REMOTE_002"


class UnknownOperationError(PermanentRemoteError):
    """Raised when a queued operation has a kind the engine cannot apply"""

    default_code = "SYNC_001"
