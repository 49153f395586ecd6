# =============================================================================
# agri_core/errors/handlers.py
# Error Handling for Background Threads and Fire-and-Forget Callbacks
# =============================================================================
"""
The sync engine and connection monitor run callbacks and passes on threads
where nobody is waiting for an exception. These helpers log such errors with
their code and details and keep the thread alive.
"""

from __future__ import annotations
import traceback
from typing import Optional, Callable, TypeVar

from agri_core.logging import get_logger
from .exceptions import AgriSyncError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    log_error: bool = True,
    message: Optional[str] = None,
) -> dict:
    """
    Log an error and describe it as a dict the host application can show.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        message: Replaces the error's own message

    Returns:
        Dict with error_type, code, message, details and recoverable
    """
    if isinstance(error, AgriSyncError):
        info = error.to_dict()
        if message:
            info["message"] = message
    else:
        info = {
            "error_type": error.__class__.__name__,
            "code": "UNKNOWN",
            "message": message or str(error),
            "details": {"traceback": traceback.format_exc()},
            "recoverable": True,
        }

    if log_error:
        logger.error(
            f"[{info['code']}] {info['message']}",
            extra={"details": info["details"]},
            exc_info=error,
        )

    return info


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Call func, logging any exception instead of raising it.

    Usage:
        safe_execute(callback, state, error_message="Error in sync callback")
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, message=error_message)
        if reraise:
            raise
        return default


class ErrorContext:
    """
    Log and contain errors raised inside a block.

    Unrecoverable AgriSyncErrors (e.g. LocalStoreError) always propagate.

    Usage:
        with ErrorContext("Connection check"):
            monitor.check_connection()
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None or not issubclass(exc_type, Exception):
            return False

        self.error = exc_val
        if isinstance(exc_val, AgriSyncError):
            handle_error(exc_val)
            if not exc_val.recoverable:
                return False
        else:
            handle_error(exc_val, message=f"Error during: {self.operation}")
        return self.recoverable
