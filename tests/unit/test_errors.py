# =============================================================================
# tests/unit/test_errors.py
# Unit Tests for the exception hierarchy and handlers
# =============================================================================

import logging
import threading
from unittest.mock import MagicMock

import pytest

from agri_core.errors import (
    AgriSyncError,
    ErrorContext,
    LocalStoreError,
    PermanentRemoteError,
    RemoteOperationError,
    TransientRemoteError,
    UnknownOperationError,
    handle_error,
    safe_execute,
)
from agri_core.offline import EngineStatus


class TestExceptions:
    """Codes and serialization"""

    def test_remote_error_codes(self):
        assert TransientRemoteError("x").code == "REMOTE_001"
        assert PermanentRemoteError("x").code == "REMOTE_002"
        assert UnknownOperationError("x").code == "SYNC_001"

    def test_unknown_operation_is_permanent(self):
        assert issubclass(UnknownOperationError, PermanentRemoteError)
        assert issubclass(PermanentRemoteError, RemoteOperationError)

    def test_to_dict(self):
        error = LocalStoreError("disk full", table="pending_operations")

        assert error.to_dict() == {
            "error_type": "LocalStoreError",
            "code": "STORE_001",
            "message": "disk full",
            "details": {"table": "pending_operations"},
            "recoverable": False,
        }

    def test_str_includes_code_and_details(self):
        error = TransientRemoteError("timeout", collection="orders")

        assert str(error) == "[REMOTE_001] timeout | Details: {'collection': 'orders'}"


class TestHandlers:
    """Logging-only handlers"""

    def test_handle_error_logs_code(self, caplog):
        with caplog.at_level(logging.ERROR):
            info = handle_error(TransientRemoteError("timeout"))

        assert info["code"] == "REMOTE_001"
        assert "[REMOTE_001] timeout" in caplog.text

    def test_handle_plain_exception(self):
        info = handle_error(ValueError("bad"), log_error=False)

        assert info["code"] == "UNKNOWN"
        assert info["message"] == "bad"

    def test_safe_execute_returns_default(self):
        def explode():
            raise RuntimeError("boom")

        assert safe_execute(explode, default=0) == 0

    def test_safe_execute_reraise(self):
        with pytest.raises(RuntimeError):
            safe_execute(_raise_runtime, reraise=True)

    def test_error_context_suppresses_recoverable(self):
        with ErrorContext("pull farm_budget") as ctx:
            raise TransientRemoteError("timeout")

        assert isinstance(ctx.error, TransientRemoteError)

    def test_error_context_propagates_unrecoverable(self):
        with pytest.raises(LocalStoreError):
            with ErrorContext("enqueue"):
                raise LocalStoreError("disk full")


class TestBackgroundErrorHandling:
    """Errors on callback and worker paths are logged, not raised"""

    def test_failing_sync_callback_is_logged(self, engine, caplog):
        def broken(state):
            raise AgriSyncError("status widget gone")

        engine.register_callback(broken)

        with caplog.at_level(logging.ERROR, logger="agri_core.errors.handlers"):
            report = engine.sync_now()

        assert report.success
        assert engine.state.status is EngineStatus.IDLE
        assert "Error in sync callback" in caplog.text

    def test_failing_pass_is_logged_by_request_sync(self, engine, monkeypatch, caplog):
        monkeypatch.setattr(engine, "sync_now", MagicMock(side_effect=LocalStoreError("disk full")))

        with caplog.at_level(logging.ERROR, logger="agri_core.errors.handlers"):
            assert engine.request_sync() is True

        assert "[STORE_001] Sync pass failed" in caplog.text

    def test_failing_connection_check_keeps_monitoring(self, monitor, monkeypatch, caplog):
        checked = threading.Event()
        calls = []

        def flaky_check():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("resolver crashed")
            checked.set()

        monkeypatch.setattr(monitor, "check_connection", flaky_check)
        monitor.check_interval_online = 0.01

        with caplog.at_level(logging.ERROR, logger="agri_core.errors.handlers"):
            monitor.start_monitoring()
            try:
                assert checked.wait(timeout=5)
            finally:
                monitor.stop_monitoring()

        assert "Error during: Connection check" in caplog.text


def _raise_runtime():
    raise RuntimeError("boom")
