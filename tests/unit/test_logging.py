# =============================================================================
# tests/unit/test_logging.py
# Unit Tests for logging setup and LogContext
# =============================================================================

import logging

import pytest

from agri_core.logging import LogContext, get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Application-wide configuration"""

    def test_file_logging(self, tmp_path, restore_root_logger):
        setup_logging(logging.DEBUG, log_to_file=True, log_filename="sync.log", log_dir=tmp_path)

        get_logger("agri_core.offline.sync_engine").info("Draining 3 pending operations")
        for handler in restore_root_logger.handlers:
            handler.flush()

        text = (tmp_path / "sync.log").read_text()
        assert "| agri_core.offline.sync_engine | INFO | Draining 3 pending operations" in text

    def test_http_stack_is_quieted(self, restore_root_logger):
        setup_logging()

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("postgrest").level == logging.WARNING


class TestLogContext:
    """Operation timing"""

    def test_success_records_elapsed(self, caplog):
        logger = get_logger("agri_core.test")

        with caplog.at_level(logging.DEBUG, logger="agri_core.test"):
            with LogContext(logger, "Pull phase") as ctx:
                pass

        assert ctx.elapsed is not None
        assert "Pull phase... completed" in caplog.text

    def test_failure_is_logged_and_propagates(self, caplog):
        logger = get_logger("agri_core.test")

        with caplog.at_level(logging.DEBUG, logger="agri_core.test"):
            with pytest.raises(RuntimeError):
                with LogContext(logger, "Sync pass"):
                    raise RuntimeError("disk full")

        assert "Sync pass... failed" in caplog.text
        assert "disk full" in caplog.text
