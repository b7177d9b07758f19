"""Unit tests for structured logging setup."""

import logging
from pathlib import Path

import pytest
import structlog

from stashbulk.observability.logger import (
    LogContext,
    _context_processor,
    configure_logging,
    get_log_level,
)


class TestLoggingConfiguration:
    """Test logging configuration functions."""

    @pytest.mark.parametrize("level", ["DEBUG", "INFO", "WARNING", "ERROR"])
    def test_root_level(self, level):
        configure_logging(level=level)

        assert logging.getLogger().level == getattr(logging, level)

    def test_httpx_quieted(self):
        configure_logging(level="DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING

    def test_json_logs(self):
        configure_logging(json_logs=True)

        assert structlog.get_logger("test") is not None

    def test_log_file_created(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "bulk.log"

        configure_logging(log_file=log_file)
        structlog.get_logger("test_file").info("hello", job="x")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_file.exists()

    def test_get_log_level(self):
        assert get_log_level("debug") == logging.DEBUG
        assert get_log_level("nonsense") == logging.INFO


class TestLogContext:
    """Test job context propagation."""

    def test_context_bound_inside_block(self):
        with LogContext(job_id="abc"):
            event = _context_processor(logging.getLogger(), "info", {"event": "x"})
            assert event["job_id"] == "abc"

        after = _context_processor(logging.getLogger(), "info", {"event": "y"})
        assert "job_id" not in after

    def test_nested_contexts_merge(self):
        with LogContext(job_id="abc"):
            with LogContext(batch_index=2):
                inner = _context_processor(logging.getLogger(), "info", {"event": "x"})
            outer = _context_processor(logging.getLogger(), "info", {"event": "y"})

        assert inner["job_id"] == "abc"
        assert inner["batch_index"] == 2
        assert "batch_index" not in outer
        assert outer["job_id"] == "abc"

    def test_explicit_keys_win(self):
        with LogContext(job_id="abc"):
            event = _context_processor(
                logging.getLogger(), "info", {"event": "x", "job_id": "override"}
            )

        assert event["job_id"] == "override"
