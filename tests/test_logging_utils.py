"""Tests for structured JSON logging."""

import io
import json
import logging

import pytest

from voltlink.logging_utils import (
    JSONFormatter,
    log_command_event,
    log_error,
    log_session_event,
    setup_logging,
)
from voltlink.models import SessionState


@pytest.fixture
def captured():
    """Logger whose records are formatted as JSON into a buffer."""
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    logger = logging.getLogger("voltlink.tests.json")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    def records() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines()]

    yield logger, records
    logger.removeHandler(handler)


@pytest.mark.unit
class TestStructuredEvents:
    def test_session_event(self, captured):
        logger, records = captured

        log_session_event(logger, "started", "EMT-0001", transaction_id=7, user_id=None, state=SessionState.ACTIVE)

        record = records()[0]
        assert record["event_type"] == "session_event"
        assert record["event"] == "started"
        assert record["cp_id"] == "EMT-0001"
        assert record["transaction_id"] == 7
        assert "user_id" not in record
        assert record["state"] == "active"

    def test_command_event_level(self, captured):
        logger, records = captured

        log_command_event(logger, "timed_out", "EMT-0001", "Reset", level=logging.WARNING, timeout=5.0)

        record = records()[0]
        assert record["level"] == "WARNING"
        assert record["message"] == "Command Reset timed_out"
        assert record["timeout"] == 5.0

    def test_error_includes_exception(self, captured):
        logger, records = captured

        try:
            raise ValueError("bad frame")
        except ValueError as e:
            log_error(logger, "handler_error", "Frame failed", cp_id="EMT-0001", exc_info=e)

        record = records()[0]
        assert record["event_type"] == "error"
        assert record["error_type"] == "handler_error"
        assert "ValueError: bad frame" in record["exception"]


@pytest.mark.unit
def test_setup_logging(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    stream = io.StringIO()
    log_file = tmp_path / "voltlink.log"
    try:
        setup_logging("debug", str(log_file), stream=stream)
        logging.getLogger("voltlink.tests.setup").info("hello")

        assert json.loads(stream.getvalue())["message"] == "hello"
        assert root.level == logging.DEBUG
        assert logging.getLogger("websockets").level == logging.WARNING
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers = saved_handlers
        root.setLevel(saved_level)

    assert json.loads(log_file.read_text())["logger"] == "voltlink.tests.setup"
