"""Tests for logging configuration and formatters."""

import json
import logging
import sys
from datetime import datetime, timezone

import pytest

from hoa_notify.logging import ComponentLoggerAdapter, get_logger
from hoa_notify.logging.config import (
    ContextualFilter,
    JSONFormatter,
    KeyValueFormatter,
    configure_logging,
)
from hoa_notify.logging.context import clear_log_context, log_context


@pytest.fixture(autouse=True)
def clean_context():
    """Clear logging context before and after each test."""
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def logger():
    """Create a test logger with no handlers attached."""
    test_logger = logging.getLogger("test_logger")
    test_logger.setLevel(logging.DEBUG)
    test_logger.handlers.clear()
    yield test_logger
    test_logger.handlers.clear()


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(logger, message="Test message", **extra):
    return logger.makeRecord("test", logging.INFO, "test.py", 1, message, (), None, extra=extra)


def test_json_formatter_basic(logger):
    """Test JSONFormatter produces valid JSON with mandatory fields."""
    log_obj = json.loads(JSONFormatter().format(make_record(logger)))

    assert log_obj["level"] == "INFO"
    assert log_obj["message"] == "Test message"
    assert log_obj["logger"] == "test"
    assert log_obj["timestamp"].endswith("Z")


def test_json_formatter_with_extra_fields(logger):
    """Test JSONFormatter includes structured extra fields."""
    record = make_record(
        logger,
        event="gateway.send.sent",
        count=42,
        flag=True,
        sent_at=datetime(2024, 3, 12, 15, 0, tzinfo=timezone.utc),
    )

    log_obj = json.loads(JSONFormatter().format(record))

    assert log_obj["event"] == "gateway.send.sent"
    assert log_obj["count"] == 42
    assert log_obj["flag"] is True
    assert log_obj["sent_at"] == "2024-03-12T15:00:00+00:00"


def test_json_formatter_redacts_secrets(logger):
    record = make_record(logger, api_key="SG.secret", auth_token="twilio-secret")

    log_obj = json.loads(JSONFormatter().format(record))

    assert log_obj["api_key"] == "***"
    assert log_obj["auth_token"] == "***"


def test_json_formatter_includes_exception(logger):
    try:
        raise ValueError("boom")
    except ValueError:
        record = logger.makeRecord(
            "test", logging.ERROR, "test.py", 1, "Failed", (), sys.exc_info()
        )

    log_obj = json.loads(JSONFormatter().format(record))

    assert "ValueError: boom" in log_obj["exc_info"]


def test_key_value_formatter(logger):
    """Test KeyValueFormatter appends sorted key=value pairs."""
    formatter = KeyValueFormatter("[%(levelname)s] %(name)s: %(message)s")
    record = make_record(logger, event="queue.job.failed", retryable=False, note="two words")

    output = formatter.format(record)

    assert output.startswith("[INFO] test: Test message ")
    assert 'event=queue.job.failed note="two words" retryable=false' in output


def test_key_value_formatter_hides_service_fields(logger):
    formatter = KeyValueFormatter("%(message)s")
    record = make_record(logger, service="hoa-notify", environment="local")

    assert formatter.format(record) == "Test message"


def test_contextual_filter_adds_fields(logger):
    """Test ContextualFilter stamps service, environment and bound context."""
    record = make_record(logger)

    with log_context(notification_id="n-1", queue="immediate"):
        ContextualFilter(service="hoa-notify", environment="test").filter(record)

    assert record.service == "hoa-notify"
    assert record.environment == "test"
    assert record.notification_id == "n-1"
    assert record.queue == "immediate"


def test_contextual_filter_explicit_fields_win(logger):
    record = make_record(logger, queue="bulk")

    with log_context(queue="immediate"):
        ContextualFilter().filter(record)

    assert record.queue == "bulk"


def test_configure_logging_json(restore_root_logger, capsys):
    configure_logging(level="DEBUG", format_type="json", environment="test")

    logging.getLogger("hoa_notify.test").info("hello", extra={"event": "test.hello"})

    lines = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]
    assert lines[-1]["message"] == "hello"
    assert lines[-1]["environment"] == "test"
    assert restore_root_logger.level == logging.DEBUG
    assert len(restore_root_logger.handlers) == 1


def test_configure_logging_quiets_apscheduler(restore_root_logger):
    configure_logging(level="DEBUG")

    assert logging.getLogger("apscheduler").level == logging.WARNING


@pytest.mark.parametrize("kwargs", [{"level": "LOUD"}, {"format_type": "xml"}])
def test_configure_logging_rejects_invalid(restore_root_logger, kwargs):
    with pytest.raises(ValueError):
        configure_logging(**kwargs)


def test_get_logger_with_component_injects_field(logger):
    adapter = get_logger("test_logger", component="gateway")
    captured = []

    class Capture(logging.Handler):
        def emit(self, record):
            captured.append(record)

    logger.addHandler(Capture())
    adapter.info("sent", extra={"event": "gateway.send.sent"})

    assert isinstance(adapter, ComponentLoggerAdapter)
    assert captured[0].component == "gateway"
    assert captured[0].event == "gateway.send.sent"


def test_get_logger_without_component_is_plain():
    assert isinstance(get_logger("plain"), logging.Logger)
