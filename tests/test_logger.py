import json
import logging

from review_aggregator.telemetry.logger import JsonFormatter, get_logger


def make_record(msg="Test message", **extra):
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter():
    formatter = JsonFormatter()
    output = formatter.format(make_record())
    data = json.loads(output)
    assert data["level"] == "INFO"
    assert data["msg"] == "Test message"
    assert data["logger"] == "test"
    assert data["ts"].endswith("+00:00")


def test_json_formatter_includes_extra_fields():
    formatter = JsonFormatter()
    data = json.loads(
        formatter.format(make_record(operation="import_start", correlation_id="abc", count=3))
    )
    assert data["operation"] == "import_start"
    assert data["correlation_id"] == "abc"
    assert data["count"] == 3
    assert "pathname" not in data
    assert "lineno" not in data


def test_json_formatter_is_ascii_and_stringifies_unknown_types():
    formatter = JsonFormatter()
    output = formatter.format(make_record(msg="café", when=object))
    output.encode("ascii")
    assert json.loads(output)["msg"] == "café"


def test_get_logger():
    logger = get_logger("test_app")
    assert logger.name == "test_app"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, JsonFormatter)


def test_get_logger_reuses_handler_and_applies_level():
    first = get_logger("test_app_level")
    second = get_logger("test_app_level", level="DEBUG")
    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.DEBUG
