"""Tests for structured logging."""

import json
import logging
import sys
from collections.abc import Iterator

import pytest

from trackforge.infrastructure.observability.logging import (
    CompactExceptionFormatter,
    CorrelationIdFilter,
    CustomJsonFormatter,
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    """configure_logging replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg: str = "hello", exc_info: object = None) -> logging.LogRecord:
    return logging.LogRecord(
        name="trackforge.test",
        level=logging.ERROR,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,  # type: ignore[arg-type]
    )


class TestCorrelationId:
    """Test correlation ID functionality."""

    def test_set_and_get_correlation_id(self) -> None:
        """Test setting and getting correlation ID."""
        result = set_correlation_id("test-123-abc")

        assert result == "test-123-abc"
        assert get_correlation_id() == "test-123-abc"

    def test_set_correlation_id_generates_uuid_when_none(self) -> None:
        """Test that setting None generates a UUID."""
        result = set_correlation_id(None)

        assert len(result) == 36
        assert get_correlation_id() == result

    def test_filter_stamps_records(self) -> None:
        set_correlation_id("job-42")
        record = _record()

        assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "job-42"  # type: ignore[attr-defined]


class TestLoggingConfiguration:
    """Test logging configuration."""

    def test_configure_logging_debug_level(self) -> None:
        configure_logging(log_level="DEBUG", json_format=False, app_name="test-app")

        assert logging.getLogger("trackforge.anything").getEffectiveLevel() <= logging.DEBUG

    def test_configure_logging_replaces_handlers(self) -> None:
        configure_logging(log_level="INFO")
        configure_logging(log_level="INFO")

        assert len(logging.getLogger().handlers) == 1

    def test_json_format_uses_json_formatter(self) -> None:
        configure_logging(log_level="INFO", json_format=True)

        handler = logging.getLogger().handlers[0]
        assert isinstance(handler.formatter, CustomJsonFormatter)

    def test_text_format_uses_compact_formatter(self) -> None:
        configure_logging(log_level="INFO", json_format=False)

        handler = logging.getLogger().handlers[0]
        assert isinstance(handler.formatter, CompactExceptionFormatter)

    def test_noisy_loggers_are_quieted(self) -> None:
        configure_logging(log_level="DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING


class TestFormatters:
    def test_json_output_has_fixed_fields(self) -> None:
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        record = _record("stored job")
        record.correlation_id = "corr-1"  # type: ignore[attr-defined]

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "stored job"
        assert payload["level"] == "ERROR"
        assert payload["logger"] == "trackforge.test"
        assert payload["correlation_id"] == "corr-1"

    def test_compact_formatter_prints_root_cause_first(self) -> None:
        formatter = CompactExceptionFormatter("%(message)s")
        try:
            try:
                raise ConnectionError("refused")
            except ConnectionError as inner:
                raise RuntimeError("download failed") from inner
        except RuntimeError:
            text = formatter.formatException(sys.exc_info())

        lines = [line for line in text.splitlines() if line.startswith("╰─►")]
        assert lines == [
            "╰─► ConnectionError: refused",
            "╰─► RuntimeError: download failed",
        ]
