"""Unit tests for structlog configuration."""

import io
import json
from typing import Generator

import pytest
import structlog

from servershell.core.config import LoggingConfig
from servershell.core.logging import configure_logging


@pytest.fixture(autouse=True)
def restore_structlog() -> Generator[None, None, None]:
    yield
    structlog.reset_defaults()


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_json_lines(self) -> None:
        stream = io.StringIO()
        configure_logging(LoggingConfig(level="INFO", format="json"), stream=stream)

        structlog.get_logger().info("shell_connected", port=3001)

        record = json.loads(stream.getvalue())
        assert record["event"] == "shell_connected"
        assert record["port"] == 3001
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_level_filters(self) -> None:
        stream = io.StringIO()
        configure_logging(LoggingConfig(level="WARNING"), stream=stream)

        log = structlog.get_logger()
        log.debug("hidden_event")
        log.info("hidden_too")
        log.warning("shown_event")

        output = stream.getvalue()
        assert "hidden" not in output
        assert "shown_event" in output

    def test_console_format(self) -> None:
        stream = io.StringIO()
        configure_logging(LoggingConfig(level="DEBUG", format="console"), stream=stream)

        structlog.get_logger().debug("socket_torn_down", attempts=2)

        output = stream.getvalue()
        assert "socket_torn_down" in output
        assert "attempts=2" in output

    def test_defaults(self) -> None:
        """Defaults to WARNING on stderr without raising."""
        configure_logging()
        structlog.get_logger().debug("not_written")
