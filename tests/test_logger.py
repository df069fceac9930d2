"""Tests for logger.py: setup_logging(), JsonFormatter and EntryLogAdapter.

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from casync_updater.logger import EntryLogAdapter, JsonFormatter, setup_logging

# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("casync_updater.logger.logging.basicConfig")
    def test_logs_to_stderr(self, mock_basic):
        """Both modes pass StreamHandler(stderr) to basicConfig."""
        setup_logging(mode="service")

        kwargs = mock_basic.call_args[1]
        handlers = kwargs["handlers"]
        assert len(handlers) == 1
        assert handlers[0].stream is sys.stderr
        assert kwargs["force"] is True

    @patch("casync_updater.logger.logging.basicConfig")
    def test_log_file_adds_handler(self, mock_basic, tmp_path):
        log_file = str(tmp_path / "updater.log")
        setup_logging(mode="service", log_file=log_file)

        handlers = mock_basic.call_args[1]["handlers"]
        file_handlers = [
            h for h in handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(handlers) == 2
        assert len(file_handlers) == 1
        for h in file_handlers:
            h.close()

    @patch("casync_updater.logger.logging.basicConfig")
    def test_service_default_level_is_info(self, mock_basic):
        setup_logging(mode="service")
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("casync_updater.logger.logging.basicConfig")
    def test_cli_default_level_is_warning(self, mock_basic):
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.WARNING

    @patch("casync_updater.logger.logging.basicConfig")
    def test_settings_level_used(self, mock_basic):
        setup_logging(mode="cli", level="error")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("casync_updater.logger.logging.basicConfig")
    def test_env_log_level_beats_settings(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        setup_logging(mode="cli", level="ERROR")
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("casync_updater.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        """debug=True overrides LOG_LEVEL env var."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("casync_updater.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic):
        setup_logging(mode="service", log_format="json")

        handlers = mock_basic.call_args[1]["handlers"]
        assert all(isinstance(h.formatter, JsonFormatter) for h in handlers)

    @patch("casync_updater.logger.logging.basicConfig")
    def test_third_party_silenced(self, _mock_basic):
        """Non-DEBUG mode silences urllib3/requests loggers."""
        setup_logging(mode="service")

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


def _record(msg="Hello %s", args=("world",), exc_info=None, **extra):
    record = logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_output(self):
        """Formatted output is valid JSON with required keys."""
        data = json.loads(JsonFormatter().format(_record()))

        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "test.logger"
        assert data["msg"] == "Hello world"
        assert "entry" not in data

    def test_includes_entry(self):
        data = json.loads(JsonFormatter().format(_record(entry="app")))
        assert data["entry"] == "app"

    def test_includes_exception(self):
        try:
            raise ValueError("test error")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(
            JsonFormatter().format(_record("failed", (), exc_info))
        )
        assert "ValueError: test error" in data["exc"]


# ---------------------------------------------------------------------------
# EntryLogAdapter tests
# ---------------------------------------------------------------------------


class TestEntryLogAdapter:
    """Tests for EntryLogAdapter."""

    def test_prefix_and_extra(self, caplog):
        adapter = EntryLogAdapter(
            logging.getLogger("casync_updater.test"), {"entry": "app"}
        )
        with caplog.at_level(logging.INFO):
            adapter.info("extracted %d files", 3)

        record = caplog.records[-1]
        assert record.getMessage() == "[app] extracted 3 files"
        assert record.entry == "app"

    def test_keeps_caller_extra(self):
        adapter = EntryLogAdapter(logging.getLogger("x"), {"entry": "app"})
        msg, kwargs = adapter.process("m", {"extra": {"step": "diff"}})
        assert msg == "[app] m"
        assert kwargs["extra"] == {"step": "diff", "entry": "app"}
