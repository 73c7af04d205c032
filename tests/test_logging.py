# tests/test_logging.py
"""Tests for console helpers and structlog configuration."""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
import structlog

from procscope import logging as pslog
from procscope.config import Config, SystemConfig


@pytest.fixture
def restore_root_logger():
    """Put the stdlib root logger back the way the test found it."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def console():
    with patch.object(pslog, "_console") as mock_console:
        yield mock_console


class TestConsoleHelpers:
    """Rich console output."""

    def test_log_line_has_level_and_icon(self, console) -> None:
        pslog.info("hello", pslog.Icon.OK)
        line = console.print.call_args[0][0]
        assert "[info]" in line
        assert pslog.Icon.OK in line
        assert line.endswith("hello")

    def test_unknown_level_is_shown_verbatim(self, console) -> None:
        pslog.log("debug", "details")
        assert "[debug]" in console.print.call_args[0][0]

    def test_action_failed(self, console) -> None:
        pslog.action_failed("KILL", 42, "denied at every tier")
        line = console.print.call_args[0][0]
        assert "PID 42" in line
        assert "denied at every tier" in line
        assert pslog.Icon.FAIL in line

    def test_escalated_names_tier(self, console) -> None:
        pslog.escalated("elevated")
        line = console.print.call_args[0][0]
        assert "[warn]" in line
        assert "elevated" in line

    def test_sandbox_detected_without_app_path(self, console) -> None:
        pslog.sandbox_detected(None)
        assert "Running sandboxed" in console.print.call_args[0][0]

    def test_scan_complete_rounds_elapsed(self, console) -> None:
        pslog.scan_complete(250, 12.345)
        line = console.print.call_args[0][0]
        assert "250" in line
        assert "12.3ms" in line

    def test_console_writes_to_stderr(self) -> None:
        assert pslog._console.stderr is True


class TestConfigure:
    """JSON file logging for the CLI."""

    def test_writes_json_lines(self, tmp_path, restore_root_logger) -> None:
        config = MagicMock(spec=Config)
        config.state_dir = tmp_path / "state"
        config.log_path = tmp_path / "state" / "procscope.log"
        config.system = SystemConfig()

        pslog.configure(config)
        structlog.get_logger().info("escalation_advance", pid=7, tier="elevated")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = config.log_path.read_text().splitlines()
        event = json.loads(lines[-1])
        assert event["event"] == "escalation_advance"
        assert event["pid"] == 7
        assert event["level"] == "info"

    def test_debug_is_filtered(self, tmp_path, restore_root_logger) -> None:
        config = MagicMock(spec=Config)
        config.state_dir = tmp_path
        config.log_path = tmp_path / "procscope.log"
        config.system = SystemConfig()

        pslog.configure(config)
        structlog.get_logger().debug("helper_stderr", text="noise")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert config.log_path.read_text() == ""


class TestConfigureHelper:
    """Helpers log to stderr so stdout stays clean for encoded data."""

    def test_warnings_go_to_stderr(self, capsys) -> None:
        pslog.configure_helper("procscope-kill")
        structlog.get_logger().warning("signal_failed", pid=3)

        captured = capsys.readouterr()
        assert captured.out == ""
        event = json.loads(captured.err.strip())
        assert event["event"] == "signal_failed"
        assert event["source"] == "procscope-kill"
        assert event["level"] == "warning"

    def test_info_is_dropped(self, capsys) -> None:
        pslog.configure_helper()
        structlog.get_logger().info("scan_complete", count=10)

        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""
