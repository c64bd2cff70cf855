"""Tests for console helpers and structlog file configuration."""

import json
import logging
from contextlib import ExitStack
from pathlib import Path
from unittest.mock import patch

import structlog

from proc_sentinel import logging as console
from proc_sentinel.config import Config


class TestConsoleHelpers:
    def test_log_includes_level_and_message(self):
        with patch.object(console._console, "print") as mock_print:
            console.info("hello world", console.Icon.OK)

        rendered = mock_print.call_args[0][0]
        assert "[info]" in rendered
        assert "hello world" in rendered
        assert console.Icon.OK in rendered

    def test_alert_sent_is_a_warning(self):
        with patch.object(console._console, "print") as mock_print:
            console.alert_sent("⚠ High CPU: PID 1 (x) 90.0%")

        rendered = mock_print.call_args[0][0]
        assert "[warn]" in rendered
        assert "High CPU" in rendered

    def test_heartbeat(self):
        with patch.object(console._console, "print") as mock_print:
            console.heartbeat(sample_count=60, process_count=321, alert_count=2, rss_mb=41.26)

        rendered = mock_print.call_args[0][0]
        assert "321" in rendered
        assert "60 samples" in rendered
        assert "41.3MB" in rendered

    def test_already_running_with_pid(self):
        with patch.object(console._console, "print") as mock_print:
            console.already_running(4321)
        assert "4321" in mock_print.call_args[0][0]


class TestConfigure:
    def test_writes_json_lines(self, tmp_path: Path, restore_logging):
        with ExitStack() as stack:
            stack.enter_context(
                patch.object(Config, "state_dir", new_callable=lambda: property(lambda s: tmp_path))
            )
            config = Config()
            console.configure(config, source="test")

            structlog.get_logger().info("unit_event", answer=42)
            for handler in logging.getLogger().handlers:
                handler.flush()

            lines = (tmp_path / "daemon.log").read_text().splitlines()

        event = json.loads(lines[-1])
        assert event["event"] == "unit_event"
        assert event["answer"] == 42
        assert event["source"] == "test"
        assert event["level"] == "info"
        assert "ts" in event

    def test_debug_events_filtered(self, tmp_path: Path, restore_logging):
        with patch.object(Config, "state_dir", new_callable=lambda: property(lambda s: tmp_path)):
            console.configure(Config())
            structlog.get_logger().debug("too_chatty")
            for handler in logging.getLogger().handlers:
                handler.flush()

        log_file = tmp_path / "daemon.log"
        assert "too_chatty" not in log_file.read_text()


def test_add_source_processor():
    processor = console._add_source("tui")
    assert processor(None, "info", {"event": "x"}) == {"event": "x", "source": "tui"}
