"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (daemon_started, alert_sent, heartbeat, etc.)
5. Structlog configuration (configure)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from proc_sentinel.config import Config

# Rich console for colorful human-readable output
_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output.

    Use via autocomplete: Icon.<TAB> to see all available icons.
    """

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    ALERT = "[bold yellow]⚠[/]"
    RELOAD = "[cyan]↻[/]"
    HEARTBEAT = "[magenta]♡[/]"
    SIGNAL = "⚡"


# ─────────────────────────────────────────────────────────────────────────────
# Level Styles
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def daemon_started() -> None:
    """Log daemon startup complete."""
    info("Daemon started", Icon.OK)


def daemon_stopping() -> None:
    """Log daemon shutdown initiated."""
    info("Daemon stopping...", Icon.WAIT)


def daemon_stopped() -> None:
    """Log daemon shutdown complete."""
    info("Daemon stopped", Icon.OK)


def signal_received(name: str) -> None:
    """Log signal received."""
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def alert_sent(message: str) -> None:
    """Log an alert emitted by the evaluator."""
    warn(message, Icon.ALERT)


def config_summary(cpu_threshold: float, mem_threshold: float, webhook: str) -> None:
    """Log alerting config."""
    target = f"[cyan]{webhook}[/]" if webhook else "[dim]none[/]"
    info(
        f"Thresholds: cpu≥[cyan]{cpu_threshold:g}%[/], mem≥[cyan]{mem_threshold:g}%[/], "
        f"webhook {target}"
    )


def config_reloaded(cpu_threshold: float, mem_threshold: float) -> None:
    """Log config hot reload."""
    info(
        f"Config reloaded [dim](cpu≥{cpu_threshold:g}%, mem≥{mem_threshold:g}%)[/]",
        Icon.RELOAD,
    )


def heartbeat(sample_count: int, process_count: int, alert_count: int, rss_mb: float) -> None:
    """Log periodic heartbeat stats."""
    info(
        f"[cyan]{process_count}[/] processes, "
        f"[dim]{sample_count} samples, {alert_count} alerts, "
        f"{round(rss_mb, 1)}MB RSS[/]",
        Icon.HEARTBEAT,
    )


def sample_failed(error_msg: str) -> None:
    """Log sample collection failed."""
    error(f"Sample failed: {error_msg}", Icon.FAIL)


def already_running(pid: int | None = None) -> None:
    """Log daemon already running error."""
    if pid:
        error(f"Another daemon already running [dim](PID {pid})[/]", Icon.FAIL)
    else:
        error("Another daemon already running", Icon.FAIL)


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, source: str = "daemon") -> None:
    """Configure structlog to write JSON Lines to a rotating file.

    Human-readable console output goes through the Rich helpers above, so
    the file stays machine-parseable.

    Args:
        config: Application config with paths and rotation settings
        source: Value of the "source" field on every event
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source(source),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
