"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (action_succeeded, escalated, bridge_failed, etc.)
5. Structlog configuration (configure, configure_helper)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors). Helper programs must never
write log lines to stdout, since the companion's stdout carries encoded data.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from procscope.config import Config

# Rich console for colorful human-readable output
_console = Console(highlight=False, stderr=True)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output.

    Use via autocomplete: Icon.<TAB> to see all available icons.
    """

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    SCAN = "🔍"
    SAVE = "💾"
    ESCALATE = "[yellow]▲[/]"
    SANDBOX = "[cyan]⬡[/]"


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


def scan_complete(count: int, elapsed_ms: float) -> None:
    """Log a finished scan pass."""
    info(f"Scanned [cyan]{count}[/] processes [dim]({round(elapsed_ms, 1)}ms)[/]", Icon.SCAN)


def action_succeeded(action: str, pid: int) -> None:
    """Log a process action that went through."""
    info(f"[bold]{action}[/] applied to [dim]PID {pid}[/]", Icon.OK)


def action_failed(action: str, pid: int, reason: str) -> None:
    """Log a process action that failed for good."""
    error(f"[bold]{action}[/] failed for [dim]PID {pid}[/]: {reason}", Icon.FAIL)


def escalated(tier: str) -> None:
    """Log that an action only went through after escalating."""
    warn(f"Permission denied at first, succeeded via [cyan]{tier}[/]", Icon.ESCALATE)


def bridge_failed(error_msg: str) -> None:
    """Log a failed companion scan."""
    error(f"Host scan failed: {error_msg}", Icon.SANDBOX)


def sandbox_detected(app_path: str | None) -> None:
    """Log that procscope runs inside a sandbox."""
    where = f" [dim]({app_path})[/]" if app_path else ""
    info(f"Running sandboxed{where}", Icon.SANDBOX)


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{path}[/]", Icon.SAVE)


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


def configure(config: Config) -> None:
    """Configure structlog to write JSON lines to a rotating file.

    Human-readable output goes through the Rich helpers above; structlog
    only feeds the file.

    Args:
        config: Application config with paths
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
                _add_source("cli"),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False),
            structlog.processors.add_log_level,
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


def configure_helper(source: str = "helper") -> None:
    """Configure structlog for a helper program: warnings and up, stderr only."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            _add_source(source),
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.WARNING),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=False,
    )
