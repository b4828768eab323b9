"""
observability/logger.py — Signing Agent Structured Logger

Sets up structlog with:
  - JSON output to a rotating log file
  - Optional human-readable console output (dev mode) or JSON (prod/pipe mode)
  - Consistent fields on every log line: timestamp, level, event, agent_id
  - Transport libraries (httpx, httpcore, websockets) held at WARNING so a
    request-per-message feed does not flood the log at INFO

Usage:
    from signing_agent.observability.logger import get_logger, setup_logging
    setup_logging(level="INFO", log_dir="./data/logs")
    log = get_logger(__name__)
    log.info("feed.connected", url="ws://localhost:8007/api/v1/client/feed")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

# ─────────────────────────────────────────────────────────────────────────────
# Chatty transport loggers
# ─────────────────────────────────────────────────────────────────────────────

_QUIET_LOGGERS = [
    "httpx",
    "httpcore",
    "websockets",
    "websockets.client",
]


def _quiet_transport_loggers() -> None:
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path | None = "./data/logs",
    json_format: Optional[bool] = None,  # None = auto-detect from tty
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,   # 10 MB
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:          Log level string — DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for rotating log files. None disables the file.
        json_format:    If True, console emits JSON (production/pipe mode).
                        If False, console uses coloured human-readable format.
                        If None (default), pretty when stdout is a TTY,
                        JSON otherwise (systemd, Docker).
        console_output: Whether to emit logs to stdout at all.
        max_bytes:      Max size of each log file before rotation.
        backup_count:   Number of rotated log files to keep.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        json_format = not sys.stdout.isatty()

    # ── Shared structlog processors ───────────────────────────────────────────
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handlers: list[logging.Handler] = []

    # ── File handler (always JSON) ────────────────────────────────────────────
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "signing_agent.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        handlers.append(file_handler)

    # ── Console handler (JSON or pretty) ─────────────────────────────────────
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        handlers.append(console_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    # ── Configure stdlib logging (structlog routes through it) ────────────────
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )
    _quiet_transport_loggers()

    # ── Configure structlog ───────────────────────────────────────────────────
    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    # File always uses JSON regardless of console format
    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )

    for handler in handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            handler.setFormatter(file_formatter)
        else:
            handler.setFormatter(formatter)


def get_logger(name: str = "signing_agent", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Example:
        log = get_logger(__name__, component="pipeline")
        log.info("pipeline.decision", message_id="tx1", approved=True)
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_agent(agent_id: str, agent_name: str) -> None:
    """
    Bind the agent identity to every subsequent log line in this async
    context (and tasks created from it).
    """
    structlog.contextvars.bind_contextvars(agent_id=agent_id, agent_name=agent_name)


def clear_agent() -> None:
    """Clear agent context vars, e.g. when a session closes."""
    structlog.contextvars.clear_contextvars()
