"""
observability/logger.py — Structured Logger

Sets up structlog with:
  - JSON output to a rotating log file
  - Optional console output, human-readable on a TTY or JSON when piped
  - Consistent fields on every log line: timestamp, level, event, logger,
    plus session_id / interaction_id when bound
  - httpx / httpcore request chatter muted so it never reaches stdout

Usage:
    from orama_answer.observability.logger import get_logger, setup_logging
    setup_logging(level="INFO", log_dir="./data/logs", console_output=False)
    log = get_logger(__name__)
    log.info("answer_session.turn_start", query="What is Orama?")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

# Third-party loggers that log every request at INFO.
_MUTED_LOGGERS = [
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
]


def _mute_noisy_loggers() -> None:
    """
    Keep chatty third-party loggers off the root handlers.

    propagate=False so their records never reach stdout; a NullHandler
    avoids the 'No handlers could be found' warning.
    """
    null = logging.NullHandler()
    for name in _MUTED_LOGGERS:
        lgr = logging.getLogger(name)
        lgr.setLevel(logging.WARNING)
        lgr.propagate = False
        if not any(isinstance(h, logging.NullHandler) for h in lgr.handlers):
            lgr.addHandler(null)


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: Optional[bool] = None,  # None = auto-detect from tty
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,   # 100 MB
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:          DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for rotating log files.
        json_format:    True for JSON on the console, False for the coloured
                        dev renderer, None to pick based on whether stdout
                        is a TTY.
        console_output: Whether to emit logs to stdout at all.
        max_bytes:      Max size of each log file before rotation.
        backup_count:   Number of rotated log files to keep.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handlers: list[logging.Handler] = []

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_dir / "orama_answer.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        handlers.append(console_handler)

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )

    # Must run after basicConfig so the root logger is already set up.
    _mute_noisy_loggers()

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


def get_logger(name: str = "orama_answer", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Example:
        log = get_logger(__name__, component="transport")
        log.info("transport.request", path="/v1/collections/abc/search")
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_session(session_id: str, interaction_id: Optional[str] = None) -> None:
    """
    Bind session context to all subsequent log calls in this async context.

    Each answer turn runs in its own task, which owns a copy of the
    contextvars, so binding here never leaks into the caller.
    """
    values: dict[str, Any] = {"session_id": session_id}
    if interaction_id:
        values["interaction_id"] = interaction_id
    structlog.contextvars.bind_contextvars(**values)


def clear_session() -> None:
    """Clear session context vars at the end of a turn."""
    structlog.contextvars.clear_contextvars()
