"""
observability/logger.py — taskgate Structured Logger

Sets up structlog with:
  - Optional JSON output to a rotating log file
  - Human-readable console output on a TTY, JSON when piped
  - Consistent fields on every log line: timestamp, level, logger, event
  - Per-execution call context (call_id, task) merged from contextvars

Usage:
    from taskgate.observability.logger import get_logger, setup_logging
    setup_logging(level="INFO", log_dir="./data/logs")
    log = get_logger(__name__)
    log.info("runner.enqueue", task="summarize", queue="main", priority=0)
"""

from __future__ import annotations

import contextlib
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog


_LOG_FILE_NAME = "taskgate.log"


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path | None = None,
    json_format: Optional[bool] = None,  # None = auto-detect from tty
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,   # 100 MB
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:          Log level string — DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for rotating log files. None disables the file.
        json_format:    If True, console emits JSON. If False, coloured
                        human-readable output. If None, pretty when stdout
                        is a TTY, JSON otherwise.
        console_output: Whether to emit logs to stdout at all.
        max_bytes:      Max size of each log file before rotation.
        backup_count:   Number of rotated log files to keep.
    """
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

    # ── File handler (always JSON) ────────────────────────────────────────────
    file_handler: Optional[logging.Handler] = None
    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path / _LOG_FILE_NAME,
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

    # structlog routes through stdlib logging
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )

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
    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )

    for handler in handlers:
        if handler is file_handler:
            handler.setFormatter(file_formatter)
        else:
            handler.setFormatter(formatter)


def setup_logging_from_settings(settings) -> None:
    """Apply a Settings.logging section (see taskgate.config.settings)."""
    cfg = settings.logging
    setup_logging(
        level=cfg.level,
        log_dir=cfg.log_dir,
        json_format=cfg.json_format,
        console_output=cfg.console_output,
        max_bytes=cfg.max_file_size_mb * 1024 * 1024,
        backup_count=cfg.backup_count,
    )


def get_logger(name: str = "taskgate", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Example:
        log = get_logger(__name__, runner="llm")
        log.info("runner.admit", task="summarize", queue="main")
        # → {"event": "runner.admit", "task": "summarize", "queue": "main",
        #    "runner": "llm", "logger": "taskgate.runner.runner", ...}
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


@contextlib.contextmanager
def bind_call(call_id: str, task_name: str, **extra: Any) -> Iterator[None]:
    """
    Bind execution context to every log line emitted inside the block.

    Each task execution runs in its own asyncio.Task, which owns a copy of
    the context, so bindings never leak between concurrent executions.
    """
    with structlog.contextvars.bound_contextvars(call_id=call_id, task=task_name, **extra):
        yield
