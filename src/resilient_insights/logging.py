"""structlog configuration and operation-scoped logging helpers.

Provides run ID generation, an operation logging context manager, and
structured log configuration for console and JSON output with optional
file logging.
"""

from __future__ import annotations

import logging
import sys
import time
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

# ---------------------------------------------------------------------------
# Run ID
# ---------------------------------------------------------------------------


def generate_run_id() -> str:
    """Generate a unique identifier for a detector or pipeline run.

    Returns:
        A UUID4 string.
    """
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# structlog configuration
# ---------------------------------------------------------------------------


_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

_SHARED_PROCESSORS: tuple[structlog.types.Processor, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
)


def _resolve_level(level: str) -> int:
    name = level.upper()
    if name not in _VALID_LEVELS:
        msg = f"Invalid log level: {level!r}. Must be one of {sorted(_VALID_LEVELS)}"
        raise ValueError(msg)
    return getattr(logging, name)


def _install_handlers(numeric_level: int, log_file: str | Path | None) -> list[logging.Handler]:
    """Replace the root logger's handlers with stderr and the optional file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(str(log_file), encoding="utf-8"))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(numeric_level)
        root_logger.addHandler(handler)
    return handlers


def configure_logging(
    level: str = "INFO",
    fmt: str = "console",
    log_file: str | Path | None = None,
    run_id: str | None = None,
    service_name: str | None = None,
) -> None:
    """Configure structlog for the application.

    Every event goes through the stdlib root logger, rendered as console
    text or one JSON object per line. Timestamps are UTC, matching the
    detection and breaker records they are read alongside.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: ``"console"`` for human-readable or ``"json"`` for
            machine-parseable output.
        log_file: Optional file receiving the same events as stderr.
        run_id: Optional run ID to bind to all log entries.
        service_name: Optional name of the guarded AI service, bound to
            all log entries so breaker and pipeline events can be filtered.

    Raises:
        ValueError: If ``level`` is not a recognized log level.
    """
    numeric_level = _resolve_level(level)
    handlers = _install_handlers(numeric_level, log_file)

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    for handler in handlers:
        handler.setFormatter(formatter)

    bound = {
        key: value
        for key, value in (("run_id", run_id), ("service_name", service_name))
        if value
    }
    if bound:
        structlog.contextvars.bind_contextvars(**bound)


# ---------------------------------------------------------------------------
# Operation logging context manager
# ---------------------------------------------------------------------------


@contextmanager
def operation_logging_context(
    operation: str,
    **extra: Any,
) -> Iterator[structlog.stdlib.BoundLogger]:
    """Bind operation-level metadata to structlog for the enclosed block.

    Logs operation start and end (with elapsed milliseconds) and binds the
    operation name plus any extra fields to all log entries emitted within
    the context.

    Args:
        operation: Name of the unit of work (e.g. ``"detect_failures"``).
        **extra: Additional key-value pairs to bind.

    Yields:
        A bound structlog logger with operation context.

    Example::

        with operation_logging_context("analyze", entry_id=entry_id) as log:
            log.info("calling_ai_service")
    """
    structlog.contextvars.bind_contextvars(operation=operation, **extra)

    log: structlog.stdlib.BoundLogger = structlog.get_logger(operation)
    log.debug("operation_start", operation=operation)
    started = time.perf_counter()

    try:
        yield log
    except Exception:
        log.exception("operation_error", operation=operation)
        raise
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        log.debug("operation_end", operation=operation, elapsed_ms=elapsed_ms)
        structlog.contextvars.unbind_contextvars("operation", *extra.keys())
