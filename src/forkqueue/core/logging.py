"""
forkqueue logging - structured logging for the controller and its workers.

This module configures structlog once for the whole process tree. The
controller logs scheduling decisions; every forked worker inherits the
configuration and marks its own lines with a text prefix such as
``[CHILD nightly 4711/4700]`` so interleaved output stays attributable.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="forkqueue")
            │
            ▼
        structlog processor chain:
          1. merge_contextvars      (run_id, job_id bound by the dispatcher)
          2. add_log_level
          3. TimeStamper            (optional)
          4. add_service_metadata
          5. apply_prefix           (worker prefix, if set)
          6. JSONRenderer / ConsoleRenderer

        fork()
            │
            ▼ (inside the worker)
        reset_after_fork()  ─ drop parent context + buffered records
        set_prefix("[CHILD <job> <pid>/<ppid>]")

Examples:
    >>> from forkqueue.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", service="forkqueue")
    >>> logger = get_logger(__name__)
    >>> logger.info("dispatcher.started", jobs=3, concurrency=2)

Guardrails:
    - The prefix is process wide. Only workers set one, right after fork;
      the controller logs without a prefix.
    - ``reset_after_fork()`` must run in the child before it logs anything.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "forkqueue"
_PREFIX = ""


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def apply_prefix(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Prepend the current process prefix to the event text."""
    if _PREFIX:
        event_dict["event"] = f"{_PREFIX} {event_dict.get('event', '')}"
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "forkqueue",
    add_timestamp: bool = True,
    cache_loggers: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
        cache_loggers: Cache bound loggers on first use. Turn off when
            ``sys.stdout`` is swapped at runtime (test capture).
        stream: Where log lines go; standard output when None.
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
        apply_prefix,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=cache_loggers,
    )

    # Libraries that log through stdlib end up on the same stream
    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger, bound to ``logger_name=name`` when a name is given.

    The returned proxy resolves the configuration on first use, so module-level
    loggers follow a later ``configure_logging()`` call.
    """
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs.

    Example:
        bind_context(run_id="abc123")
        logger.info("dispatcher.started")  # Includes run_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


def set_prefix(prefix: str) -> None:
    """Set the text prepended to every event logged by this process."""
    global _PREFIX
    _PREFIX = prefix


def clear_prefix() -> None:
    """Remove the process prefix."""
    set_prefix("")


def get_prefix() -> str:
    return _PREFIX


def _iter_stdlib_handlers():
    loggers = [logging.getLogger()]
    loggers.extend(
        lg for lg in logging.Logger.manager.loggerDict.values() if isinstance(lg, logging.Logger)
    )
    for lg in loggers:
        yield from lg.handlers


def reset_after_fork() -> None:
    """Bring logging into a clean state inside a freshly forked worker.

    The child inherits a copy of everything the controller had bound or
    buffered. Context belongs to the controller's run, and records sitting in
    stdlib buffering handlers would be flushed a second time by the child, so
    both are discarded here.
    """
    clear_context()
    clear_prefix()
    for handler in _iter_stdlib_handlers():
        if isinstance(handler, logging.handlers.BufferingHandler):
            handler.acquire()
            try:
                handler.buffer.clear()
            finally:
                handler.release()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(run_id="abc123"):
            logger.info("dispatcher.started")
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "set_prefix",
    "clear_prefix",
    "get_prefix",
    "apply_prefix",
    "reset_after_fork",
    "LogContext",
]
