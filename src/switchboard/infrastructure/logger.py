"""Structured logging setup using structlog.

``LOG_LEVEL`` picks the threshold and ``LOG_FORMAT=json`` switches from the
console renderer to one JSON object per line for log shippers. Values bound by
a user turn (``session_id``, ``origin_channel``) are merged into every line
logged while the turn is active.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Any

import structlog

_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.TimeStamper(fmt="iso"),
]


def _renderer_chain(fmt: str) -> list[Any]:
    if fmt == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.set_exc_info, structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_logging(level: str | None = None, fmt: str | None = None) -> structlog.stdlib.BoundLogger:
    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    fmt = (fmt or os.environ.get("LOG_FORMAT", "console")).lower()
    numeric_level = getattr(logging, level, logging.INFO)

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, *_renderer_chain(fmt)],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    logging.basicConfig(level=numeric_level, stream=sys.stderr, format="%(message)s")

    return structlog.get_logger()


logger: structlog.stdlib.BoundLogger = configure_logging()


def get_logger(source: str) -> structlog.stdlib.BoundLogger:
    """Logger bound to a component name (``TaskNotifier``, ``Chronos``...)."""
    return logger.bind(source=source)


def install_exception_hooks() -> None:
    """Route uncaught exceptions through structlog."""

    def handle_exception(exc_type, exc_value, exc_traceback):  # type: ignore[no-untyped-def]
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = handle_exception


def install_loop_exception_handler(loop: asyncio.AbstractEventLoop) -> None:
    """Log exceptions the event loop could not hand to anyone (unawaited futures, callbacks)."""

    def handle(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        logger.error("Unhandled event loop error", message=context.get("message"), exc_info=exc)

    loop.set_exception_handler(handle)


install_exception_hooks()
