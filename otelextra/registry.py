"""Process-wide default logger and its sugared form."""

from __future__ import annotations

import threading
from typing import Callable

from otelextra.logger import Logger, LoggerWithCtx
from otelextra.sugar import SugaredLogger
from otelextra.tracing import Context

__all__ = ["global_logger", "global_sugar", "ctx", "replace_globals"]

_lock = threading.RLock()
_logger = Logger()
_sugar = _logger.sugar()


def global_logger() -> Logger:
    """The global Logger; replace it with replace_globals."""
    with _lock:
        return _logger


def global_sugar() -> SugaredLogger:
    """The global SugaredLogger; replace it with replace_globals."""
    with _lock:
        return _sugar


def ctx(ctx: Context | None) -> LoggerWithCtx:
    """The global Logger bound to ``ctx``."""
    return global_logger().ctx(ctx)


def replace_globals(logger: Logger) -> Callable[[], Callable]:
    """Install ``logger`` globally and return a function that restores the previous one."""
    global _logger, _sugar
    with _lock:
        previous = _logger
        _logger = logger
        _sugar = logger.sugar()

    def restore() -> Callable:
        return replace_globals(previous)

    return restore