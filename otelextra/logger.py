"""A logger that also records log entries as events on the active span."""

from __future__ import annotations

import copy
import enum
import logging
import os
import sys
import traceback
from dataclasses import dataclass
from types import FrameType
from typing import Any, Iterable, Mapping

from otelextra.attributes import KeyValue
from otelextra.logfields import Field, FieldType, append_field, string
from otelextra.tracing import Context, Span, StatusCode, span_from_context

__all__ = [
    "LOG_SEVERITY", "LOG_MESSAGE", "LOG_TEMPLATE", "CODE_FUNCTION", "CODE_FILEPATH",
    "CODE_LINENO", "EXCEPTION_STACKTRACE", "Level", "Logger", "LoggerWithCtx",
    "level_string", "version",
]

LOG_SEVERITY = "log.severity"
LOG_MESSAGE = "log.message"
LOG_TEMPLATE = "log.template"
CODE_FUNCTION = "code.function"
CODE_FILEPATH = "code.filepath"
CODE_LINENO = "code.lineno"
EXCEPTION_STACKTRACE = "exception.stacktrace"

_HERE = os.path.dirname(os.path.abspath(__file__))
_INTERNAL_FILES = frozenset(
    os.path.normcase(os.path.join(_HERE, name)) for name in ("logger.py", "sugar.py")
)
_OPTIONS = frozenset({
    "min_level", "error_status_level", "caller", "caller_depth",
    "stack_trace", "extra_fields", "with_trace_id",
})


class Level(enum.IntEnum):
    DEBUG = -1
    INFO = 0
    WARN = 1
    ERROR = 2
    DPANIC = 3
    PANIC = 4
    FATAL = 5

    @property
    def python_level(self) -> int:
        return _PYTHON_LEVELS[self]


_PYTHON_LEVELS = {
    Level.DEBUG: logging.DEBUG,
    Level.INFO: logging.INFO,
    Level.WARN: logging.WARNING,
    Level.ERROR: logging.ERROR,
    Level.DPANIC: logging.CRITICAL,
    Level.PANIC: logging.CRITICAL,
    Level.FATAL: logging.CRITICAL,
}


def level_string(level: Level | int) -> str:
    """Upper-case level name; the development-panic level reads as PANIC."""
    level = Level(level)
    return "PANIC" if level is Level.DPANIC else level.name


def version() -> str:
    """The current release version."""
    return "0.1.17"


def _is_internal(frame: FrameType) -> bool:
    filename = os.path.normcase(os.path.abspath(frame.f_code.co_filename))
    return filename in _INTERNAL_FILES


def _caller_frame(depth: int) -> FrameType | None:
    """The first frame outside the logging modules, then ``depth`` frames further out."""
    frame = sys._getframe(1)
    while frame is not None and _is_internal(frame):
        frame = frame.f_back
    for _ in range(depth):
        if frame is None:
            break
        frame = frame.f_back
    return frame


def _function_name(frame: FrameType) -> str:
    module = os.path.splitext(os.path.basename(frame.f_code.co_filename))[0]
    return f"{module}.{frame.f_code.co_name}"


def _field_value(field: Field) -> Any:
    t = field.type
    if t is FieldType.STRING:
        return field.string
    if t is FieldType.BOOL:
        return field.integer == 1
    if t in (FieldType.INT, FieldType.DURATION, FieldType.TIME):
        return field.integer
    if t is FieldType.ERROR:
        return str(field.interface)
    return field.interface


def _nop_logger() -> logging.Logger:
    base = logging.Logger("otelextra.nop")
    base.addHandler(logging.NullHandler())
    return base


class Logger:
    """Wraps a standard logger; entries at or above ``min_level`` also go to the span."""

    def __init__(self, base: logging.Logger | None = None, **options: Any):
        self.base = base if base is not None else _nop_logger()
        self.min_level = Level.WARN
        self.error_status_level = Level.ERROR
        self.caller = True
        self.caller_depth = 0
        self.stack_trace = False
        self.with_trace_id = False
        self.extra_fields: tuple[Field, ...] = ()
        self._configure(options)

    def _configure(self, options: Mapping[str, Any]) -> None:
        unknown = set(options) - _OPTIONS
        if unknown:
            raise TypeError(f"unknown logger options: {', '.join(sorted(unknown))}")
        for name, value in options.items():
            if name == "extra_fields":
                self.extra_fields = self.extra_fields + tuple(value)
            elif name in ("min_level", "error_status_level"):
                setattr(self, name, Level(value))
            else:
                setattr(self, name, value)

    def with_options(self, *args: Field) -> "Logger":
        """Return a copy that adds the given fields to every entry."""
        for arg in args:
            if not isinstance(arg, Field):
                raise TypeError(f"expected a Field, got {type(arg).__name__}")
        clone = copy.copy(self)
        clone.extra_fields = self.extra_fields + tuple(args)
        return clone

    def sugar(self):
        """A logger with a looser, key/value and template based interface."""
        from otelextra.sugar import SugaredLogger
        return SugaredLogger(self)

    def clone(self, **kwargs: Any) -> "Logger":
        """Return a copy with the given options applied."""
        clone = copy.copy(self)
        clone._configure(kwargs)
        return clone

    def ctx(self, ctx: Context | None) -> "LoggerWithCtx":
        return LoggerWithCtx(ctx, self)

    def debug_context(self, ctx: Context | None, msg: str, *args: Field) -> None:
        self._log_at(ctx, Level.DEBUG, msg, args)

    def info_context(self, ctx: Context | None, msg: str, *args: Field) -> None:
        self._log_at(ctx, Level.INFO, msg, args)

    def warn_context(self, ctx: Context | None, msg: str, *args: Field) -> None:
        self._log_at(ctx, Level.WARN, msg, args)

    def error_context(self, ctx: Context | None, msg: str, *args: Field) -> None:
        self._log_at(ctx, Level.ERROR, msg, args)

    def dpanic_context(self, ctx: Context | None, msg: str, *args: Field) -> None:
        self._log_at(ctx, Level.DPANIC, msg, args)

    def panic_context(self, ctx: Context | None, msg: str, *args: Field) -> None:
        """Log, then raise RuntimeError."""
        self._log_at(ctx, Level.PANIC, msg, args)

    def fatal_context(self, ctx: Context | None, msg: str, *args: Field) -> None:
        """Log, then raise SystemExit(1)."""
        self._log_at(ctx, Level.FATAL, msg, args)

    def _log_at(self, ctx: Context | None, level: Level, msg: str,
                fields: Iterable[Field]) -> None:
        fields = self._log_fields(ctx, level, msg, list(fields))
        values = {f.key: _field_value(f) for f in fields
                  if f.type not in (FieldType.NAMESPACE, FieldType.SKIP)}
        self._write(level, msg, values)

    def _log_fields(self, ctx: Context | None, level: Level, msg: str,
                    fields: list[Field]) -> list[Field]:
        fields = fields + list(self.extra_fields)
        if level < self.min_level:
            return fields
        span = span_from_context(ctx)
        if not span.is_recording():
            return fields
        attrs: list[KeyValue] = []
        for f in fields:
            if f.type is not FieldType.NAMESPACE:
                attrs = append_field(attrs, f)
        self._log(span, level, msg, attrs)
        if self.with_trace_id:
            fields.append(string("trace_id", span.trace_id))
        return fields

    def _log(self, span: Span, level: Level, msg: str, attrs: list[KeyValue]) -> None:
        """Add a ``log`` event with ``attrs`` to the span."""
        attrs = attrs + [KeyValue(LOG_SEVERITY, level_string(level)),
                         KeyValue(LOG_MESSAGE, msg)]
        frame = _caller_frame(self.caller_depth)
        if self.caller and frame is not None:
            attrs.append(KeyValue(CODE_FUNCTION, _function_name(frame)))
            attrs.append(KeyValue(CODE_FILEPATH, frame.f_code.co_filename))
            attrs.append(KeyValue(CODE_LINENO, frame.f_lineno))
        if self.stack_trace:
            stack = "".join(traceback.format_stack(frame)) if frame is not None else ""
            attrs.append(KeyValue(EXCEPTION_STACKTRACE, stack))
        span.add_event("log", attrs)
        if level >= self.error_status_level:
            span.set_status(StatusCode.ERROR, msg)

    def _write(self, level: Level, msg: str, values: Mapping[str, Any]) -> None:
        """Send the entry to the standard logger, then panic or exit where the level says."""
        py_level = level.python_level
        if self.base.isEnabledFor(py_level):
            frame = _caller_frame(self.caller_depth)
            if frame is None:
                filename, lineno, func = "(unknown file)", 0, "(unknown function)"
            else:
                filename, lineno, func = (frame.f_code.co_filename, frame.f_lineno,
                                          frame.f_code.co_name)
            record = self.base.makeRecord(self.base.name, py_level, filename, lineno, msg,
                                          (), None, func, {"fields": dict(values)})
            self.base.handle(record)
        if level is Level.PANIC:
            raise RuntimeError(msg)
        if level is Level.FATAL:
            raise SystemExit(1)


@dataclass(frozen=True)
class LoggerWithCtx:
    """A Logger bound to a context."""

    context: Context | None
    logger: Logger

    def sugar(self):
        return self.logger.sugar().ctx(self.context)

    def with_options(self, *args: Field) -> "LoggerWithCtx":
        return LoggerWithCtx(self.context, self.logger.with_options(*args))

    def clone(self, **kwargs: Any) -> "LoggerWithCtx":
        return LoggerWithCtx(self.context, self.logger.clone(**kwargs))

    def debug(self, msg: str, *args: Field) -> None:
        self.logger._log_at(self.context, Level.DEBUG, msg, args)

    def info(self, msg: str, *args: Field) -> None:
        self.logger._log_at(self.context, Level.INFO, msg, args)

    def warn(self, msg: str, *args: Field) -> None:
        self.logger._log_at(self.context, Level.WARN, msg, args)

    def error(self, msg: str, *args: Field) -> None:
        self.logger._log_at(self.context, Level.ERROR, msg, args)

    def dpanic(self, msg: str, *args: Field) -> None:
        self.logger._log_at(self.context, Level.DPANIC, msg, args)

    def panic(self, msg: str, *args: Field) -> None:
        """Log, then raise RuntimeError."""
        self.logger._log_at(self.context, Level.PANIC, msg, args)

    def fatal(self, msg: str, *args: Field) -> None:
        """Log, then raise SystemExit(1)."""
        self.logger._log_at(self.context, Level.FATAL, msg, args)