"""Loosely typed logging: key/value pairs and printf-style templates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from otelextra.attributes import KeyValue, attribute
from otelextra.logfields import Field, FieldType, any_value
from otelextra.logger import LOG_TEMPLATE, Level, Logger, LoggerWithCtx, _field_value
from otelextra.tracing import Context, span_from_context

__all__ = ["SugaredLogger", "SugaredLoggerWithCtx"]


def _sweeten(args: Iterable[Any]) -> list[Field]:
    """Turn a mix of fields and key/value pairs into fields.

    Fields pass through; a string key takes the value after it. Pairs with a
    non-string key and an orphaned trailing key are dropped.
    """
    fields: list[Field] = []
    items = iter(args)
    for item in items:
        if isinstance(item, Field):
            fields.append(item)
            continue
        try:
            value = next(items)
        except StopIteration:
            break
        if isinstance(item, str):
            fields.append(any_value(item, value))
    return fields


def _sprintf(template: str, args: tuple) -> str:
    if not args:
        return template
    if not template:
        return " ".join(str(a) for a in args)
    try:
        return template % args
    except (TypeError, ValueError):
        return " ".join([template, *(str(a) for a in args)])


class SugaredLogger:
    """A slower but less verbose interface over a Logger."""

    def __init__(self, logger: Logger, fields: Iterable[Field] = ()):
        self._logger = logger
        self._fields = tuple(fields)

    def desugar(self) -> Logger:
        """The underlying structured logger."""
        return self._logger

    def with_(self, *args: Any) -> "SugaredLogger":
        """Return a logger that adds the given fields or key/value pairs to every entry."""
        return SugaredLogger(self._logger, self._fields + tuple(_sweeten(args)))

    def ctx(self, ctx: Context | None) -> "SugaredLoggerWithCtx":
        return SugaredLoggerWithCtx(ctx, self)

    def debugf_context(self, ctx: Context | None, template: str, *args: Any) -> None:
        self._logf(ctx, Level.DEBUG, template, args)

    def infof_context(self, ctx: Context | None, template: str, *args: Any) -> None:
        self._logf(ctx, Level.INFO, template, args)

    def warnf_context(self, ctx: Context | None, template: str, *args: Any) -> None:
        self._logf(ctx, Level.WARN, template, args)

    def errorf_context(self, ctx: Context | None, template: str, *args: Any) -> None:
        self._logf(ctx, Level.ERROR, template, args)

    def dpanicf_context(self, ctx: Context | None, template: str, *args: Any) -> None:
        self._logf(ctx, Level.DPANIC, template, args)

    def panicf_context(self, ctx: Context | None, template: str, *args: Any) -> None:
        """Log, then raise RuntimeError."""
        self._logf(ctx, Level.PANIC, template, args)

    def fatalf_context(self, ctx: Context | None, template: str, *args: Any) -> None:
        """Log, then raise SystemExit(1)."""
        self._logf(ctx, Level.FATAL, template, args)

    def debugw_context(self, ctx: Context | None, msg: str, *args: Any) -> None:
        self._logw(ctx, Level.DEBUG, msg, args)

    def infow_context(self, ctx: Context | None, msg: str, *args: Any) -> None:
        self._logw(ctx, Level.INFO, msg, args)

    def warnw_context(self, ctx: Context | None, msg: str, *args: Any) -> None:
        self._logw(ctx, Level.WARN, msg, args)

    def errorw_context(self, ctx: Context | None, msg: str, *args: Any) -> None:
        self._logw(ctx, Level.ERROR, msg, args)

    def dpanicw_context(self, ctx: Context | None, msg: str, *args: Any) -> None:
        self._logw(ctx, Level.DPANIC, msg, args)

    def panicw_context(self, ctx: Context | None, msg: str, *args: Any) -> None:
        """Log, then raise RuntimeError."""
        self._logw(ctx, Level.PANIC, msg, args)

    def fatalw_context(self, ctx: Context | None, msg: str, *args: Any) -> None:
        """Log, then raise SystemExit(1)."""
        self._logw(ctx, Level.FATAL, msg, args)

    def _logf(self, ctx: Context | None, level: Level, template: str, args: tuple) -> None:
        msg = _sprintf(template, args)
        self._log_args(ctx, level, template, msg)
        self._emit(level, msg, ())

    def _log_args(self, ctx: Context | None, level: Level, template: str, msg: str) -> None:
        logger = self._logger
        if level < logger.min_level:
            return
        span = span_from_context(ctx)
        if not span.is_recording():
            return
        logger._log(span, level, msg, [KeyValue(LOG_TEMPLATE, template)])

    def _logw(self, ctx: Context | None, level: Level, msg: str, kvs: tuple) -> None:
        pairs = self._log_kvs(ctx, level, msg, list(kvs))
        self._emit(level, msg, _sweeten(pairs))

    def _log_kvs(self, ctx: Context | None, level: Level, msg: str,
                 kvs: list[Any]) -> list[Any]:
        logger = self._logger
        if level < logger.min_level:
            return kvs
        span = span_from_context(ctx)
        if not span.is_recording():
            return kvs
        attrs = [attribute(key, value) for key, value in zip(kvs[0::2], kvs[1::2])
                 if isinstance(key, str)]
        logger._log(span, level, msg, attrs)
        if logger.with_trace_id:
            kvs = kvs + ["trace_id", span.trace_id]
        return kvs

    def _emit(self, level: Level, msg: str, fields: Iterable[Field]) -> None:
        everything = [*self._logger.extra_fields, *self._fields, *fields]
        values = {f.key: _field_value(f) for f in everything
                  if f.type not in (FieldType.NAMESPACE, FieldType.SKIP)}
        self._logger._write(level, msg, values)


@dataclass(frozen=True)
class SugaredLoggerWithCtx:
    """A SugaredLogger bound to a context."""

    context: Context | None
    sugared: SugaredLogger

    def desugar(self) -> LoggerWithCtx:
        return LoggerWithCtx(self.context, self.sugared.desugar())

    def debugf(self, template: str, *args: Any) -> None:
        self.sugared._logf(self.context, Level.DEBUG, template, args)

    def infof(self, template: str, *args: Any) -> None:
        self.sugared._logf(self.context, Level.INFO, template, args)

    def warnf(self, template: str, *args: Any) -> None:
        self.sugared._logf(self.context, Level.WARN, template, args)

    def errorf(self, template: str, *args: Any) -> None:
        self.sugared._logf(self.context, Level.ERROR, template, args)

    def dpanicf(self, template: str, *args: Any) -> None:
        self.sugared._logf(self.context, Level.DPANIC, template, args)

    def panicf(self, template: str, *args: Any) -> None:
        """Log, then raise RuntimeError."""
        self.sugared._logf(self.context, Level.PANIC, template, args)

    def fatalf(self, template: str, *args: Any) -> None:
        """Log, then raise SystemExit(1)."""
        self.sugared._logf(self.context, Level.FATAL, template, args)

    def debugw(self, msg: str, *args: Any) -> None:
        self.sugared._logw(self.context, Level.DEBUG, msg, args)

    def infow(self, msg: str, *args: Any) -> None:
        self.sugared._logw(self.context, Level.INFO, msg, args)

    def warnw(self, msg: str, *args: Any) -> None:
        self.sugared._logw(self.context, Level.WARN, msg, args)

    def errorw(self, msg: str, *args: Any) -> None:
        self.sugared._logw(self.context, Level.ERROR, msg, args)

    def dpanicw(self, msg: str, *args: Any) -> None:
        self.sugared._logw(self.context, Level.DPANIC, msg, args)

    def panicw(self, msg: str, *args: Any) -> None:
        """Log, then raise RuntimeError."""
        self.sugared._logw(self.context, Level.PANIC, msg, args)

    def fatalw(self, msg: str, *args: Any) -> None:
        """Log, then raise SystemExit(1)."""
        self.sugared._logw(self.context, Level.FATAL, msg, args)