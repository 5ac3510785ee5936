"""Database access over any DB-API 2.0 module, traced and measured per operation."""

from __future__ import annotations

import threading
import time
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Sequence

from otelextra.attributes import KeyValue
from otelextra.tracing import (
    Context,
    MeterProvider,
    Span,
    SpanKind,
    StatusCode,
    TracerProvider,
    get_meter_provider,
    get_tracer_provider,
)

__all__ = [
    "INSTRUM_NAME", "DB_ROWS_AFFECTED", "DB_STATEMENT", "DB_SYSTEM", "DB_NAME",
    "SQLError", "NoRowsError", "TxDoneError", "ClosedError",
    "ExecResult", "Rows", "DBStats", "DBInstrum", "DB", "Statement", "Transaction",
    "open", "open_db", "report_db_stats_metrics", "version",
]

INSTRUM_NAME = "otelextra.otelsql"

DB_ROWS_AFFECTED = "db.rows_affected"
DB_STATEMENT = "db.statement"
DB_SYSTEM = "db.system"
DB_NAME = "db.name"

DEFAULT_MAX_IDLE_CONNS = 2


class SQLError(Exception):
    """Base class of the errors raised by this module itself."""


class NoRowsError(SQLError, LookupError):
    """A single-row query returned no rows."""


class TxDoneError(SQLError):
    """The transaction has already been committed or rolled back."""


class ClosedError(SQLError):
    """The database or statement has been closed."""


# Errors that signal a normal outcome rather than a failure.
_IGNORED_ERRORS = (NoRowsError, StopIteration)


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a statement that returns no rows."""

    rows_affected: int
    last_insert_id: Any = None


@dataclass(frozen=True)
class Rows:
    """Column names and the fetched rows of a query."""

    columns: tuple[str, ...]
    rows: list[tuple]

    def __iter__(self) -> Iterator[tuple]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class DBStats:
    max_open_connections: int = 0
    open_connections: int = 0
    in_use: int = 0
    idle: int = 0
    wait_count: int = 0
    wait_duration: int = 0
    max_idle_closed: int = 0
    max_idle_time_closed: int = 0
    max_lifetime_closed: int = 0


@dataclass
class _Config:
    tracer_provider: TracerProvider | None = None
    meter_provider: MeterProvider | None = None
    attributes: Sequence[KeyValue] = ()
    db_system: str | None = None
    db_name: str | None = None
    query_formatter: Callable[[str], str] | None = None
    attrs: list[KeyValue] = field(init=False)

    def __post_init__(self) -> None:
        if self.tracer_provider is None:
            self.tracer_provider = get_tracer_provider()
        if self.meter_provider is None:
            self.meter_provider = get_meter_provider()
        self.attrs = list(self.attributes)
        if self.db_system is not None:
            self.attrs.append(KeyValue(DB_SYSTEM, self.db_system))
        if self.db_name is not None:
            self.attrs.append(KeyValue(DB_NAME, self.db_name))

    def format_query(self, query: str) -> str:
        return self.query_formatter(query) if self.query_formatter else query


class DBInstrum:
    """Tracer, meter and settings shared by every operation of one database."""

    def __init__(self, **kwargs: Any):
        self.config = _Config(**kwargs)
        self.tracer = self.config.tracer_provider.tracer(INSTRUM_NAME)
        self.meter = self.config.meter_provider.meter(INSTRUM_NAME)
        self.query_histogram = self.meter.histogram(
            "sql.query_timing", "Timing of processed queries", "milliseconds")

    @property
    def meter_provider(self) -> MeterProvider:
        return self.config.meter_provider

    def with_span(self, ctx: Context | None, span_name: str, query: str,
                  fn: Callable[[Context, Span], Any]) -> Any:
        """Run ``fn`` inside a client span; errors are recorded and re-raised."""
        start = time.monotonic()
        attrs = list(self.config.attrs)
        if query:
            attrs.append(KeyValue(DB_STATEMENT, self.config.format_query(query)))
        span_ctx, span = self.tracer.start(ctx, span_name, SpanKind.CLIENT, attrs)
        try:
            return fn(span_ctx, span)
        except Exception as exc:
            if span.is_recording() and not isinstance(exc, _IGNORED_ERRORS):
                span.record_error(exc)
                span.set_status(StatusCode.ERROR, str(exc))
            raise
        finally:
            span.end()
            if query:
                elapsed_ms = int((time.monotonic() - start) * 1000)
                self.query_histogram.record(elapsed_ms, *self.config.attrs)


def _params(args: tuple) -> Any:
    if len(args) == 1 and isinstance(args[0], Mapping):
        return args[0]
    return tuple(args)


def _exec(instrum: DBInstrum, ctx: Context | None, span_name: str, query: str,
          cursor: Any, params: Any) -> ExecResult:
    def run(_ctx: Context, span: Span) -> ExecResult:
        cursor.execute(query, params)
        # Drivers report -1 when nothing was changed by a non-DML statement.
        result = ExecResult(max(cursor.rowcount, 0), getattr(cursor, "lastrowid", None))
        if span.is_recording():
            span.set_attributes(KeyValue(DB_ROWS_AFFECTED, result.rows_affected))
        return result

    return instrum.with_span(ctx, span_name, query, run)


def _query(instrum: DBInstrum, ctx: Context | None, span_name: str, query: str,
           cursor: Any, params: Any) -> Rows:
    def run(_ctx: Context, _span: Span) -> Rows:
        cursor.execute(query, params)
        columns = tuple(d[0] for d in cursor.description or ())
        return Rows(columns, [tuple(row) for row in cursor.fetchall()])

    return instrum.with_span(ctx, span_name, query, run)


def _first(rows: Rows) -> tuple:
    if not rows.rows:
        raise NoRowsError("no rows in result set")
    return rows.rows[0]


class DB:
    """A pool of connections whose operations are traced."""

    def __init__(self, connect: Callable[[], Any], instrum: DBInstrum):
        self._connect = connect
        self._instrum = instrum
        self._lock = threading.Lock()
        self._idle: list[Any] = []
        self._in_use = 0
        self._max_idle = DEFAULT_MAX_IDLE_CONNS
        self._max_idle_closed = 0
        self._closed = False

    @property
    def instrum(self) -> DBInstrum:
        return self._instrum

    def __enter__(self) -> "DB":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def set_max_idle_conns(self, n: int) -> None:
        """Limit the number of idle connections kept; surplus ones are closed."""
        surplus: list[Any] = []
        with self._lock:
            self._max_idle = max(n, 0)
            while len(self._idle) > self._max_idle:
                surplus.append(self._idle.pop(0))
                self._max_idle_closed += 1
        for conn in surplus:
            conn.close()

    def _acquire(self, ctx: Context | None) -> Any:
        with self._lock:
            if self._closed:
                raise ClosedError("database is closed")
            self._in_use += 1
            if self._idle:
                return self._idle.pop()
        try:
            return self._instrum.with_span(ctx, "db.Connect", "",
                                           lambda _ctx, _span: self._connect())
        except BaseException:
            with self._lock:
                self._in_use -= 1
            raise

    def _release(self, conn: Any) -> None:
        with self._lock:
            self._in_use -= 1
            if not self._closed:
                if len(self._idle) < self._max_idle:
                    self._idle.append(conn)
                    return
                self._max_idle_closed += 1
        conn.close()

    @contextmanager
    def _conn(self, ctx: Context | None) -> Iterator[Any]:
        conn = self._acquire(ctx)
        try:
            yield conn
        finally:
            self._release(conn)

    def ping(self, ctx: Context | None = None) -> None:
        """Check the database; uses the connection's ``ping`` or runs ``SELECT 1``."""
        def run(_ctx: Context, _span: Span) -> None:
            pinger = getattr(conn, "ping", None)
            if callable(pinger):
                pinger()
                return
            with closing(conn.cursor()) as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchall()

        with self._conn(ctx) as conn:
            self._instrum.with_span(ctx, "db.Ping", "", run)

    def exec(self, ctx: Context | None, query: str, *args: Any) -> ExecResult:
        with self._conn(ctx) as conn, closing(conn.cursor()) as cursor:
            return _exec(self._instrum, ctx, "db.Exec", query, cursor, _params(args))

    def query(self, ctx: Context | None, query: str, *args: Any) -> Rows:
        with self._conn(ctx) as conn, closing(conn.cursor()) as cursor:
            return _query(self._instrum, ctx, "db.Query", query, cursor, _params(args))

    def query_row(self, ctx: Context | None, query: str, *args: Any) -> tuple:
        """Return the first row; raise NoRowsError when there is none."""
        return _first(self.query(ctx, query, *args))

    def prepare(self, ctx: Context | None, query: str) -> "Statement":
        with self._conn(ctx) as conn:
            cursor = self._instrum.with_span(ctx, "db.Prepare", query,
                                             lambda _ctx, _span: conn.cursor())
        return Statement(cursor, query, self._instrum)

    def begin(self, ctx: Context | None = None) -> "Transaction":
        conn = self._acquire(ctx)

        def run(_ctx: Context, _span: Span) -> None:
            starter = getattr(conn, "begin", None)
            if callable(starter):
                starter()

        try:
            self._instrum.with_span(ctx, "db.Begin", "", run)
        except BaseException:
            self._release(conn)
            raise
        return Transaction(ctx, conn, self, self._instrum)

    def stats(self) -> DBStats:
        with self._lock:
            idle = len(self._idle)
            return DBStats(
                open_connections=idle + self._in_use,
                in_use=self._in_use,
                idle=idle,
                max_idle_closed=self._max_idle_closed,
            )

    def close(self) -> None:
        with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
        for conn in idle:
            conn.close()


class Statement:
    """A prepared query bound to a cursor."""

    def __init__(self, cursor: Any, query: str, instrum: DBInstrum):
        self._cursor = cursor
        self.query_text = query
        self._instrum = instrum
        self._closed = False

    def __enter__(self) -> "Statement":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _check(self) -> None:
        if self._closed:
            raise ClosedError("statement is closed")

    def exec(self, ctx: Context | None, *args: Any) -> ExecResult:
        self._check()
        return _exec(self._instrum, ctx, "stmt.Exec", self.query_text,
                     self._cursor, _params(args))

    def query(self, ctx: Context | None, *args: Any) -> Rows:
        self._check()
        return _query(self._instrum, ctx, "stmt.Query", self.query_text,
                      self._cursor, _params(args))

    def query_row(self, ctx: Context | None, *args: Any) -> tuple:
        return _first(self.query(ctx, *args))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._cursor.close()


class Transaction:
    """Work on one dedicated connection, ended by commit or rollback."""

    def __init__(self, ctx: Context | None, conn: Any, db: DB, instrum: DBInstrum):
        self._ctx = ctx
        self._conn = conn
        self._db = db
        self._instrum = instrum
        self._done = False

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if self._done:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    def _check(self) -> None:
        if self._done:
            raise TxDoneError("transaction has already been committed or rolled back")

    def exec(self, ctx: Context | None, query: str, *args: Any) -> ExecResult:
        self._check()
        with closing(self._conn.cursor()) as cursor:
            return _exec(self._instrum, ctx, "db.Exec", query, cursor, _params(args))

    def query(self, ctx: Context | None, query: str, *args: Any) -> Rows:
        self._check()
        with closing(self._conn.cursor()) as cursor:
            return _query(self._instrum, ctx, "db.Query", query, cursor, _params(args))

    def query_row(self, ctx: Context | None, query: str, *args: Any) -> tuple:
        return _first(self.query(ctx, query, *args))

    def _finish(self, span_name: str, action: Callable[[], None]) -> None:
        self._check()
        self._done = True
        try:
            self._instrum.with_span(self._ctx, span_name, "", lambda _ctx, _span: action())
        finally:
            self._db._release(self._conn)

    def commit(self) -> None:
        self._finish("tx.Commit", self._conn.commit)

    def rollback(self) -> None:
        self._finish("tx.Rollback", self._conn.rollback)


def open(module: Any, dsn: Any, **kwargs: Any) -> DB:
    """Open a traced database through a DB-API module's ``connect(dsn)``."""
    connect = getattr(module, "connect", None)
    if not callable(connect):
        raise ValueError(f"{module!r} has no connect function")
    return open_db(lambda: connect(dsn), **kwargs)


def open_db(connect: Callable[[], Any], **kwargs: Any) -> DB:
    """Open a traced database from a callable that makes new connections."""
    instrum = DBInstrum(**kwargs)
    db = DB(connect, instrum)
    report_db_stats_metrics(db, meter_provider=instrum.meter_provider)
    return db


def report_db_stats_metrics(db: DB, **kwargs: Any) -> None:
    """Publish the pool statistics of ``db`` as observable metrics."""
    config = _Config(**kwargs)
    meter = config.meter_provider.meter(INSTRUM_NAME)
    labels = tuple(config.attrs)

    max_open = meter.gauge("sql.connections_max_open",
                           "Maximum number of open connections to the database")
    open_conns = meter.gauge("sql.connections_open",
                             "The number of established connections both in use and idle")
    in_use = meter.gauge("sql.connections_in_use", "The number of connections currently in use")
    idle = meter.gauge("sql.connections_idle", "The number of idle connections")
    wait_count = meter.counter("sql.connections_wait_count",
                               "The total number of connections waited for")
    wait_duration = meter.counter("sql.connections_wait_duration",
                                  "The total time blocked waiting for a new connection",
                                  "nanoseconds")
    closed_max_idle = meter.counter(
        "sql.connections_closed_max_idle",
        "The total number of connections closed due to the idle connection limit")
    closed_max_idle_time = meter.counter(
        "sql.connections_closed_max_idle_time",
        "The total number of connections closed due to the idle time limit")
    closed_max_lifetime = meter.counter(
        "sql.connections_closed_max_lifetime",
        "The total number of connections closed due to the lifetime limit")

    def observe() -> None:
        stats = db.stats()
        max_open.observe(stats.max_open_connections, *labels)
        open_conns.observe(stats.open_connections, *labels)
        in_use.observe(stats.in_use, *labels)
        idle.observe(stats.idle, *labels)
        wait_count.observe(stats.wait_count, *labels)
        wait_duration.observe(stats.wait_duration, *labels)
        closed_max_idle.observe(stats.max_idle_closed, *labels)
        closed_max_idle_time.observe(stats.max_idle_time_closed, *labels)
        closed_max_lifetime.observe(stats.max_lifetime_closed, *labels)

    meter.register_callback(
        [max_open, open_conns, in_use, idle, wait_count, wait_duration,
         closed_max_idle, closed_max_idle_time, closed_max_lifetime],
        observe,
    )


def version() -> str:
    """The current release version."""
    return "0.1.17"