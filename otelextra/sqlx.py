"""Traced database access that scans result rows into classes."""

from __future__ import annotations

import dataclasses
from typing import Any, Callable, TypeVar

from otelextra.otelsql import DB, DBInstrum, NoRowsError, SQLError, report_db_stats_metrics
from otelextra.tracing import Context

__all__ = ["SqlxDB", "open", "connect", "connect_context"]

T = TypeVar("T")

_SCALAR_TYPES = (int, float, str, bytes, bool, complex)


def _parameter_names(fn: Any, skip: int) -> list[str]:
    """Names that ``fn`` accepts as keywords, leaving out the first ``skip`` parameters."""
    code = getattr(fn, "__code__", None)
    if code is None:
        return []
    count = code.co_argcount + code.co_kwonlyargcount
    start = max(skip, code.co_posonlyargcount)
    return list(code.co_varnames[start:count])


def _destination_names(cls: Any) -> dict[str, str] | None:
    """Map lower-cased attribute names of ``cls`` to the real ones, or None for scalars."""
    if dataclasses.is_dataclass(cls):
        return {f.name.lower(): f.name for f in dataclasses.fields(cls) if f.init}
    if isinstance(cls, type):
        if issubclass(cls, _SCALAR_TYPES):
            return None
        params = _parameter_names(cls.__init__, 1)
    else:
        params = _parameter_names(cls, 0)
    names = {name.lower(): name for name in params}
    return names or None


def _scanner(cls: Callable[..., T], columns: tuple[str, ...]) -> Callable[[tuple], T]:
    name = getattr(cls, "__name__", repr(cls))
    names = _destination_names(cls)
    if names is None:
        if len(columns) != 1:
            raise SQLError(
                f"scannable dest type {name} with >1 columns ({len(columns)}) in result")
        return lambda row: cls(row[0])
    targets = []
    for column in columns:
        try:
            targets.append(names[column])
        except KeyError:
            raise SQLError(f"missing destination name {column} in {name}") from None
    return lambda row: cls(**dict(zip(targets, row)))


class SqlxDB(DB):
    """A traced database that can also build objects from query results."""

    def __init__(self, connect: Callable[[], Any], instrum: DBInstrum, driver_name: str = ""):
        super().__init__(connect, instrum)
        self.driver_name = driver_name

    def get(self, cls: Callable[..., T], query: str, *args: Any,
            ctx: Context | None = None) -> T:
        """Build one ``cls`` from the first row; raise NoRowsError when there is none."""
        rows = self.query(ctx, query, *args)
        if not rows.rows:
            raise NoRowsError("no rows in result set")
        return _scanner(cls, rows.columns)(rows.rows[0])

    def select(self, cls: Callable[..., T], query: str, *args: Any,
               ctx: Context | None = None) -> list[T]:
        """Build one ``cls`` for every row of the result."""
        rows = self.query(ctx, query, *args)
        scan = _scanner(cls, rows.columns)
        return [scan(row) for row in rows]


def open(module: Any, dsn: Any, **kwargs: Any) -> SqlxDB:
    """Open a traced database through a DB-API module's ``connect(dsn)``."""
    connect_fn = getattr(module, "connect", None)
    if not callable(connect_fn):
        raise ValueError(f"{module!r} has no connect function")
    instrum = DBInstrum(**kwargs)
    driver_name = getattr(module, "__name__", type(module).__name__)
    db = SqlxDB(lambda: connect_fn(dsn), instrum, driver_name)
    report_db_stats_metrics(db, meter_provider=instrum.meter_provider)
    return db


def connect_context(ctx: Context | None, module: Any, dsn: Any, **kwargs: Any) -> SqlxDB:
    """Open a database and verify it with a ping; close it again if that fails."""
    db = open(module, dsn, **kwargs)
    try:
        db.ping(ctx)
    except BaseException:
        db.close()
        raise
    return db


def connect(module: Any, dsn: Any, **kwargs: Any) -> SqlxDB:
    """Open a database and verify it with a ping."""
    return connect_context(None, module, dsn, **kwargs)