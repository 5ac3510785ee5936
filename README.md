# otelextra

Instrumentation helpers that record spans, span events and metrics for two
everyday jobs:

* **Databases** – wrap any DB-API module (for example `sqlite3`) so that
  connect, ping, exec, query, prepare, begin, commit and rollback each become
  a client span, with the SQL statement and the affected row count attached
  and query timings recorded in a histogram.
* **Logging** – a structured logger whose messages at or above a chosen level
  are also added as `log` events to the active span, with severity, message,
  fields and the caller's location.

The package carries its own small tracing and metrics layer
(`otelextra.tracing`): tracer and meter providers, spans, a span recorder and
meters with histograms, gauges and counters.

## Installation

```
pip install otelextra
```

## Tracing database calls

```python
import sqlite3

from otelextra import otelsql
from otelextra.attributes import attr_map
from otelextra.tracing import Context, SpanRecorder, TracerProvider

recorder = SpanRecorder()
provider = TracerProvider()
provider.add_span_processor(recorder)

db = otelsql.open(sqlite3, ":memory:", tracer_provider=provider, db_name="mydb")
ctx = Context()

db.ping(ctx)
row = db.query_row(ctx, "SELECT 42")    # (42,)

for span in recorder.ended():
    print(span.name, attr_map(span.attributes))
# db.Connect {'db.name': 'mydb'}
# db.Ping {'db.name': 'mydb'}
# db.Query {'db.name': 'mydb', 'db.statement': 'SELECT 42'}
```

Connections are pooled: a released connection is kept idle (two at most by
default, see `DB.set_max_idle_conns`) and reused, so `db.Connect` appears only
when a new connection has to be made. `ping` calls the connection's own
`ping()` if it has one, and otherwise runs `SELECT 1`.

Options taken by `open`, `open_db` and `DBInstrum`: `tracer_provider`,
`meter_provider`, `attributes` (a sequence of `KeyValue`), `db_system`,
`db_name` and `query_formatter` (a function applied to the statement text
before it is stored on the span).

Statements and transactions are traced too:

```python
stmt = db.prepare(ctx, "SELECT 1")      # db.Prepare
stmt.exec(ctx)                          # stmt.Exec
stmt.query_row(ctx)                     # stmt.Query

tx = db.begin(ctx)                      # db.Begin
tx.exec(ctx, "SELECT 1")                # db.Exec
tx.rollback()                           # tx.Rollback
```

`exec` returns an `ExecResult` (`rows_affected`, `last_insert_id`), `query`
returns `Rows` (`columns` and `rows`), and `query_row` returns the first row
or raises `NoRowsError`. Errors raised by the driver are recorded on the span,
which gets an error status, and are then raised again. Using a transaction as
a context manager commits it on success and rolls it back on an exception;
using it after commit or rollback raises `TxDoneError`, and using a closed
database or statement raises `ClosedError`.

`open_db(connect, ...)` wraps a connection factory of your own instead of a
module and a DSN. Both `open` and `open_db` register the pool statistics
(`DB.stats()`) as observable gauges and counters on the meter provider;
`Meter.collect()` runs the callbacks and returns the data of every instrument.
`report_db_stats_metrics(db, ...)` registers them on another meter provider.

### Rows into objects

`otelextra.sqlx` adds `get` and `select`, which build a class from the
columns of a row, matching column names to field or parameter names without
regard to case:

```python
from dataclasses import dataclass

from otelextra import sqlx

@dataclass
class Person:
    id: int
    name: str

db = sqlx.open(sqlite3, ":memory:", tracer_provider=provider)
person = db.get(Person, "SELECT 123 AS id, 'hello' AS name", ctx=ctx)
people = db.select(Person, "SELECT 1 AS id, 'a' AS name", ctx=ctx)
count = db.get(int, "SELECT 7")          # single-column results fill scalars
```

`sqlx.connect` and `sqlx.connect_context` open the database and check it
with a ping, closing it again if the ping fails.

## Logging into spans

```python
from otelextra import logfields
from otelextra.attributes import attr_map
from otelextra.logger import Level, Logger
from otelextra.tracing import Context, SpanRecorder, TracerProvider

recorder = SpanRecorder()
provider = TracerProvider()
provider.add_span_processor(recorder)
tracer = provider.tracer("app")

logger = Logger(min_level=Level.INFO)

ctx, span = tracer.start(Context(), "main")
logger.ctx(ctx).warn("disk almost full", logfields.string("mount", "/var"))
span.end()

event = recorder.ended()[0].events[0]
attrs = attr_map(event.attributes)
print(event.name, attrs["log.severity"], attrs["log.message"], attrs["mount"])
# log WARN disk almost full /var
```

`Logger(base)` writes every entry to the standard `logging.Logger` given as
`base` (with the fields in the record's `fields` attribute); without one,
entries only reach the span. By default messages at `WARN` and above are
recorded on the span and messages at `ERROR` and above also set the span
status to error. `panic` logs and then raises `RuntimeError`; `fatal` logs and
then raises `SystemExit(1)`.

`Logger.clone(...)` returns a copy with options changed: `min_level`,
`error_status_level`, `caller`, `caller_depth`, `stack_trace`, `extra_fields`
and `with_trace_id`. `Logger.with_options(*fields)` returns a copy that adds
fields to every entry. Fields are made with the helpers in
`otelextra.logfields`: `string`, `strings`, `integer`, `floating`, `boolean`,
`duration`, `durations`, `error`, `any_value` and `namespace`.

The sugared logger takes printf-style templates or loose key-value pairs:

```python
sugar = logger.sugar()
sugar.errorf_context(ctx, "hello %s", "world")
sugar.ctx(ctx).infow("user signed in", "user", "alice")
```

A process-wide logger is kept in `otelextra.registry`: `global_logger()`,
`global_sugar()`, `ctx(ctx)` and `replace_globals(logger)`, which returns a
function that restores the previous one. The initial global logger discards
its output.

## What it does not do

Spans and metrics stay in the process: they go to the span processors and
meters you register, such as `SpanRecorder`, and nothing is exported to a
collector or a tracing backend. There is no command-line tool.

## Running the tests

```
pip install -e .[test]
pytest
```