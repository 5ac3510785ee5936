import sqlite3

import pytest

from otelextra import otelsql
from otelextra.attributes import attr_map
from otelextra.tracing import (
    Context,
    MeterProvider,
    SpanKind,
    SpanRecorder,
    StatusCode,
    TracerProvider,
)


@pytest.fixture
def recorder():
    return SpanRecorder()


@pytest.fixture
def meter_provider():
    return MeterProvider()


@pytest.fixture
def db(recorder, meter_provider):
    database = otelsql.open(sqlite3, ":memory:",
                            tracer_provider=TracerProvider([recorder]),
                            meter_provider=meter_provider)
    yield database
    database.close()


def names(spans):
    return [s.name for s in spans]


def statement_of(span):
    return attr_map(span.attributes).get(otelsql.DB_STATEMENT, "")


def assert_all_client(spans):
    assert all(s.kind is SpanKind.CLIENT for s in spans)


def test_ping(db, recorder):
    db.ping(Context.background())
    spans = recorder.ended()
    assert names(spans) == ["db.Connect", "db.Ping"]
    assert_all_client(spans)


def test_exec(db, recorder):
    db.exec(Context.background(), "SELECT 1")
    spans = recorder.ended()
    assert names(spans) == ["db.Connect", "db.Exec"]
    assert_all_client(spans)
    m = attr_map(spans[1].attributes)
    assert m[otelsql.DB_STATEMENT] == "SELECT 1"
    assert m[otelsql.DB_ROWS_AFFECTED] == 0


def test_query_row(db, recorder):
    assert db.query_row(Context.background(), "SELECT 1")[0] == 1
    spans = recorder.ended()
    assert names(spans) == ["db.Connect", "db.Query"]
    assert_all_client(spans)
    assert statement_of(spans[1]) == "SELECT 1"


def test_prepared_statement(db, recorder):
    ctx = Context.background()
    stmt = db.prepare(ctx, "SELECT 1")
    stmt.exec(ctx)
    assert stmt.query_row(ctx)[0] == 1
    spans = recorder.ended()
    assert_all_client(spans)
    wanted = [("db.Connect", ""), ("db.Prepare", "SELECT 1"),
              ("stmt.Exec", "SELECT 1"), ("stmt.Query", "SELECT 1")]
    assert [(s.name, statement_of(s)) for s in spans] == wanted
    assert (otelsql.DB_STATEMENT in attr_map(spans[0].attributes)) is False


def test_transaction_rollback_spans(db, recorder):
    ctx = Context.background()
    tx = db.begin(ctx)
    tx.exec(ctx, "SELECT 1")
    assert tx.query_row(ctx, "SELECT 1")[0] == 1
    tx.rollback()
    spans = recorder.ended()
    assert len(spans) == 5
    assert_all_client(spans)
    wanted = [("db.Connect", ""), ("db.Begin", ""), ("db.Exec", "SELECT 1"),
              ("db.Query", "SELECT 1"), ("tx.Rollback", "")]
    assert [(s.name, statement_of(s)) for s in spans] == wanted


def test_transaction_commit_persists(db):
    ctx = Context.background()
    db.exec(ctx, "CREATE TABLE t (x INTEGER)")
    with db.begin(ctx) as tx:
        result = tx.exec(ctx, "INSERT INTO t VALUES (?)", 7)
        assert result.rows_affected == 1
    assert db.query_row(ctx, "SELECT count(*) FROM t") == (1,)


def test_transaction_rollback_discards(db):
    ctx = Context.background()
    db.exec(ctx, "CREATE TABLE t (x INTEGER)")
    tx = db.begin(ctx)
    tx.exec(ctx, "INSERT INTO t VALUES (1)")
    tx.rollback()
    assert db.query_row(ctx, "SELECT count(*) FROM t") == (0,)


def test_transaction_done_raises(db):
    tx = db.begin(None)
    tx.commit()
    with pytest.raises(otelsql.TxDoneError):
        tx.commit()
    with pytest.raises(otelsql.TxDoneError):
        tx.exec(None, "SELECT 1")


def test_query_returns_columns_and_rows(db):
    rows = db.query(None, "SELECT 123 AS id, 'hello' AS name")
    assert rows.columns == ("id", "name")
    assert list(rows) == [(123, "hello")]
    assert len(rows) == 1


def test_named_parameters(db):
    assert db.query_row(None, "SELECT :x", {"x": 5}) == (5,)


def test_no_rows_is_not_an_error_status(db, recorder):
    with pytest.raises(otelsql.NoRowsError):
        db.query_row(None, "SELECT 1 WHERE 0")
    span = recorder.ended()[-1]
    assert span.name == "db.Query"
    assert span.status is StatusCode.UNSET


def test_failed_query_records_error(db, recorder):
    with pytest.raises(sqlite3.OperationalError):
        db.exec(None, "SELEC nonsense")
    span = recorder.ended()[-1]
    assert span.name == "db.Exec"
    assert span.status is StatusCode.ERROR
    assert [e.name for e in span.events] == ["exception"]


def test_spans_join_parent_trace(db, recorder):
    tracer = TracerProvider([recorder]).tracer("app")
    ctx, root = tracer.start(Context.background(), "root")
    db.ping(ctx)
    root.end()
    spans = recorder.ended()
    assert {s.trace_id for s in spans} == {root.trace_id}
    assert all(s.parent is root for s in spans[:-1])


def test_attribute_options(recorder, meter_provider):
    with otelsql.open(sqlite3, ":memory:", tracer_provider=TracerProvider([recorder]),
                      meter_provider=meter_provider, db_system="sqlite",
                      db_name="mydb", query_formatter=str.lower) as database:
        database.exec(None, "SELECT 1")
    m = attr_map(recorder.ended()[-1].attributes)
    assert m[otelsql.DB_SYSTEM] == "sqlite"
    assert m[otelsql.DB_NAME] == "mydb"
    assert m[otelsql.DB_STATEMENT] == "select 1"


def test_query_histogram(recorder, meter_provider):
    database = otelsql.open(sqlite3, ":memory:", tracer_provider=TracerProvider([recorder]),
                            meter_provider=meter_provider, db_system="sqlite")
    database.exec(None, "SELECT 1")
    database.ping(None)
    data = meter_provider.meter(otelsql.INSTRUM_NAME).collect()
    records = data["sql.query_timing"]
    assert len(records) == 1
    assert records[0][1] == (otelsql.KeyValue(otelsql.DB_SYSTEM, "sqlite"),)
    assert records[0][0] >= 0


def test_stats_metrics(db, meter_provider):
    db.ping(None)
    data = meter_provider.meter(otelsql.INSTRUM_NAME).collect()
    assert data["sql.connections_open"] == [(1, ())]
    assert data["sql.connections_idle"] == [(1, ())]
    assert data["sql.connections_in_use"] == [(0, ())]


def test_idle_limit_closes_surplus(db, recorder):
    db.set_max_idle_conns(1)
    first = db.begin(None)
    second = db.begin(None)
    assert db.stats().in_use == 2
    first.commit()
    second.commit()
    stats = db.stats()
    assert stats.idle == 1
    assert stats.in_use == 0
    assert stats.max_idle_closed == 1
    assert names(recorder.ended()).count("db.Connect") == 2


def test_closed_database_raises(db):
    db.close()
    with pytest.raises(otelsql.ClosedError):
        db.ping(None)


def test_closed_statement_raises(db):
    stmt = db.prepare(None, "SELECT 1")
    stmt.close()
    with pytest.raises(otelsql.ClosedError):
        stmt.query(None)


def test_open_rejects_non_module():
    with pytest.raises(ValueError):
        otelsql.open(object(), ":memory:")


def test_open_db_with_callable(recorder, meter_provider):
    database = otelsql.open_db(lambda: sqlite3.connect(":memory:"),
                               tracer_provider=TracerProvider([recorder]),
                               meter_provider=meter_provider)
    assert database.query_row(None, "SELECT 42") == (42,)
    assert names(recorder.ended()) == ["db.Connect", "db.Query"]


def test_unknown_option_rejected():
    with pytest.raises(TypeError):
        otelsql.open(sqlite3, ":memory:", no_such_option=True)


def test_version():
    assert otelsql.version() == "0.1.17"