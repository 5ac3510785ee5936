import logging
import os
from datetime import timedelta

import pytest

from otelextra.attributes import attr_map
from otelextra.logfields import durations, error, namespace, string, strings
from otelextra.logger import Level, Logger, LoggerWithCtx, level_string, version
from otelextra.tracing import Context, SpanRecorder, StatusCode, TracerProvider


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def capture():
    return _Capture()


@pytest.fixture
def logger(capture):
    base = logging.Logger("test", logging.DEBUG)
    base.addHandler(capture)
    return Logger(base, min_level=Level.INFO)


@pytest.fixture
def traced():
    recorder = SpanRecorder()
    provider = TracerProvider([recorder])
    ctx, span = provider.tracer("test").start(Context.background(), "main")
    return recorder, ctx, span


def _events(traced):
    recorder, _ctx, span = traced
    span.end()
    spans = recorder.ended()
    assert len(spans) == 1
    return spans[0].events


def _single_event(traced):
    events = _events(traced)
    assert len(events) == 1
    assert events[0].name == "log"
    return attr_map(events[0].attributes)


def _require_code_attrs(m, func_name):
    assert func_name in m["code.function"]
    assert os.path.basename(m["code.filepath"]) == "test_logger.py"
    assert m["code.lineno"] > 0


def test_info_via_ctx(logger, traced):
    logger.ctx(traced[1]).info("hello")
    m = _single_event(traced)
    assert m["log.severity"] == "INFO"
    assert m["log.message"] == "hello"
    _require_code_attrs(m, "test_info_via_ctx")


def test_info_context(logger, traced):
    logger.info_context(traced[1], "hello")
    m = _single_event(traced)
    assert m["log.severity"] == "INFO"
    assert m["log.message"] == "hello"
    _require_code_attrs(m, "test_info_context")


def test_warn_with_string_field(logger, traced):
    logger.ctx(traced[1]).warn("hello", string("foo", "bar"))
    m = _single_event(traced)
    assert m["log.severity"] == "WARN"
    assert m["log.message"] == "hello"
    assert m["foo"] == "bar"
    _require_code_attrs(m, "test_warn_with_string_field")


def test_warn_with_strings(logger, traced):
    logger.ctx(traced[1]).warn("hello", strings("foo", ["bar1", "bar2", "bar3"]))
    m = _single_event(traced)
    assert m["log.severity"] == "WARN"
    assert m["foo"] == ("bar1", "bar2", "bar3")
    _require_code_attrs(m, "test_warn_with_strings")


def test_with_options_chained(logger, traced):
    (logger.ctx(traced[1])
        .with_options(string("baz", "baz1"))
        .with_options(string("faz", "faz1"))
        .warn("hello", strings("foo", ["bar1", "bar2", "bar3"])))
    m = _single_event(traced)
    assert m["log.severity"] == "WARN"
    assert m["log.message"] == "hello"
    assert m["foo"] == ("bar1", "bar2", "bar3")
    assert m["baz"] == "baz1"
    assert m["faz"] == "faz1"
    _require_code_attrs(m, "test_with_options_chained")


def test_warn_with_durations(logger, traced):
    values = [timedelta(milliseconds=1), timedelta(seconds=1), timedelta(hours=1)]
    logger.ctx(traced[1]).warn("hello", durations("foo", values))
    m = _single_event(traced)
    assert m["foo"] == ("1ms", "1s", "1h0m0s")
    _require_code_attrs(m, "test_warn_with_durations")


def test_error_field(logger, traced):
    logger.ctx(traced[1]).error("hello", error(ValueError("some error")))
    m = _single_event(traced)
    assert m["log.severity"] == "ERROR"
    assert m["log.message"] == "hello"
    assert m["exception.type"] == "ValueError"
    assert m["exception.message"] == "some error"
    _require_code_attrs(m, "test_error_field")
    span = traced[2]
    assert span.status is StatusCode.ERROR
    assert span.status_description == "hello"


def test_warn_does_not_set_error_status(logger, traced):
    logger.ctx(traced[1]).warn("careful")
    _single_event(traced)
    assert traced[2].status is StatusCode.UNSET


def test_stack_trace(logger, traced):
    logger.clone(stack_trace=True).ctx(traced[1]).info("hello")
    m = _single_event(traced)
    assert "test_stack_trace" in m["exception.stacktrace"]
    _require_code_attrs(m, "test_stack_trace")


def test_extra_fields_recorded_and_logged(capture, traced):
    base = logging.Logger("observed", logging.INFO)
    base.addHandler(capture)
    span = traced[2]
    log = Logger(base, min_level=Level.INFO).ctx(traced[1]).clone(extra_fields=[
        string("foo", "bar"),
        string("MyTraceIDKey", span.trace_id),
    ])
    log.info("hello")

    m = _single_event(traced)
    assert m["foo"] == "bar"
    assert m["MyTraceIDKey"] == span.trace_id
    _require_code_attrs(m, "test_extra_fields_recorded_and_logged")

    assert len(capture.records) == 1
    record = capture.records[0]
    assert record.getMessage() == "hello"
    assert record.levelno == logging.INFO
    assert record.fields["foo"] == "bar"
    assert record.fields["MyTraceIDKey"] == span.trace_id


def test_record_points_at_call_site(logger, capture, traced):
    logger.ctx(traced[1]).warn("where")
    m = _single_event(traced)
    _require_code_attrs(m, "test_record_points_at_call_site")
    record = capture.records[0]
    assert os.path.basename(record.pathname) == "test_logger.py"
    assert record.funcName == "test_record_points_at_call_site"
    assert record.lineno == m["code.lineno"]


def test_below_min_level_not_recorded(logger, traced, capture):
    logger.ctx(traced[1]).debug("quiet")
    assert _events(traced) == []
    assert [r.getMessage() for r in capture.records] == ["quiet"]


def test_non_recording_context_still_logs(logger, capture, traced):
    logger.ctx(Context.background()).error("plain", string("a", "b"))
    assert _events(traced) == []
    assert traced[2].status is StatusCode.UNSET
    assert capture.records[0].fields == {"a": "b"}


def test_with_trace_id(capture, traced):
    base = logging.Logger("t", logging.DEBUG)
    base.addHandler(capture)
    Logger(base, with_trace_id=True).ctx(traced[1]).error("boom")
    assert capture.records[0].fields["trace_id"] == traced[2].trace_id


def test_namespace_field_skipped(logger, traced):
    logger.ctx(traced[1]).info("hello", namespace("ns"), string("k", "v"))
    m = _single_event(traced)
    assert "ns" not in m
    assert m["k"] == "v"


def test_caller_disabled(logger, traced):
    logger.clone(caller=False).ctx(traced[1]).info("hello")
    m = _single_event(traced)
    assert "code.function" not in m
    assert "code.lineno" not in m


def _helper(log):
    log.info("from helper")


def test_caller_depth(logger, traced):
    _helper(logger.clone(caller_depth=1).ctx(traced[1]))
    m = _single_event(traced)
    _require_code_attrs(m, "test_caller_depth")
    assert "_helper" not in m["code.function"]


def test_dpanic_logs_without_raising(logger, traced):
    logger.ctx(traced[1]).dpanic("odd")
    m = _single_event(traced)
    assert m["log.severity"] == "PANIC"


def test_panic_raises(logger, traced):
    with pytest.raises(RuntimeError, match="boom"):
        logger.ctx(traced[1]).panic("boom")
    assert _single_event(traced)["log.severity"] == "PANIC"


def test_fatal_exits(logger, traced):
    with pytest.raises(SystemExit) as info:
        logger.fatal_context(traced[1], "bye")
    assert info.value.code == 1
    assert _single_event(traced)["log.severity"] == "FATAL"


def test_clone_leaves_original(logger):
    clone = logger.clone(stack_trace=True, min_level=Level.ERROR)
    assert (clone.stack_trace, clone.min_level) == (True, Level.ERROR)
    assert (logger.stack_trace, logger.min_level) == (False, Level.INFO)


def test_clone_rejects_unknown_option(logger):
    with pytest.raises(TypeError):
        logger.clone(colour=True)


def test_with_options_rejects_non_fields(logger):
    with pytest.raises(TypeError):
        logger.with_options("foo")


def test_logger_with_ctx_keeps_context(logger, traced):
    bound = logger.ctx(traced[1])
    cloned = bound.clone(stack_trace=True)
    assert cloned == LoggerWithCtx(traced[1], cloned.logger)
    assert cloned.context is traced[1]
    assert cloned.logger.stack_trace is True
    assert bound.with_options(string("a", "b")).logger.extra_fields[-1].string == "b"


def test_defaults():
    log = Logger()
    assert log.min_level is Level.WARN
    assert log.error_status_level is Level.ERROR
    assert log.caller is True


@pytest.mark.parametrize("level, expected", [
    (Level.DEBUG, "DEBUG"),
    (Level.INFO, "INFO"),
    (Level.WARN, "WARN"),
    (Level.ERROR, "ERROR"),
    (Level.DPANIC, "PANIC"),
    (Level.PANIC, "PANIC"),
    (Level.FATAL, "FATAL"),
])
def test_level_string(level, expected):
    assert level_string(level) == expected


def test_version():
    assert version() == "0.1.17"