"""A small in-process tracing and metrics API with recording support."""

from __future__ import annotations

import enum
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from otelextra.attributes import KeyValue

__all__ = [
    "SpanKind", "StatusCode", "Event", "Context", "Span", "Tracer",
    "TracerProvider", "SpanRecorder", "Histogram", "ObservableInstrument",
    "Meter", "MeterProvider", "span_from_context", "context_with_span",
    "get_tracer_provider", "set_tracer_provider", "get_meter_provider",
    "set_meter_provider",
]

INVALID_TRACE_ID = "0" * 32


class SpanKind(enum.Enum):
    INTERNAL = "internal"
    SERVER = "server"
    CLIENT = "client"
    PRODUCER = "producer"
    CONSUMER = "consumer"


class StatusCode(enum.Enum):
    UNSET = 0
    ERROR = 1
    OK = 2


@dataclass(frozen=True)
class Event:
    name: str
    attributes: tuple[KeyValue, ...] = ()
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class Context:
    """Immutable carrier of the active span."""

    span: "Span | None" = None

    @classmethod
    def background(cls) -> "Context":
        return cls()


class Span:
    """A unit of traced work."""

    def __init__(self, name: str, *, kind: SpanKind = SpanKind.INTERNAL,
                 attributes: Iterable[KeyValue] = (), trace_id: str = INVALID_TRACE_ID,
                 parent: "Span | None" = None, provider: "TracerProvider | None" = None,
                 recording: bool = True):
        self.name = name
        self.kind = kind
        self.attributes: list[KeyValue] = list(attributes)
        self.events: list[Event] = []
        self.status = StatusCode.UNSET
        self.status_description = ""
        self.trace_id = trace_id
        self.span_id = secrets.token_hex(8) if recording else "0" * 16
        self.parent = parent
        self.start_time = time.time()
        self.end_time: float | None = None
        self._provider = provider
        self._recording = recording

    def __repr__(self) -> str:
        return f"Span(name={self.name!r}, trace_id={self.trace_id})"

    def is_recording(self) -> bool:
        return self._recording and self.end_time is None

    def set_attributes(self, *args: KeyValue) -> None:
        if self.is_recording():
            self.attributes.extend(args)

    def add_event(self, name: str, attributes: Iterable[KeyValue] = ()) -> None:
        if self.is_recording():
            self.events.append(Event(name, tuple(attributes)))

    def record_error(self, err: BaseException) -> None:
        self.add_event("exception", (
            KeyValue("exception.type", type(err).__qualname__),
            KeyValue("exception.message", str(err)),
        ))

    def set_status(self, code: StatusCode, description: str = "") -> None:
        if self.is_recording():
            self.status = code
            self.status_description = description if code is StatusCode.ERROR else ""

    def end(self) -> None:
        if not self.is_recording():
            return
        self.end_time = time.time()
        if self._provider is not None:
            self._provider._span_ended(self)


_INVALID_SPAN = Span("", recording=False)


def span_from_context(ctx: Context | None) -> Span:
    """Return the active span, or a non-recording span when there is none."""
    if ctx is None or ctx.span is None:
        return _INVALID_SPAN
    return ctx.span


def context_with_span(ctx: Context | None, span: Span) -> Context:
    return Context(span=span)


class Tracer:
    def __init__(self, name: str, provider: "TracerProvider"):
        self.name = name
        self._provider = provider

    def start(self, ctx: Context | None, name: str, kind: SpanKind = SpanKind.INTERNAL,
              attributes: Iterable[KeyValue] = ()) -> tuple[Context, Span]:
        parent = span_from_context(ctx)
        has_parent = parent.trace_id != INVALID_TRACE_ID
        recording = self._provider.recording
        if has_parent:
            trace_id = parent.trace_id
        elif recording:
            trace_id = secrets.token_hex(16)
        else:
            trace_id = INVALID_TRACE_ID
        span = Span(name, kind=kind, attributes=attributes, trace_id=trace_id,
                    parent=parent if has_parent else None, provider=self._provider,
                    recording=recording)
        return context_with_span(ctx, span), span


class TracerProvider:
    """Creates tracers; ended spans go to every registered processor."""

    def __init__(self, processors: Iterable[Any] = (), recording: bool = True):
        self.recording = recording
        self._processors = list(processors)
        self._lock = threading.Lock()

    def tracer(self, name: str) -> Tracer:
        return Tracer(name, self)

    def add_span_processor(self, processor: Any) -> None:
        with self._lock:
            self._processors.append(processor)

    def _span_ended(self, span: Span) -> None:
        with self._lock:
            processors = list(self._processors)
        for processor in processors:
            processor.on_end(span)


class SpanRecorder:
    """Span processor that keeps ended spans in order."""

    def __init__(self) -> None:
        self._spans: list[Span] = []
        self._lock = threading.Lock()

    def on_end(self, span: Span) -> None:
        with self._lock:
            self._spans.append(span)

    def ended(self) -> list[Span]:
        with self._lock:
            return list(self._spans)


class Histogram:
    def __init__(self, name: str, description: str = "", unit: str = ""):
        self.name = name
        self.description = description
        self.unit = unit
        self.records: list[tuple[Any, tuple[KeyValue, ...]]] = []

    def record(self, value: Any, *args: KeyValue) -> None:
        self.records.append((value, args))


class ObservableInstrument:
    def __init__(self, name: str, kind: str, description: str = "", unit: str = ""):
        self.name = name
        self.kind = kind
        self.description = description
        self.unit = unit
        self.observations: list[tuple[Any, tuple[KeyValue, ...]]] = []

    def observe(self, value: Any, *args: KeyValue) -> None:
        self.observations.append((value, args))


class Meter:
    def __init__(self, name: str):
        self.name = name
        self._instruments: dict[str, Histogram | ObservableInstrument] = {}
        self._callbacks: list[tuple[tuple[ObservableInstrument, ...], Callable[[], None]]] = []

    def _add(self, instrument):
        self._instruments[instrument.name] = instrument
        return instrument

    def histogram(self, name: str, description: str = "", unit: str = "") -> Histogram:
        return self._add(Histogram(name, description, unit))

    def gauge(self, name: str, description: str = "", unit: str = "") -> ObservableInstrument:
        return self._add(ObservableInstrument(name, "gauge", description, unit))

    def counter(self, name: str, description: str = "", unit: str = "") -> ObservableInstrument:
        return self._add(ObservableInstrument(name, "counter", description, unit))

    def register_callback(self, instruments: Iterable[ObservableInstrument],
                          callback: Callable[[], None]) -> None:
        instruments = tuple(instruments)
        for inst in instruments:
            if self._instruments.get(inst.name) is not inst:
                raise ValueError(f"instrument {inst.name!r} does not belong to this meter")
        self._callbacks.append((instruments, callback))

    def collect(self) -> dict[str, list[tuple[Any, tuple[KeyValue, ...]]]]:
        """Run callbacks and return the current data of every instrument by name."""
        for instruments, callback in self._callbacks:
            for inst in instruments:
                inst.observations.clear()
            callback()
        result = {}
        for name, inst in self._instruments.items():
            data = inst.records if isinstance(inst, Histogram) else inst.observations
            result[name] = list(data)
        return result


class MeterProvider:
    def __init__(self) -> None:
        self._meters: dict[str, Meter] = {}
        self._lock = threading.Lock()

    def meter(self, name: str) -> Meter:
        with self._lock:
            return self._meters.setdefault(name, Meter(name))


_global_lock = threading.Lock()
_tracer_provider = TracerProvider(recording=False)
_meter_provider = MeterProvider()


def get_tracer_provider() -> TracerProvider:
    with _global_lock:
        return _tracer_provider


def set_tracer_provider(provider: TracerProvider) -> None:
    global _tracer_provider
    with _global_lock:
        _tracer_provider = provider


def get_meter_provider() -> MeterProvider:
    with _global_lock:
        return _meter_provider


def set_meter_provider(provider: MeterProvider) -> None:
    global _meter_provider
    with _global_lock:
        _meter_provider = provider