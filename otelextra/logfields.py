"""Structured log fields and their conversion to span attributes."""

from __future__ import annotations

import datetime as _dt
import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from otelextra.attributes import KeyValue, attribute

__all__ = [
    "FieldType", "Field", "string", "strings", "integer", "floating", "boolean",
    "duration", "durations", "error", "any_value", "namespace",
    "format_duration", "encode_array", "append_field",
]


class FieldType(enum.Enum):
    UNKNOWN = 0
    ARRAY = 1
    OBJECT = 2
    BINARY = 3
    BOOL = 4
    BYTE_STRING = 5
    COMPLEX = 6
    DURATION = 7
    FLOAT = 8
    INT = 9
    STRING = 10
    TIME = 11
    TIME_FULL = 12
    STRINGER = 13
    ERROR = 14
    REFLECT = 15
    NAMESPACE = 16
    SKIP = 17


@dataclass(frozen=True)
class Field:
    key: str
    type: FieldType
    integer: int = 0
    string: str = ""
    interface: Any = None


def _nanoseconds(value: _dt.timedelta | int) -> int:
    if isinstance(value, _dt.timedelta):
        return ((value.days * 86400 + value.seconds) * 1_000_000 + value.microseconds) * 1000
    return int(value)


def string(key: str, value: str) -> Field:
    return Field(key, FieldType.STRING, string=value)


def strings(key: str, values: Iterable[str]) -> Field:
    return Field(key, FieldType.ARRAY, interface=list(values))


def integer(key: str, value: int) -> Field:
    return Field(key, FieldType.INT, integer=int(value))


def floating(key: str, value: float) -> Field:
    return Field(key, FieldType.FLOAT, interface=float(value))


def boolean(key: str, value: bool) -> Field:
    return Field(key, FieldType.BOOL, integer=1 if value else 0)


def duration(key: str, value: _dt.timedelta | int) -> Field:
    """A duration field; an int is taken as nanoseconds."""
    return Field(key, FieldType.DURATION, integer=_nanoseconds(value))


def durations(key: str, values: Iterable[_dt.timedelta]) -> Field:
    return Field(key, FieldType.ARRAY, interface=list(values))


def error(err: BaseException) -> Field:
    return Field("error", FieldType.ERROR, interface=err)


def namespace(key: str) -> Field:
    return Field(key, FieldType.NAMESPACE)


def any_value(key: str, value: Any) -> Field:
    """Pick the field type that suits the value."""
    if isinstance(value, bool):
        return boolean(key, value)
    if isinstance(value, int):
        return integer(key, value)
    if isinstance(value, float):
        return floating(key, value)
    if isinstance(value, str):
        return string(key, value)
    if isinstance(value, (bytes, bytearray)):
        return Field(key, FieldType.BINARY, interface=bytes(value))
    if isinstance(value, complex):
        return Field(key, FieldType.COMPLEX, interface=value)
    if isinstance(value, _dt.timedelta):
        return duration(key, value)
    if isinstance(value, _dt.datetime):
        return Field(key, FieldType.TIME_FULL, interface=value)
    if isinstance(value, BaseException):
        return Field(key, FieldType.ERROR, interface=value)
    if isinstance(value, (list, tuple)):
        return Field(key, FieldType.ARRAY, interface=list(value))
    return Field(key, FieldType.REFLECT, interface=value)


def _with_fraction(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    if not frac:
        return str(whole)
    digits = str(frac).zfill(len(str(unit)) - 1).rstrip("0")
    return f"{whole}.{digits}"


def format_duration(value: _dt.timedelta | int) -> str:
    """Format a duration (or nanoseconds) as e.g. ``1ms``, ``1s`` or ``1h0m0s``."""
    ns = _nanoseconds(value)
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_with_fraction(ns, 1_000)}µs"
    if ns < 1_000_000_000:
        return f"{sign}{_with_fraction(ns, 1_000_000)}ms"
    hours, rest = divmod(ns, 3600 * 1_000_000_000)
    minutes, rest = divmod(rest, 60 * 1_000_000_000)
    seconds = _with_fraction(rest, 1_000_000_000)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}s"
    return f"{sign}{seconds}s"


def _format_e(x: float) -> str:
    mantissa, exp = format(Decimal(repr(x)), "E").split("E")
    e = int(exp)
    return f"{mantissa}E{'+' if e >= 0 else '-'}{abs(e):02d}"


def _format_complex(c: complex) -> str:
    sign = "-" if c.imag < 0 else "+"
    return f"({_format_e(c.real)}{sign}{_format_e(abs(c.imag))}i)"


def _encode_one(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, _dt.timedelta):
        return format_duration(value)
    if isinstance(value, (bytes, bytearray)):
        return "[" + " ".join(str(b) for b in value) + "]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(encode_array(value)) + "]"
    if isinstance(value, dict):
        return "map[" + " ".join(f"{k}:{_encode_one(v)}" for k, v in value.items()) + "]"
    if isinstance(value, complex):
        return f"({value.real:g}{value.imag:+g}i)"
    return str(value)


def encode_array(values: Iterable[Any]) -> list[str]:
    """Render each element of an array field as a string."""
    return [_encode_one(v) for v in values]


def _unix_nanos(value: _dt.datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=_dt.timezone.utc)
    delta = value - _dt.datetime(1970, 1, 1, tzinfo=_dt.timezone.utc)
    return _nanoseconds(delta)


def append_field(attrs: list[KeyValue], field: Field) -> list[KeyValue]:
    """Return ``attrs`` extended with the attributes that represent ``field``."""
    t = field.type
    key = field.key
    if t is FieldType.BOOL:
        return attrs + [KeyValue(key, field.integer == 1)]
    if t in (FieldType.INT, FieldType.DURATION, FieldType.TIME):
        return attrs + [KeyValue(key, field.integer)]
    if t is FieldType.FLOAT:
        return attrs + [KeyValue(key, float(field.interface))]
    if t is FieldType.COMPLEX:
        return attrs + [KeyValue(key, _format_complex(complex(field.interface)))]
    if t is FieldType.STRING:
        return attrs + [KeyValue(key, field.string)]
    if t in (FieldType.BINARY, FieldType.BYTE_STRING):
        return attrs + [KeyValue(key, bytes(field.interface).decode("utf-8", "replace"))]
    if t is FieldType.STRINGER:
        return attrs + [KeyValue(key, str(field.interface))]
    if t is FieldType.TIME_FULL:
        return attrs + [KeyValue(key, _unix_nanos(field.interface))]
    if t is FieldType.ERROR:
        err = field.interface
        return attrs + [
            KeyValue("exception.type", type(err).__qualname__),
            KeyValue("exception.message", str(err)),
        ]
    if t is FieldType.REFLECT:
        return attrs + [attribute(key, field.interface)]
    if t is FieldType.SKIP:
        return list(attrs)
    if t is FieldType.ARRAY:
        try:
            encoded = tuple(encode_array(field.interface))
        except Exception as exc:  # noqa: BLE001 - reported as an attribute
            return attrs + [KeyValue(key + "_error", f"otelextra: unable to marshal array: {exc}")]
        return attrs + [KeyValue(key, encoded)]
    if t is FieldType.OBJECT:
        return attrs + [KeyValue(key + "_error", "otelextra: object fields are not supported")]
    return attrs + [KeyValue(key + "_error", f"otelextra: unknown field type: {field}")]