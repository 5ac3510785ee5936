"""Typed key/value attributes and conversion of arbitrary values to them."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

__all__ = ["KeyValue", "attribute", "attr_map"]


@dataclass(frozen=True)
class KeyValue:
    """One attribute. A value of ``None`` marks an attribute with no valid value."""

    key: str
    value: Any = None


def _homogeneous(items: tuple, kind: type) -> bool:
    if kind is int:
        return all(isinstance(i, int) and not isinstance(i, bool) for i in items)
    return all(type(i) is kind for i in items)


def _sequence_attribute(key: str, items: tuple) -> KeyValue:
    if not items:
        return KeyValue(key, ())
    for kind in (bool, int, float, str):
        if _homogeneous(items, kind):
            return KeyValue(key, items)
    return KeyValue(key, None)


def attribute(key: str, value: Any) -> KeyValue:
    """Convert any Python value to the closest attribute representation."""
    if value is None:
        return KeyValue(key, "<nil>")
    if isinstance(value, (bool, int, float, str)):
        return KeyValue(key, value)
    if isinstance(value, (list, tuple)):
        return _sequence_attribute(key, tuple(value))
    if type(value).__str__ is not object.__str__:
        return KeyValue(key, str(value))
    try:
        return KeyValue(key, json.dumps(value))
    except (TypeError, ValueError):
        return KeyValue(key, str(value))


def attr_map(attrs: Iterable[KeyValue]) -> Mapping[str, Any]:
    """Map attribute keys to values; later entries win."""
    return {kv.key: kv.value for kv in attrs}