"""Value model shared by the relational and document views.

A Value is one of Null, Bool, Number, String, Date, List or Map, carried as
the plain Python objects ``None``, ``bool``, ``int``/``float``, ``str``,
``datetime``, ``list`` and ``dict``. ``ValueKind`` is the closed tag for that
union; every evaluation site classifies through ``kind_of`` so an object
outside the union is rejected instead of silently compared.

Ordering across kinds follows the kind rank:

    Null < Bool < Number < String < Date < List < Map

and within a kind the natural order applies. Lists compare element by
element; maps compare by their (key, value) pairs in key order.
"""

from __future__ import annotations

import copy
import math
from datetime import date, datetime, timezone
from enum import IntEnum
from typing import Any


class ValueKind(IntEnum):
    """Tag of a Value. The integer value is the cross-kind sort rank."""

    NULL = 0
    BOOL = 1
    NUMBER = 2
    STRING = 3
    DATE = 4
    LIST = 5
    MAP = 6


# Bounds that sort below and above every sort key. Used for open-ended
# index range scans over composite keys.
KEY_MIN: tuple = (-1,)
KEY_MAX: tuple = (len(ValueKind),)


def kind_of(value: Any) -> ValueKind:
    """Classify a Python object into its Value kind.

    Raises:
        TypeError: If the object is not part of the Value union.
    """
    if value is None:
        return ValueKind.NULL
    # bool before int: True is an int subclass but is never a Number here
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, date):
        return ValueKind.DATE
    if isinstance(value, (list, tuple)):
        return ValueKind.LIST
    if isinstance(value, dict):
        return ValueKind.MAP
    raise TypeError(f"Unsupported value type: {type(value).__name__}")


def is_value(value: Any) -> bool:
    """Check that an object and everything nested in it is a Value."""
    try:
        validate_value(value)
    except TypeError:
        return False
    return True


def validate_value(value: Any) -> None:
    """Recursively check that an object is a Value.

    Raises:
        TypeError: On the first non-Value object, non-string map key or NaN.
    """
    kind = kind_of(value)
    if kind == ValueKind.NUMBER and isinstance(value, float) and math.isnan(value):
        # NaN has no place in the total order
        raise TypeError("NaN is not a valid Number")
    if kind == ValueKind.LIST:
        for item in value:
            validate_value(item)
    elif kind == ValueKind.MAP:
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Map keys must be strings, got {type(key).__name__}")
            validate_value(item)


def normalize_date(value: date) -> datetime:
    """Widen a date to a naive UTC datetime so all dates are comparable."""
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def sort_key(value: Any) -> tuple:
    """Build a hashable key realising the total order of Values.

    Two Values are equal exactly when their sort keys are equal, so the key
    doubles as the hash key for grouping, hash joins and index entries.
    ``1`` and ``1.0`` share a key; ``True`` and ``1`` do not.
    """
    kind = kind_of(value)
    if kind == ValueKind.NULL:
        return (kind,)
    if kind == ValueKind.BOOL or kind == ValueKind.NUMBER or kind == ValueKind.STRING:
        return (kind, value)
    if kind == ValueKind.DATE:
        return (kind, normalize_date(value))
    if kind == ValueKind.LIST:
        return (kind, tuple(sort_key(item) for item in value))
    if kind == ValueKind.MAP:
        return (kind, tuple((k, sort_key(v)) for k, v in sorted(value.items())))
    raise AssertionError(f"Unhandled value kind: {kind}")


def values_equal(left: Any, right: Any) -> bool:
    """Value equality (numeric across int/float, structural for List/Map)."""
    return sort_key(left) == sort_key(right)


def compare_values(left: Any, right: Any) -> int:
    """Three-way comparison under the total Value order.

    Returns:
        -1, 0 or 1.
    """
    lk = sort_key(left)
    rk = sort_key(right)
    if lk < rk:
        return -1
    if lk > rk:
        return 1
    return 0


def copy_value(value: Any) -> Any:
    """Deep copy a Value so callers never share state with the store."""
    return copy.deepcopy(value)
