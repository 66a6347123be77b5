"""Dotted field paths into nested records.

A path such as ``"address.city"`` walks nested maps; a numeric segment such
as the ``0`` in ``"items.0.sku"`` indexes into a list.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any


class _Missing:
    """Sentinel for a path that does not resolve to a present key."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def is_list_index(segment: str) -> bool:
    """True for a segment spelled with ASCII digits only."""
    return segment.isascii() and segment.isdigit()


@lru_cache(maxsize=1024)
def split_path(path: str) -> tuple[str, ...]:
    """Split and validate a dotted path.

    Raises:
        ValueError: If the path is empty or has an empty segment.
    """
    if not isinstance(path, str) or not path:
        raise ValueError(f"Field path must be a non-empty string, got {path!r}")
    segments = tuple(path.split("."))
    if any(not segment for segment in segments):
        raise ValueError(f"Field path {path!r} has an empty segment")
    return segments


def resolve(document: Any, path: str) -> Any:
    """Resolve a path against a document, returning ``MISSING`` if absent.

    A key explicitly set to ``None`` resolves to ``None``, not ``MISSING``.
    """
    current = document
    for segment in split_path(path):
        if isinstance(current, dict):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, list) and is_list_index(segment):
            idx = int(segment)
            if idx >= len(current):
                return MISSING
            current = current[idx]
        else:
            return MISSING
    return current


def resolve_or_null(document: Any, path: str) -> Any:
    """Resolve a path, treating a missing key as Null."""
    value = resolve(document, path)
    return None if value is MISSING else value


def set_path(document: dict[str, Any], path: str, value: Any) -> None:
    """Assign a value at a path, creating intermediate maps as needed.

    Raises:
        ValueError: If an intermediate segment is a scalar, or a list index
            is out of range.
    """
    segments = split_path(path)
    current: Any = document
    for segment in segments[:-1]:
        if isinstance(current, dict):
            if segment not in current or current[segment] is None:
                current[segment] = {}
            current = current[segment]
        elif isinstance(current, list) and is_list_index(segment) and int(segment) < len(current):
            current = current[int(segment)]
        else:
            raise ValueError(f"Cannot traverse into {type(current).__name__} at '{segment}' of {path!r}")

    last = segments[-1]
    if isinstance(current, dict):
        current[last] = value
    elif isinstance(current, list) and is_list_index(last) and int(last) < len(current):
        current[int(last)] = value
    else:
        raise ValueError(f"Cannot assign '{last}' of {path!r} on {type(current).__name__}")


def unset_path(document: dict[str, Any], path: str) -> bool:
    """Remove the key at a path.

    Returns:
        True if a key was removed, False if the path was already absent.
    """
    segments = split_path(path)
    parent = resolve(document, ".".join(segments[:-1])) if len(segments) > 1 else document
    if isinstance(parent, dict) and segments[-1] in parent:
        del parent[segments[-1]]
        return True
    return False
