"""Lazy cursors over operator trees."""

from __future__ import annotations

from typing import Any, Iterator

from dualdb.application.operators import Operator
from dualdb.domain.value_objects.values import copy_value


class Cursor:
    """A finite, non-restartable stream of result records.

    The operator tree is opened on the first pull and closed when the stream
    is exhausted or ``close()`` is called. Every returned record is a copy
    owned by the caller.

    Example:
        >>> cursor = engine.find("users", gt("age", 30))
        >>> while (doc := cursor.next_record()) is not None:
        ...     print(doc["name"])
    """

    def __init__(self, operator: Operator) -> None:
        self._operator = operator
        self._opened = False
        self._closed = False
        self._returned = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def returned(self) -> int:
        """Number of records returned so far."""
        return self._returned

    def next_record(self) -> dict[str, Any] | None:
        """Return the next record, or None once the stream is exhausted."""
        if self._closed:
            return None
        if not self._opened:
            self._operator.open()
            self._opened = True
        record = self._operator.next()
        if record is None:
            self.close()
            return None
        self._returned += 1
        return copy_value(record)

    def close(self) -> None:
        """Release the operator tree. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._opened:
            self._operator.close()

    def to_list(self) -> list[dict[str, Any]]:
        """Drain the remaining records into a list."""
        return list(self)

    def explain(self) -> list[str]:
        """The operator tree behind this cursor."""
        return self._operator.describe()

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return self

    def __next__(self) -> dict[str, Any]:
        record = self.next_record()
        if record is None:
            raise StopIteration
        return record

    def __enter__(self) -> Cursor:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Cursor({state}, returned={self._returned})"
