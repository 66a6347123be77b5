"""Index port for secondary indexes over collection fields.

Key responsibilities:
- Map the tuple of indexed field values to the records sharing it
- Stay consistent with every insert, update and delete of the collection
- Serve point lookups and ordered range scans to the planner
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Iterator, Protocol

from dualdb.domain.entities.record import Record


@dataclass
class IndexMetadata:
    """Metadata and statistics for an index."""

    name: str
    collection: str
    fields: tuple[str, ...]
    height: int
    num_keys: int
    num_entries: int
    scans: int = 0


class Index(Protocol):
    """Protocol for a secondary index on one collection."""

    name: str
    fields: tuple[str, ...]

    @property
    @abstractmethod
    def metadata(self) -> IndexMetadata:
        """Return index metadata."""
        ...

    @abstractmethod
    def key_for(self, document: dict[str, Any]) -> tuple:
        """Project a document onto the index's composite key."""
        ...

    @abstractmethod
    def add(self, record: Record) -> None:
        """Index a newly inserted record."""
        ...

    @abstractmethod
    def move(self, old: Record, new: Record) -> None:
        """Re-key a record whose indexed fields may have changed."""
        ...

    @abstractmethod
    def remove(self, record: Record) -> None:
        """Drop a deleted record from the index."""
        ...

    @abstractmethod
    def entries(self) -> Iterator[tuple[tuple, list[tuple]]]:
        """All (key, record_keys) entries in key order."""
        ...
