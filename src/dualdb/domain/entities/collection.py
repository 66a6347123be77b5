"""Collection entity: an ordered set of records plus its indexes.

The collection enforces identifier uniqueness and keeps every index in step
with its records. It performs no locking itself; the storage engine holds
the collection latch around every call that mutates it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable

from dualdb.domain.entities.record import Record
from dualdb.domain.value_objects.projection import ID_FIELD
from dualdb.domain.value_objects.values import sort_key

if TYPE_CHECKING:
    from dualdb.domain.services.collection_latch import CollectionLatch
    from dualdb.domain.services.index_manager import SecondaryIndex


@dataclass
class Collection:
    """A named collection (table) of records.

    Attributes:
        name: Collection name.
        latch: Shared/exclusive latch guarding this collection.
        next_id: Next value of the auto-generated identifier counter.
    """

    name: str
    latch: CollectionLatch
    next_id: int = 1
    _records: dict[tuple, Record] = field(default_factory=dict, repr=False)
    _indexes: list[SecondaryIndex] = field(default_factory=list, repr=False)
    _positions: dict[tuple, int] = field(default_factory=dict, repr=False)
    _next_position: int = field(default=0, repr=False)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_key: tuple) -> bool:
        return record_key in self._records

    @property
    def indexes(self) -> list[SecondaryIndex]:
        """Indexes in declaration order."""
        return list(self._indexes)

    def get(self, record_key: tuple) -> Record | None:
        return self._records.get(record_key)

    def snapshot(self) -> list[Record]:
        """Current record versions in insertion order."""
        return list(self._records.values())

    def in_scan_order(self, record_keys: Iterable[tuple]) -> list[Record]:
        """Present records among the given keys, in insertion order."""
        keys = [k for k in set(record_keys) if k in self._records]
        keys.sort(key=self._positions.__getitem__)
        return [self._records[k] for k in keys]

    def allocate_identifier(self) -> int:
        """Next auto identifier, skipping values already taken by callers.

        The counter only moves forward, so an auto identifier is never handed
        out twice during the collection's lifetime.
        """
        while sort_key(self.next_id) in self._records:
            self.next_id += 1
        identifier = self.next_id
        self.next_id += 1
        return identifier

    def has_identifier(self, identifier: Any) -> bool:
        return sort_key(identifier) in self._records

    def add(self, document: dict[str, Any]) -> Record:
        """Append a document that already carries a unique ``_id``."""
        record = Record.new(document)
        if record.key in self._records:
            raise KeyError(f"Identifier {document[ID_FIELD]!r} already present")
        self._records[record.key] = record
        self._positions[record.key] = self._next_position
        self._next_position += 1
        for index in self._indexes:
            index.add(record)
        return record

    def replace(self, old: Record, document: dict[str, Any]) -> Record:
        """Install a new version of a record, keeping its scan position."""
        new = Record(key=old.key, document=document)
        self._records[old.key] = new
        for index in self._indexes:
            index.move(old, new)
        return new

    def remove(self, record: Record) -> None:
        """Remove a record and purge its index entries."""
        del self._records[record.key]
        del self._positions[record.key]
        for index in self._indexes:
            index.remove(record)

    def attach_index(self, index: SecondaryIndex) -> None:
        """Register an index and backfill it from the current records."""
        for record in self._records.values():
            index.add(record)
        self._indexes.append(index)

    def detach_index(self, index_name: str) -> SecondaryIndex | None:
        for i, index in enumerate(self._indexes):
            if index.name == index_name:
                return self._indexes.pop(i)
        return None

    def find_index(self, fields: tuple[str, ...]) -> SecondaryIndex | None:
        for index in self._indexes:
            if index.fields == fields:
                return index
        return None
