"""Stored record versions.

A relational row and a document are the same thing here: a map of field
values carrying its identifier under ``_id``. Stored records are never
modified in place. An update installs a new ``Record`` in the collection,
so a reader holding a snapshot of record references keeps seeing the
version that existed when its scan started.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from dualdb.domain.value_objects.projection import ID_FIELD
from dualdb.domain.value_objects.values import copy_value, sort_key


@dataclass(frozen=True)
class Record:
    """An immutable version of a stored record.

    Attributes:
        key: Hashable identity key (``sort_key`` of the identifier).
        document: The stored fields, ``_id`` included. Owned by the store.
    """

    key: tuple
    document: dict[str, Any]

    @classmethod
    def new(cls, document: dict[str, Any]) -> Record:
        """Wrap a document that already carries its ``_id``."""
        return cls(key=sort_key(document[ID_FIELD]), document=document)

    @property
    def identifier(self) -> Any:
        return self.document[ID_FIELD]

    def to_dict(self) -> dict[str, Any]:
        """Return a caller-owned copy of the document."""
        return copy_value(self.document)
