"""Error types raised by the query engine.

Every error is raised synchronously at the offending call. Mutating
operations validate before they touch any record, so a raised error means
nothing was applied.
"""

from __future__ import annotations

from typing import Any


class DualDBError(Exception):
    """Base error for all engine errors."""


class EngineNotStarted(DualDBError):
    """Raised when an operation is attempted on a stopped engine."""

    def __init__(self) -> None:
        super().__init__("Storage engine not started")


class DuplicateCollection(DualDBError):
    """Raised when creating a collection whose name is taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Collection '{name}' already exists")


class UnknownCollection(DualDBError):
    """Raised when a collection name does not exist."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Collection '{name}' does not exist")


class DuplicateIdentifier(DualDBError):
    """Raised when an inserted record reuses an existing identifier."""

    def __init__(self, collection: str, identifier: Any) -> None:
        self.collection = collection
        self.identifier = identifier
        super().__init__(f"Identifier {identifier!r} already exists in '{collection}'")


class DuplicateIndex(DualDBError):
    """Raised when an index with the same field order already exists."""

    def __init__(self, collection: str, fields: tuple[str, ...]) -> None:
        self.collection = collection
        self.fields = fields
        super().__init__(f"Index on {list(fields)} already exists in '{collection}'")


class UnknownIndex(DualDBError):
    """Raised when dropping an index that does not exist."""

    def __init__(self, collection: str, index_name: str) -> None:
        self.collection = collection
        self.index_name = index_name
        super().__init__(f"Index '{index_name}' does not exist in '{collection}'")


class InvalidRecord(DualDBError):
    """Raised when a record is not a map of valid values."""


class InvalidPredicate(DualDBError):
    """Raised for a malformed predicate tree (bad path, operator or operand)."""


class InvalidMutation(DualDBError):
    """Raised when an update operation cannot be applied to a record."""


class InvalidProjection(DualDBError):
    """Raised for a projection mixing inclusion and exclusion."""


class InvalidPipelineStage(DualDBError):
    """Raised for a malformed stage or a reference to an undefined field."""

    def __init__(self, message: str, stage_index: int | None = None) -> None:
        self.stage_index = stage_index
        if stage_index is not None:
            message = f"Stage {stage_index}: {message}"
        super().__init__(message)


class LockTimeout(DualDBError):
    """Raised when a collection latch cannot be acquired in time."""
