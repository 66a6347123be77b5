"""Application layer - the storage engine and its execution machinery."""

from dualdb.application.cursor import Cursor
from dualdb.application.storage_engine import StorageEngine

__all__ = [
    "Cursor",
    "StorageEngine",
]
