"""Inbound ports - API contracts offered by the domain."""

from dualdb.ports.inbound.index_manager import Index, IndexMetadata

__all__ = [
    "Index",
    "IndexMetadata",
]
