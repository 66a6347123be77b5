"""Ports layer - interface definitions following Hexagonal Architecture.

Ports are abstract interfaces (protocols) that define contracts between the
domain services and the layers that drive them.
"""

from dualdb.ports.inbound import Index, IndexMetadata

__all__ = [
    "Index",
    "IndexMetadata",
]
