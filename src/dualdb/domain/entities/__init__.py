"""Domain entities for the query engine.

Exports:
    Record:
        - Record: Immutable stored version of a row/document

    Collection:
        - Collection: Ordered records plus their secondary indexes

    B+Tree Nodes:
        - BTreeNodeHeader, BTreeLeafNode, BTreeInternalNode, NodeType
"""

from dualdb.domain.entities.btree_node import (
    INVALID_NODE_ID,
    BTreeInternalNode,
    BTreeLeafNode,
    BTreeNodeHeader,
    IndexKey,
    NodeId,
    NodeType,
)
from dualdb.domain.entities.collection import Collection
from dualdb.domain.entities.record import Record

__all__ = [
    "Record",
    "Collection",
    "BTreeNodeHeader",
    "BTreeLeafNode",
    "BTreeInternalNode",
    "IndexKey",
    "NodeId",
    "NodeType",
    "INVALID_NODE_ID",
]
