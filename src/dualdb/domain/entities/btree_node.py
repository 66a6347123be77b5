"""B+Tree node structures for secondary indexes.

Keys are composite sort keys (one element per indexed field). Each leaf
entry maps a key to the ordered set of record keys sharing it, so the tree
holds one entry per distinct key tuple.

Key properties:
    - All entries stored in leaf nodes
    - Internal nodes only contain separator keys and child pointers
    - Leaf nodes are linked for range scans

References:
    - Bayer & McCreight, "B+Trees" (1972)
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from dataclasses import dataclass, field
from enum import IntEnum
from typing import NewType

NodeId = NewType("NodeId", int)
"""Identifier of a node within one tree."""

INVALID_NODE_ID = NodeId(-1)

IndexKey = tuple
"""Composite key: a tuple of per-field sort keys."""

PostingSet = dict
"""Ordered set of record keys (dict with ``None`` values keeps insertion order)."""


class NodeType(IntEnum):
    """Type of B+Tree node."""

    INTERNAL = 0
    LEAF = 1


@dataclass
class BTreeNodeHeader:
    """Header for a B+Tree node.

    Attributes:
        node_type: Whether this is an internal or leaf node.
        parent_id: Parent node (INVALID_NODE_ID for root).
        next_id: For leaf nodes, the next sibling.
        prev_id: For leaf nodes, the previous sibling.
    """

    node_type: NodeType
    parent_id: NodeId = INVALID_NODE_ID
    next_id: NodeId = INVALID_NODE_ID
    prev_id: NodeId = INVALID_NODE_ID


@dataclass
class BTreeLeafNode:
    """A leaf node holding sorted keys and their posting sets."""

    node_id: NodeId
    header: BTreeNodeHeader
    keys: list[IndexKey] = field(default_factory=list)
    values: list[PostingSet] = field(default_factory=list)

    @classmethod
    def new(cls, node_id: NodeId) -> BTreeLeafNode:
        """Create a new empty leaf node."""
        return cls(node_id=node_id, header=BTreeNodeHeader(node_type=NodeType.LEAF))

    @property
    def is_leaf(self) -> bool:
        return True

    @property
    def num_keys(self) -> int:
        return len(self.keys)

    def search(self, key: IndexKey) -> PostingSet | None:
        """Return the posting set for a key, or None."""
        pos = bisect_left(self.keys, key)
        if pos < len(self.keys) and self.keys[pos] == key:
            return self.values[pos]
        return None

    def add(self, key: IndexKey, record_key: tuple) -> bool:
        """Add a record key under an index key, creating the entry if needed.

        Returns:
            True if a new key entry was created.
        """
        pos = bisect_left(self.keys, key)
        if pos < len(self.keys) and self.keys[pos] == key:
            self.values[pos][record_key] = None
            return False
        self.keys.insert(pos, key)
        self.values.insert(pos, {record_key: None})
        return True

    def discard(self, key: IndexKey, record_key: tuple) -> tuple[bool, bool]:
        """Remove a record key from an entry, pruning the entry when empty.

        Returns:
            (removed, pruned) flags.
        """
        pos = bisect_left(self.keys, key)
        if pos >= len(self.keys) or self.keys[pos] != key:
            return False, False
        postings = self.values[pos]
        if record_key not in postings:
            return False, False
        del postings[record_key]
        if postings:
            return True, False
        self.keys.pop(pos)
        self.values.pop(pos)
        return True, True


@dataclass
class BTreeInternalNode:
    """An internal node in a B+Tree.

    A node with N keys has N+1 children. All keys in child[i] are less than
    keys[i], and all keys in child[i+1] are >= keys[i].
    """

    node_id: NodeId
    header: BTreeNodeHeader
    keys: list[IndexKey] = field(default_factory=list)
    children: list[NodeId] = field(default_factory=list)

    @classmethod
    def new(cls, node_id: NodeId) -> BTreeInternalNode:
        """Create a new empty internal node."""
        return cls(node_id=node_id, header=BTreeNodeHeader(node_type=NodeType.INTERNAL))

    @property
    def is_leaf(self) -> bool:
        return False

    @property
    def num_keys(self) -> int:
        return len(self.keys)

    def find_child(self, key: IndexKey) -> NodeId:
        """Return the child that should contain the key."""
        return self.children[bisect_right(self.keys, key)]

    def insert_child(self, key: IndexKey, left_child: NodeId, right_child: NodeId) -> None:
        """Insert a separator key and the new right child produced by a split."""
        if not self.children:
            self.children = [left_child, right_child]
            self.keys = [key]
            return

        pos = bisect_right(self.keys, key)
        self.keys.insert(pos, key)
        self.children.insert(pos + 1, right_child)


BTreeNode = BTreeLeafNode | BTreeInternalNode
