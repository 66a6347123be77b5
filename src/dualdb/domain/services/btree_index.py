"""B+Tree index implementation.

An ordered multimap from composite keys to sets of record keys. Supports
point lookup, range scans across the linked leaves, and removal that prunes
empty entries.

Key features:
    - O(log n) search, insert, delete
    - Range scans via linked leaf nodes
    - One entry per distinct key tuple, holding every matching record

Deletion does not merge underfull nodes. Emptied leaves stay linked and are
skipped by scans; separators in internal nodes remain valid bounds.

References:
    - Bayer & McCreight, "B+Trees" (1972)
"""

from __future__ import annotations

import threading
from typing import Iterator

from dualdb.domain.entities.btree_node import (
    INVALID_NODE_ID,
    BTreeInternalNode,
    BTreeLeafNode,
    BTreeNode,
    IndexKey,
    NodeId,
)

DEFAULT_MAX_KEYS = 32


class BTreeIndex:
    """An in-memory B+Tree keyed by composite sort keys.

    Attributes:
        max_keys: Maximum keys per node before it splits.
    """

    def __init__(self, max_keys: int = DEFAULT_MAX_KEYS) -> None:
        if max_keys < 3:
            raise ValueError(f"max_keys must be at least 3, got {max_keys}")
        self.max_keys = max_keys
        self._lock = threading.RLock()
        self._next_node_id = 1

        self._nodes: dict[NodeId, BTreeNode] = {}
        self.root_id = NodeId(0)
        self._nodes[self.root_id] = BTreeLeafNode.new(self.root_id)

        self._height = 1
        self._num_keys = 0
        self._num_entries = 0

    @property
    def height(self) -> int:
        return self._height

    @property
    def num_keys(self) -> int:
        """Number of distinct key tuples."""
        return self._num_keys

    @property
    def num_entries(self) -> int:
        """Number of (key, record) pairs."""
        return self._num_entries

    def _allocate_node_id(self) -> NodeId:
        node_id = NodeId(self._next_node_id)
        self._next_node_id += 1
        return node_id

    def _find_leaf(self, key: IndexKey) -> BTreeLeafNode:
        """Traverse from the root to the leaf that should contain the key."""
        node = self._nodes[self.root_id]
        while not node.is_leaf:
            assert isinstance(node, BTreeInternalNode)
            node = self._nodes[node.find_child(key)]
        assert isinstance(node, BTreeLeafNode)
        return node

    def search(self, key: IndexKey) -> list[tuple]:
        """Return the record keys stored under a key (empty if absent)."""
        with self._lock:
            postings = self._find_leaf(key).search(key)
            return list(postings) if postings else []

    def insert(self, key: IndexKey, record_key: tuple) -> None:
        """Add a record key under an index key."""
        with self._lock:
            leaf = self._find_leaf(key)
            postings = leaf.search(key)
            if postings is not None and record_key in postings:
                return
            if leaf.add(key, record_key):
                self._num_keys += 1
            self._num_entries += 1

            if leaf.num_keys > self.max_keys:
                self._split_leaf(leaf)

    def delete(self, key: IndexKey, record_key: tuple) -> bool:
        """Remove a record key from an index key.

        Returns:
            True if the pair was present.
        """
        with self._lock:
            removed, pruned = self._find_leaf(key).discard(key, record_key)
            if removed:
                self._num_entries -= 1
            if pruned:
                self._num_keys -= 1
            return removed

    def _split_leaf(self, leaf: BTreeLeafNode) -> None:
        """Move the upper half of an overfull leaf into a new right sibling."""
        new_leaf = BTreeLeafNode.new(self._allocate_node_id())

        mid = len(leaf.keys) // 2
        new_leaf.keys = leaf.keys[mid:]
        new_leaf.values = leaf.values[mid:]
        leaf.keys = leaf.keys[:mid]
        leaf.values = leaf.values[:mid]

        new_leaf.header.next_id = leaf.header.next_id
        new_leaf.header.prev_id = leaf.node_id
        leaf.header.next_id = new_leaf.node_id
        if new_leaf.header.next_id != INVALID_NODE_ID:
            next_node = self._nodes[new_leaf.header.next_id]
            next_node.header.prev_id = new_leaf.node_id

        self._nodes[new_leaf.node_id] = new_leaf
        self._insert_into_parent(leaf, new_leaf.keys[0], new_leaf)

    def _insert_into_parent(self, left: BTreeNode, key: IndexKey, right: BTreeNode) -> None:
        """Register a split with the parent, growing a new root if needed."""
        parent_id = left.header.parent_id

        if parent_id == INVALID_NODE_ID:
            new_root = BTreeInternalNode.new(self._allocate_node_id())
            new_root.insert_child(key, left.node_id, right.node_id)
            left.header.parent_id = new_root.node_id
            right.header.parent_id = new_root.node_id
            self._nodes[new_root.node_id] = new_root
            self.root_id = new_root.node_id
            self._height += 1
            return

        parent = self._nodes[parent_id]
        assert isinstance(parent, BTreeInternalNode)
        parent.insert_child(key, left.node_id, right.node_id)
        right.header.parent_id = parent_id

        if parent.num_keys > self.max_keys:
            self._split_internal(parent)

    def _split_internal(self, node: BTreeInternalNode) -> None:
        """Split an internal node; the middle key moves up to the parent."""
        new_node = BTreeInternalNode.new(self._allocate_node_id())

        mid = len(node.keys) // 2
        separator = node.keys[mid]

        new_node.keys = node.keys[mid + 1 :]
        new_node.children = node.children[mid + 1 :]
        node.keys = node.keys[:mid]
        node.children = node.children[: mid + 1]

        for child_id in new_node.children:
            self._nodes[child_id].header.parent_id = new_node.node_id

        self._nodes[new_node.node_id] = new_node
        self._insert_into_parent(node, separator, new_node)

    def _leftmost_leaf(self) -> BTreeLeafNode:
        node = self._nodes[self.root_id]
        while not node.is_leaf:
            assert isinstance(node, BTreeInternalNode)
            node = self._nodes[node.children[0]]
        assert isinstance(node, BTreeLeafNode)
        return node

    def range_scan(
        self,
        low: IndexKey | None = None,
        high: IndexKey | None = None,
        include_low: bool = True,
        include_high: bool = True,
    ) -> Iterator[tuple[IndexKey, list[tuple]]]:
        """Scan keys between two bounds in key order.

        The scan is materialised under the tree lock, so the caller may
        consume it after concurrent modifications without observing them.

        Args:
            low: Lower bound (None for unbounded).
            high: Upper bound (None for unbounded).
            include_low: Include the low bound in results.
            include_high: Include the high bound in results.

        Yields:
            (key, record_keys) pairs in key order.
        """
        with self._lock:
            leaf: BTreeLeafNode | None = (
                self._find_leaf(low) if low is not None else self._leftmost_leaf()
            )
            results: list[tuple[IndexKey, list[tuple]]] = []
            while leaf is not None:
                for i, key in enumerate(leaf.keys):
                    if low is not None:
                        if key < low or (not include_low and key == low):
                            continue
                    if high is not None:
                        if key > high or (not include_high and key == high):
                            return iter(results)
                    results.append((key, list(leaf.values[i])))

                if leaf.header.next_id == INVALID_NODE_ID:
                    break
                next_node = self._nodes[leaf.header.next_id]
                leaf = next_node if isinstance(next_node, BTreeLeafNode) else None
            return iter(results)

    def scan_all(self) -> Iterator[tuple[IndexKey, list[tuple]]]:
        """Scan every entry in key order."""
        return self.range_scan()
