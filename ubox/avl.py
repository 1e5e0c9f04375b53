"""Balanced binary search tree with an ordered, duplicate-aware node list.

Every node is also linked into a doubly linked list in key order, which
makes in-order iteration, neighbour lookups and range walks cheap. When
duplicates are allowed, nodes with equal keys are kept in insertion order;
only the first of them (the "leader") is part of the tree structure.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterator
from typing import Any

Comparator = Callable[[Any, Any], int]

_LEN_MASK = 0x00FFFFFF
_HEADER_SIZE = 4


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def strcmp(k1: str | bytes, k2: str | bytes) -> int:
    """Compare two strings (or byte strings); return -1, 0 or 1."""
    return (k1 > k2) - (k1 < k2)


def _blob_raw_len(data: bytes) -> int:
    return int.from_bytes(bytes(data[:_HEADER_SIZE]), "big") & _LEN_MASK


def blobcmp(k1: bytes, k2: bytes) -> int:
    """Compare two encoded blob attributes over the shorter declared length."""
    length = min(_blob_raw_len(k1), _blob_raw_len(k2))
    a = bytes(k1[:length])
    b = bytes(k2[:length])
    return (a > b) - (a < b)


class FindMode(enum.Enum):
    """How :meth:`AvlTree.lookup` matches a key."""

    EQUAL = "equal"
    LESSEQUAL = "lessequal"
    GREATEREQUAL = "greaterequal"


class AvlNode:
    """A tree element holding a key and an associated value."""

    __slots__ = (
        "key",
        "value",
        "parent",
        "left",
        "right",
        "balance",
        "leader",
        "_prev",
        "_next",
        "_tree",
    )

    def __init__(self, key: Any, value: Any = None) -> None:
        self.key = key
        self.value = value
        self.parent: AvlNode | None = None
        self.left: AvlNode | None = None
        self.right: AvlNode | None = None
        self.balance = 0
        self.leader = True
        self._prev: AvlNode = self
        self._next: AvlNode = self
        self._tree: AvlTree | None = None

    def __repr__(self) -> str:
        return f"AvlNode(key={self.key!r}, value={self.value!r})"


class AvlTree:
    """An AVL tree whose nodes are also kept in an ordered linked list."""

    def __init__(self, compare: Comparator = strcmp, allow_dups: bool = False) -> None:
        self.compare = compare
        self.allow_dups = allow_dups
        self._head = AvlNode(None)
        self._root: AvlNode | None = None
        self._count = 0

    # -- list helpers -------------------------------------------------

    def _link_after(self, pos: AvlNode, node: AvlNode) -> None:
        nxt = pos._next
        node._prev = pos
        node._next = nxt
        pos._next = node
        nxt._prev = node
        node._tree = self
        self._count += 1

    def _link_before(self, pos: AvlNode, node: AvlNode) -> None:
        self._link_after(pos._prev, node)

    def _unlink(self, node: AvlNode) -> None:
        node._prev._next = node._next
        node._next._prev = node._prev
        node._prev = node._next = node
        node.parent = node.left = node.right = None
        node._tree = None
        self._count -= 1

    def _check_member(self, node: AvlNode) -> None:
        if node is None or node._tree is not self:
            raise ValueError("node does not belong to this tree")

    # -- lookup -------------------------------------------------------

    def _find_rec(self, key: Any) -> tuple[AvlNode, int]:
        node = self._root
        assert node is not None
        while True:
            diff = self.compare(key, node.key)
            if diff < 0 and node.left is not None:
                node = node.left
            elif diff > 0 and node.right is not None:
                node = node.right
            else:
                return node, diff

    def find(self, key: Any) -> AvlNode | None:
        """Return the first node with an equal key, or None."""
        if self._root is None:
            return None
        node, diff = self._find_rec(key)
        return node if diff == 0 else None

    def find_lessequal(self, key: Any) -> AvlNode | None:
        """Return the last node whose key is less than or equal to ``key``."""
        if self._root is None:
            return None
        node, diff = self._find_rec(key)
        while diff < 0:
            if node._prev is self._head:
                return None
            node = node._prev
            diff = self.compare(key, node.key)
        nxt = node
        while diff >= 0:
            node = nxt
            if node._next is self._head:
                break
            nxt = node._next
            diff = self.compare(key, nxt.key)
        return node

    def find_greaterequal(self, key: Any) -> AvlNode | None:
        """Return the first node whose key is greater than or equal to ``key``."""
        if self._root is None:
            return None
        node, diff = self._find_rec(key)
        while diff > 0:
            if node._next is self._head:
                return None
            node = node._next
            diff = self.compare(key, node.key)
        nxt = node
        while diff <= 0:
            node = nxt
            if node._prev is self._head:
                break
            nxt = node._prev
            diff = self.compare(key, nxt.key)
        return node

    def lookup(self, key: Any, mode: FindMode = FindMode.EQUAL) -> AvlNode | None:
        """Look ``key`` up using the given :class:`FindMode`."""
        if mode is FindMode.EQUAL:
            return self.find(key)
        if mode is FindMode.LESSEQUAL:
            return self.find_lessequal(key)
        if mode is FindMode.GREATEREQUAL:
            return self.find_greaterequal(key)
        raise ValueError(f"unknown find mode: {mode!r}")

    # -- insertion ----------------------------------------------------

    def insert(self, key: Any, value: Any = None) -> AvlNode:
        """Insert a new node and return it.

        Raises KeyError if the key exists and duplicates are not allowed.
        """
        new = AvlNode(key, value)

        if self._root is None:
            self._link_after(self._head, new)
            self._root = new
            return new

        node, _ = self._find_rec(key)

        last = node
        while last._next is not self._head:
            nxt = last._next
            if nxt.leader:
                break
            last = nxt

        diff = self.compare(key, node.key)

        if diff == 0:
            if not self.allow_dups:
                raise KeyError(key)
            new.leader = False
            self._link_after(last, new)
            return new

        if node.balance == 1:
            self._link_before(node, new)
            node.balance = 0
            new.parent = node
            node.left = new
            return new

        if node.balance == -1:
            self._link_after(last, new)
            node.balance = 0
            new.parent = node
            node.right = new
            return new

        if diff < 0:
            self._link_before(node, new)
            node.balance = -1
            new.parent = node
            node.left = new
        else:
            self._link_after(last, new)
            node.balance = 1
            new.parent = node
            node.right = new
        self._post_insert(node)
        return new

    def _rotate_right(self, node: AvlNode) -> None:
        left = node.left
        parent = node.parent
        left.parent = parent
        node.parent = left
        if parent is None:
            self._root = left
        elif parent.left is node:
            parent.left = left
        else:
            parent.right = left
        node.left = left.right
        left.right = node
        if node.left is not None:
            node.left.parent = node
        node.balance += 1 - min(left.balance, 0)
        left.balance += 1 + max(node.balance, 0)

    def _rotate_left(self, node: AvlNode) -> None:
        right = node.right
        parent = node.parent
        right.parent = parent
        node.parent = right
        if parent is None:
            self._root = right
        elif parent.left is node:
            parent.left = right
        else:
            parent.right = right
        node.right = right.left
        right.left = node
        if node.right is not None:
            node.right.parent = node
        node.balance -= 1 + max(right.balance, 0)
        right.balance -= 1 - min(node.balance, 0)

    def _post_insert(self, node: AvlNode) -> None:
        while True:
            parent = node.parent
            if parent is None:
                return
            if node is parent.left:
                parent.balance -= 1
                if parent.balance == 0:
                    return
                if parent.balance == -1:
                    node = parent
                    continue
                if node.balance == -1:
                    self._rotate_right(parent)
                    return
                self._rotate_left(node)
                self._rotate_right(node.parent.parent)
                return
            parent.balance += 1
            if parent.balance == 0:
                return
            if parent.balance == 1:
                node = parent
                continue
            if node.balance == 1:
                self._rotate_left(parent)
                return
            self._rotate_right(node)
            self._rotate_left(node.parent.parent)
            return

    # -- deletion -----------------------------------------------------

    def delete(self, node: AvlNode) -> None:
        """Remove ``node`` from the tree."""
        self._check_member(node)
        if node.leader:
            nxt = node._next
            if self.allow_dups and nxt is not self._head and not nxt.leader:
                nxt.leader = True
                nxt.balance = node.balance
                parent, left, right = node.parent, node.left, node.right
                nxt.parent, nxt.left, nxt.right = parent, left, right
                if parent is None:
                    self._root = nxt
                elif node is parent.left:
                    parent.left = nxt
                else:
                    parent.right = nxt
                if left is not None:
                    left.parent = nxt
                if right is not None:
                    right.parent = nxt
            else:
                self._delete_worker(node)
        self._unlink(node)

    def _post_delete(self, node: AvlNode) -> None:
        while True:
            parent = node.parent
            if parent is None:
                return
            if node is parent.left:
                parent.balance += 1
                if parent.balance == 0:
                    node = parent
                    continue
                if parent.balance == 1:
                    return
                if parent.right.balance == 0:
                    self._rotate_left(parent)
                    return
                if parent.right.balance == 1:
                    self._rotate_left(parent)
                    node = parent.parent
                    continue
                self._rotate_right(parent.right)
                self._rotate_left(parent)
                node = parent.parent
                continue
            parent.balance -= 1
            if parent.balance == 0:
                node = parent
                continue
            if parent.balance == -1:
                return
            if parent.left.balance == 0:
                self._rotate_right(parent)
                return
            if parent.left.balance == -1:
                self._rotate_right(parent)
                node = parent.parent
                continue
            self._rotate_left(parent.left)
            self._rotate_right(parent)
            node = parent.parent

    def _rebalance_after_leaf(self, parent: AvlNode) -> None:
        # parent.balance has just been adjusted for a removed leaf child
        if parent.balance in (1, -1):
            return
        if parent.balance == 0:
            self._post_delete(parent)
            return
        if parent.balance == 2:
            if parent.right.balance == 0:
                self._rotate_left(parent)
                return
            if parent.right.balance == 1:
                self._rotate_left(parent)
                self._post_delete(parent.parent)
                return
            self._rotate_right(parent.right)
            self._rotate_left(parent)
            self._post_delete(parent.parent)
            return
        if parent.left.balance == 0:
            self._rotate_right(parent)
            return
        if parent.left.balance == -1:
            self._rotate_right(parent)
            self._post_delete(parent.parent)
            return
        self._rotate_left(parent.left)
        self._rotate_right(parent)
        self._post_delete(parent.parent)

    def _delete_worker(self, node: AvlNode) -> None:
        parent = node.parent

        if node.left is None and node.right is None:
            if parent is None:
                self._root = None
                return
            if parent.left is node:
                parent.left = None
                parent.balance += 1
            else:
                parent.right = None
                parent.balance -= 1
            self._rebalance_after_leaf(parent)
            return

        if node.left is None:
            child = node.right
            child.parent = parent
            if parent is None:
                self._root = child
                return
            if parent.left is node:
                parent.left = child
            else:
                parent.right = child
            self._post_delete(child)
            return

        if node.right is None:
            child = node.left
            child.parent = parent
            if parent is None:
                self._root = child
                return
            if parent.left is node:
                parent.left = child
            else:
                parent.right = child
            self._post_delete(child)
            return

        minimum = node.right
        while minimum.left is not None:
            minimum = minimum.left
        self._delete_worker(minimum)
        parent = node.parent

        minimum.balance = node.balance
        minimum.parent = parent
        minimum.left = node.left
        minimum.right = node.right
        if minimum.left is not None:
            minimum.left.parent = minimum
        if minimum.right is not None:
            minimum.right.parent = minimum

        if parent is None:
            self._root = minimum
        elif parent.left is node:
            parent.left = minimum
        else:
            parent.right = minimum

    # -- navigation ---------------------------------------------------

    @property
    def root(self) -> AvlNode | None:
        """The root node of the tree structure, or None when empty."""
        return self._root

    def first(self) -> AvlNode | None:
        """Return the node with the smallest key, or None when empty."""
        node = self._head._next
        return None if node is self._head else node

    def last(self) -> AvlNode | None:
        """Return the node with the largest key, or None when empty."""
        node = self._head._prev
        return None if node is self._head else node

    def next(self, node: AvlNode) -> AvlNode | None:
        """Return the node after ``node`` in key order, or None."""
        self._check_member(node)
        nxt = node._next
        return None if nxt is self._head else nxt

    def prev(self, node: AvlNode) -> AvlNode | None:
        """Return the node before ``node`` in key order, or None."""
        self._check_member(node)
        prv = node._prev
        return None if prv is self._head else prv

    def is_first(self, node: AvlNode) -> bool:
        return self._head._next is node

    def is_last(self, node: AvlNode) -> bool:
        return self._head._prev is node

    def is_empty(self) -> bool:
        return self._count == 0

    def iter_range(
        self, first: AvlNode | None = None, last: AvlNode | None = None
    ) -> Iterator[AvlNode]:
        """Yield nodes from ``first`` to ``last`` inclusive.

        The node just yielded may be deleted while iterating.
        """
        if self.is_empty():
            return
        node = first if first is not None else self.first()
        stop = last if last is not None else self.last()
        self._check_member(node)
        self._check_member(stop)
        while True:
            nxt = node._next
            yield node
            if node is stop or nxt is self._head:
                return
            node = nxt

    def iter_range_reverse(
        self, first: AvlNode | None = None, last: AvlNode | None = None
    ) -> Iterator[AvlNode]:
        """Yield nodes from ``last`` back to ``first`` inclusive.

        The node just yielded may be deleted while iterating.
        """
        if self.is_empty():
            return
        stop = first if first is not None else self.first()
        node = last if last is not None else self.last()
        self._check_member(node)
        self._check_member(stop)
        while True:
            prv = node._prev
            yield node
            if node is stop or prv is self._head:
                return
            node = prv

    def clear(self) -> None:
        """Remove every node at once, without rebalancing."""
        node = self._head._next
        while node is not self._head:
            nxt = node._next
            node._prev = node._next = node
            node.parent = node.left = node.right = None
            node._tree = None
            node = nxt
        self._head._prev = self._head._next = self._head
        self._root = None
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[AvlNode]:
        return self.iter_range()

    def __reversed__(self) -> Iterator[AvlNode]:
        return self.iter_range_reverse()