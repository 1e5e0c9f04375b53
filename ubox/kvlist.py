"""A sorted key/value store holding private copies of its values."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

from ubox.avl import AvlTree, strcmp as _strcmp
from ubox.blob import BlobAttr


def strlen(data: str | bytes) -> int:
    """Length of a NUL-terminated string, the terminator included."""
    raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    end = raw.find(b"\0")
    return (len(raw) if end < 0 else end) + 1


def blob_len(data: BlobAttr | bytes) -> int:
    """Padded length of an encoded blob attribute."""
    attr = data if isinstance(data, BlobAttr) else BlobAttr.from_bytes(data)
    return attr.pad_len


def _copy(data: Any, length: int) -> Any:
    if isinstance(data, str):
        return data.split("\0", 1)[0]
    if isinstance(data, BlobAttr):
        raw = bytes(data.buffer[data.offset:data.offset + length])
        return BlobAttr.from_bytes(raw + bytes(length - len(raw)))
    return bytes(data)[:length]


class KvList:
    """Values stored under string names, iterated in name order."""

    def __init__(self, get_len: Callable[[Any], int] = strlen) -> None:
        self.get_len = get_len
        self._tree = AvlTree(_strcmp, allow_dups=False)

    def get(self, name: str) -> Any:
        """Return the value stored under ``name``, or None."""
        node = self._tree.find(name)
        return None if node is None else node.value

    def set(self, name: str, data: Any) -> None:
        """Store a copy of ``data`` under ``name``, replacing any old value."""
        value = _copy(data, self.get_len(data))
        self.delete(name)
        self._tree.insert(name, value)

    def delete(self, name: str) -> bool:
        """Remove ``name``; return whether it was present."""
        node = self._tree.find(name)
        if node is None:
            return False
        self._tree.delete(node)
        return True

    def free(self) -> None:
        """Remove every entry."""
        self._tree.clear()

    def __iter__(self) -> Iterator[tuple[str, Any]]:
        for node in self._tree:
            yield node.key, node.value

    def __len__(self) -> int:
        return len(self._tree)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._tree.find(name) is not None