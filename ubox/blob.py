"""Tagged binary attributes: building, walking and validating blobs.

An attribute is a 32-bit big-endian header (7-bit id, an "extended" flag
and a 24-bit length that includes the header) followed by its payload,
padded to a multiple of four bytes. Attributes may nest.
"""

from __future__ import annotations

import enum
import struct
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass

BLOB_ATTR_ID_MASK = 0x7F000000
BLOB_ATTR_ID_SHIFT = 24
BLOB_ATTR_LEN_MASK = 0x00FFFFFF
BLOB_ATTR_ALIGN = 4
BLOB_ATTR_EXTENDED = 0x80000000
HEADER_SIZE = 4


def pad_length(length: int) -> int:
    """Round ``length`` up to the attribute alignment."""
    return (length + BLOB_ATTR_ALIGN - 1) & ~(BLOB_ATTR_ALIGN - 1)


class BlobError(Exception):
    """Raised when a blob cannot be built or read."""


class BlobAttrType(enum.IntEnum):
    """Payload types understood by :func:`check_type`."""

    UNSPEC = 0
    NESTED = 1
    BINARY = 2
    STRING = 3
    INT8 = 4
    INT16 = 5
    INT32 = 6
    INT64 = 7
    DOUBLE = 8
    LAST = 9


_TYPE_MINLEN = {
    BlobAttrType.STRING: 1,
    BlobAttrType.INT8: 1,
    BlobAttrType.INT16: 2,
    BlobAttrType.INT32: 4,
    BlobAttrType.INT64: 8,
    BlobAttrType.DOUBLE: 8,
}


@dataclass(frozen=True)
class BlobAttrInfo:
    """Validation rules for one attribute id when parsing."""

    type: int = BlobAttrType.UNSPEC
    minlen: int = 0
    maxlen: int = 0
    validate: Callable[[BlobAttrInfo, BlobAttr], bool] | None = None


class BlobAttr:
    """A view of one attribute inside a shared byte buffer."""

    __slots__ = ("buffer", "offset")

    def __init__(self, buffer: bytearray, offset: int = 0) -> None:
        self.buffer = buffer
        self.offset = offset

    @classmethod
    def from_bytes(cls, data: bytes) -> BlobAttr:
        """Wrap a copy of encoded attribute bytes."""
        return cls(bytearray(data), 0)

    # -- header -------------------------------------------------------

    @property
    def id_len(self) -> int:
        end = self.offset + HEADER_SIZE
        if self.offset < 0 or end > len(self.buffer):
            raise BlobError("truncated attribute header")
        return int.from_bytes(self.buffer[self.offset:end], "big")

    @id_len.setter
    def id_len(self, value: int) -> None:
        self.buffer[self.offset:self.offset + HEADER_SIZE] = (
            value & 0xFFFFFFFF
        ).to_bytes(HEADER_SIZE, "big")

    @property
    def id(self) -> int:
        return (self.id_len & BLOB_ATTR_ID_MASK) >> BLOB_ATTR_ID_SHIFT

    @property
    def is_extended(self) -> bool:
        return bool(self.id_len & BLOB_ATTR_EXTENDED)

    @property
    def len(self) -> int:
        """Payload length."""
        return (self.id_len & BLOB_ATTR_LEN_MASK) - HEADER_SIZE

    @property
    def raw_len(self) -> int:
        """Length including the header."""
        return self.id_len & BLOB_ATTR_LEN_MASK

    @property
    def pad_len(self) -> int:
        """Padded length including the header."""
        return pad_length(self.raw_len)

    @property
    def data_offset(self) -> int:
        return self.offset + HEADER_SIZE

    @property
    def next_offset(self) -> int:
        return self.offset + self.pad_len

    @property
    def data(self) -> bytes:
        return bytes(self.buffer[self.data_offset:self.offset + self.raw_len])

    @property
    def raw(self) -> bytes:
        return bytes(self.buffer[self.offset:self.offset + self.raw_len])

    def set_raw_len(self, length: int) -> None:
        """Replace the length field, keeping id and flags."""
        length &= BLOB_ATTR_LEN_MASK
        self.id_len = (self.id_len & ~BLOB_ATTR_LEN_MASK) | length

    def fill_pad(self) -> None:
        """Zero the padding bytes after the payload."""
        start = self.offset + self.raw_len
        end = self.offset + self.pad_len
        if end > start:
            self.buffer[start:end] = bytes(end - start)

    # -- payload accessors -------------------------------------------

    def _unpack(self, fmt: str) -> int:
        size = struct.calcsize(fmt)
        if self.len < size:
            raise BlobError(f"attribute payload shorter than {size} bytes")
        return struct.unpack_from(fmt, self.buffer, self.data_offset)[0]

    def get_u8(self) -> int:
        return self._unpack(">B")

    def get_u16(self) -> int:
        return self._unpack(">H")

    def get_u32(self) -> int:
        return self._unpack(">I")

    def get_u64(self) -> int:
        return self._unpack(">Q")

    def get_int8(self) -> int:
        return self._unpack(">b")

    def get_int16(self) -> int:
        return self._unpack(">h")

    def get_int32(self) -> int:
        return self._unpack(">i")

    def get_int64(self) -> int:
        return self._unpack(">q")

    def get_string(self) -> str:
        """Return the payload up to its terminating NUL as text."""
        return self.data.split(b"\0", 1)[0].decode("utf-8", "replace")

    def children(self) -> Iterator[BlobAttr]:
        """Yield the attributes nested in this one's payload."""
        for child, _ in _walk(self.buffer, self.data_offset, self.len):
            yield child

    def memdup(self) -> BlobAttr:
        """Return an independent copy of this attribute, padding included."""
        size = self.pad_len
        data = bytes(self.buffer[self.offset:self.offset + size])
        return BlobAttr.from_bytes(data + bytes(size - len(data)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BlobAttr):
            return NotImplemented
        return attr_equal(self, other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"BlobAttr(id={self.id}, len={self.len}, offset={self.offset})"


def _walk(
    buffer: bytearray, offset: int, rem: int, limit: int | None = None
) -> Iterator[tuple[BlobAttr, int]]:
    """Yield (attribute, remaining length) pairs of a run of attributes."""
    while rem >= HEADER_SIZE:
        if limit is not None and rem >= limit:
            return
        attr = BlobAttr(buffer, offset)
        try:
            size = attr.pad_len
        except BlobError:
            return
        if size > rem or size < HEADER_SIZE:
            return
        yield attr, rem
        rem -= size
        offset += size


class BlobBuf:
    """A growable buffer in which attributes are built."""

    def __init__(self, id: int = 0) -> None:
        self._buf = bytearray()
        self._head: int | None = None
        self.init(id)

    @property
    def buffer(self) -> bytearray:
        return self._buf

    def init(self, id: int = 0) -> None:
        """Start a new, empty top-level attribute with the given id."""
        self._head = 0
        self._add(0, id, 0)

    def free(self) -> None:
        """Drop the buffer contents."""
        self._buf = bytearray()
        self._head = None

    def grow(self, required: int) -> None:
        """Enlarge the buffer by at least ``required`` bytes."""
        if len(self._buf) + required > BLOB_ATTR_LEN_MASK:
            raise BlobError("blob buffer size limit exceeded")
        delta = ((required // 256) + 1) * 256
        self._buf.extend(bytes(delta))

    @property
    def head(self) -> BlobAttr | None:
        """The attribute currently being filled, or None after free()."""
        if self._head is None:
            return None
        return BlobAttr(self._buf, self._head)

    def _require_head(self) -> BlobAttr:
        head = self.head
        if head is None:
            raise BlobError("blob buffer is not initialised")
        return head

    def _add(self, pos: int, id: int, payload: int) -> BlobAttr:
        required = pos + pad_length(HEADER_SIZE + payload) - len(self._buf)
        if required > 0:
            self.grow(required)
        attr = BlobAttr(self._buf, pos)
        attr.id_len = ((id << BLOB_ATTR_ID_SHIFT) & BLOB_ATTR_ID_MASK) | (
            (payload + HEADER_SIZE) & BLOB_ATTR_LEN_MASK
        )
        attr.fill_pad()
        return attr

    def new(self, id: int, payload: int) -> BlobAttr:
        """Append an attribute with room for ``payload`` bytes."""
        head = self._require_head()
        attr = self._add(head.next_offset, id, payload)
        head.set_raw_len(head.pad_len + attr.pad_len)
        return attr

    def put(self, id: int, data: bytes = b"") -> BlobAttr:
        """Append an attribute holding ``data``."""
        data = bytes(data)
        attr = self.new(id, len(data))
        start = attr.data_offset
        self._buf[start:start + len(data)] = data
        return attr

    def put_raw(self, data: bytes) -> BlobAttr:
        """Append an already encoded attribute."""
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise BlobError("raw attribute shorter than its header")
        head = self._require_head()
        attr = self._add(head.next_offset, 0, len(data) - HEADER_SIZE)
        head.set_raw_len(head.pad_len + len(data))
        self._buf[attr.offset:attr.offset + len(data)] = data
        return attr

    def put_string(self, id: int, text: str) -> BlobAttr:
        return self.put(id, text.encode("utf-8") + b"\0")

    def put_u8(self, id: int, value: int) -> BlobAttr:
        return self.put(id, struct.pack(">B", value & 0xFF))

    def put_u16(self, id: int, value: int) -> BlobAttr:
        return self.put(id, struct.pack(">H", value & 0xFFFF))

    def put_u32(self, id: int, value: int) -> BlobAttr:
        return self.put(id, struct.pack(">I", value & 0xFFFFFFFF))

    def put_u64(self, id: int, value: int) -> BlobAttr:
        return self.put(id, struct.pack(">Q", value & 0xFFFFFFFFFFFFFFFF))

    put_int8 = put_u8
    put_int16 = put_u16
    put_int32 = put_u32
    put_int64 = put_u64

    def nest_start(self, id: int) -> int:
        """Open a nested attribute; pass the returned cookie to nest_end."""
        cookie = self._require_head().offset
        self._head = self.new(id, 0).offset
        return cookie

    def nest_end(self, cookie: int) -> None:
        """Close the nested attribute opened by nest_start."""
        attr = BlobAttr(self._buf, cookie)
        attr.set_raw_len(attr.pad_len + self._require_head().len)
        self._head = cookie

    def to_bytes(self) -> bytes:
        """Return the encoded head attribute, padding included."""
        head = self._require_head()
        return bytes(self._buf[head.offset:head.offset + head.pad_len])


def check_type(data: bytes, type: int) -> bool:
    """Tell whether ``data`` is a valid payload for the given type."""
    data = bytes(data)
    if type < 0 or type >= BlobAttrType.LAST:
        return False
    minlen = _TYPE_MINLEN.get(type, 0)
    if BlobAttrType.INT8 <= type <= BlobAttrType.INT64:
        if len(data) != minlen:
            return False
    elif len(data) < minlen:
        return False
    if type == BlobAttrType.STRING and data[-1] != 0:
        return False
    return True


def _parse_attr(
    attr: BlobAttr,
    attr_len: int,
    tb: list[BlobAttr | None],
    info: Sequence[BlobAttrInfo | None] | None,
    max: int,
) -> None:
    if attr_len < HEADER_SIZE:
        return
    id = attr.id
    if id >= max:
        return
    length = attr.raw_len
    if length > attr_len or length < HEADER_SIZE:
        return
    if info is not None:
        entry = info[id] if id < len(info) else None
        if entry is None:
            entry = BlobAttrInfo()
        if entry.type < BlobAttrType.LAST and not check_type(attr.data, entry.type):
            return
        if entry.minlen and length < entry.minlen:
            return
        if entry.maxlen and length > entry.maxlen:
            return
        if entry.validate is not None and not entry.validate(entry, attr):
            return
    tb[id] = attr


def _table_size(info: Sequence[BlobAttrInfo | None] | None, max: int | None) -> int:
    if max is not None:
        return max
    if info is None:
        raise ValueError("either info or max must be given")
    return len(info)


def parse(
    attr: BlobAttr | None,
    info: Sequence[BlobAttrInfo | None] | None = None,
    max: int | None = None,
) -> list[BlobAttr | None]:
    """Index the children of a trusted attribute by id.

    Returns a list of length ``max``; the last valid child of each id wins.
    """
    size = _table_size(info, max)
    tb: list[BlobAttr | None] = [None] * size
    if attr is None:
        return tb
    for pos, rem in _walk(attr.buffer, attr.data_offset, attr.len):
        _parse_attr(pos, rem, tb, info, size)
    return tb


def parse_untrusted(
    attr: BlobAttr | None,
    attr_len: int,
    info: Sequence[BlobAttrInfo | None] | None = None,
    max: int | None = None,
) -> list[BlobAttr | None]:
    """Like :func:`parse`, but never trusts lengths beyond ``attr_len``."""
    size = _table_size(info, max)
    tb: list[BlobAttr | None] = [None] * size
    if attr is None or attr_len < HEADER_SIZE:
        return tb
    try:
        length = attr.raw_len
    except BlobError:
        return tb
    if attr_len < length:
        return tb
    for pos, rem in _walk(attr.buffer, attr.data_offset, length - HEADER_SIZE, length):
        _parse_attr(pos, rem, tb, info, size)
    return tb


def attr_equal(a1: BlobAttr | None, a2: BlobAttr | None) -> bool:
    """Compare two attributes byte for byte over their padded length."""
    if a1 is None and a2 is None:
        return True
    if a1 is None or a2 is None:
        return False
    size = a1.pad_len
    if size != a2.pad_len:
        return False
    return bytes(a1.buffer[a1.offset:a1.offset + size]) == bytes(
        a2.buffer[a2.offset:a2.offset + size]
    )