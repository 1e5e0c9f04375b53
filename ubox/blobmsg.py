"""Named, typed attributes on top of blobs: tables, arrays and scalars.

A blobmsg attribute is an extended blob attribute whose payload starts
with a header: a 16-bit big-endian name length, the name itself and a
terminating NUL, padded to four bytes. The value follows the header.
"""

from __future__ import annotations

import enum
import struct
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from ubox.blob import (
    BLOB_ATTR_EXTENDED,
    HEADER_SIZE,
    BlobAttr,
    BlobAttrType,
    BlobBuf,
    BlobError,
    _walk,
    check_type,
)

BLOBMSG_ALIGN = 2
_NAMELEN_SIZE = 2


class BlobmsgType(enum.IntEnum):
    """Value types of blobmsg attributes (the blob attribute id)."""

    UNSPEC = 0
    ARRAY = 1
    TABLE = 2
    STRING = 3
    INT64 = 4
    INT32 = 5
    INT16 = 6
    INT8 = 7
    BOOL = 7
    DOUBLE = 8
    LAST = 8
    CAST_INT64 = 9


_BLOB_TYPE = {
    BlobmsgType.INT8: BlobAttrType.INT8,
    BlobmsgType.INT16: BlobAttrType.INT16,
    BlobmsgType.INT32: BlobAttrType.INT32,
    BlobmsgType.INT64: BlobAttrType.INT64,
    BlobmsgType.DOUBLE: BlobAttrType.DOUBLE,
    BlobmsgType.STRING: BlobAttrType.STRING,
    BlobmsgType.UNSPEC: BlobAttrType.BINARY,
}

_INT_TYPES = frozenset(
    (BlobmsgType.INT64, BlobmsgType.INT32, BlobmsgType.INT16, BlobmsgType.INT8)
)


@dataclass(frozen=True)
class Policy:
    """Expected name and type of one attribute when parsing."""

    name: str | None = None
    type: int = BlobmsgType.UNSPEC


def hdrlen(namelen: int) -> int:
    """Padded size of a name header for a name of ``namelen`` bytes."""
    size = _NAMELEN_SIZE + namelen + 1
    align = 1 << BLOBMSG_ALIGN
    return (size + align - 1) & ~(align - 1)


def _namelen(attr: BlobAttr) -> int:
    start = attr.data_offset
    return int.from_bytes(bytes(attr.buffer[start:start + _NAMELEN_SIZE]), "big")


def _name_bytes(attr: BlobAttr) -> bytes:
    start = attr.data_offset + _NAMELEN_SIZE
    return bytes(attr.buffer[start:start + _namelen(attr)])


def _data_offset(attr: BlobAttr) -> int:
    offset = attr.data_offset
    if attr.is_extended:
        offset += hdrlen(_namelen(attr))
    return offset


def name(attr: BlobAttr) -> str:
    """The attribute's name; empty for attributes without a name header."""
    if not attr.is_extended:
        return ""
    return _name_bytes(attr).split(b"\0", 1)[0].decode("utf-8", "replace")


def msg_type(attr: BlobAttr) -> int:
    """The attribute's blobmsg type."""
    return attr.id


def data(attr: BlobAttr | None) -> bytes | None:
    """The value bytes after the name header, or None for no attribute."""
    if attr is None:
        return None
    return bytes(attr.buffer[_data_offset(attr):attr.offset + attr.raw_len])


def data_len(attr: BlobAttr | None) -> int:
    """Length of the value after the name header."""
    if attr is None:
        return 0
    return attr.len - (_data_offset(attr) - attr.data_offset)


def iter_attrs(attr: BlobAttr | None) -> Iterator[BlobAttr]:
    """Yield the attributes contained in a table or array value."""
    if attr is None:
        return
    for child, _ in _walk(attr.buffer, _data_offset(attr), data_len(attr)):
        yield child


def _check_name(attr: BlobAttr, named: bool) -> bool:
    if not attr.is_extended:
        return not named
    if attr.len < _NAMELEN_SIZE:
        return False
    length = _namelen(attr)
    if named and length == 0:
        return False
    if attr.len < hdrlen(length):
        return False
    pos = attr.data_offset + _NAMELEN_SIZE + length
    return pos < len(attr.buffer) and attr.buffer[pos] == 0


def check_attr_len(attr: BlobAttr, name: bool, length: int) -> bool:
    """Validate one attribute without reading past ``length`` bytes."""
    if length < HEADER_SIZE:
        return False
    try:
        raw = attr.raw_len
    except BlobError:
        return False
    if raw < HEADER_SIZE or raw > length:
        return False
    if attr.offset + raw > len(attr.buffer):
        return False
    if not _check_name(attr, name):
        return False
    attr_id = attr.id
    if attr_id > BlobmsgType.LAST:
        return False
    blob_type = _BLOB_TYPE.get(attr_id, 0)
    if not blob_type:
        return True
    return check_type(data(attr), blob_type)


def check_attr(attr: BlobAttr, name: bool) -> bool:
    """Validate one attribute; ``name`` requires a non-empty name."""
    try:
        length = attr.raw_len
    except BlobError:
        return False
    return check_attr_len(attr, name, length)


def check_array_len(attr: BlobAttr, type: int, length: int) -> int:
    """Validate a table or array and return its number of elements.

    With a type other than UNSPEC every element must have that type.
    Raises BlobError when the container or an element is invalid.
    """
    if type > BlobmsgType.LAST:
        raise BlobError(f"invalid element type {type}")
    if not check_attr_len(attr, False, length):
        raise BlobError("invalid container attribute")
    kind = msg_type(attr)
    if kind == BlobmsgType.TABLE:
        named = True
    elif kind == BlobmsgType.ARRAY:
        named = False
    else:
        raise BlobError("attribute is neither a table nor an array")
    size = 0
    for cur, rem in _walk(attr.buffer, _data_offset(attr), data_len(attr)):
        if type != BlobmsgType.UNSPEC and msg_type(cur) != type:
            raise BlobError("element has an unexpected type")
        if not check_attr_len(cur, named, rem):
            raise BlobError("invalid element")
        size += 1
    return size


def check_array(attr: BlobAttr, type: int) -> int:
    """Validate a table or array and return its number of elements."""
    try:
        length = attr.raw_len
    except BlobError as exc:
        raise BlobError("invalid container attribute") from exc
    return check_array_len(attr, type, length)


def check_attr_list(attr: BlobAttr, type: int) -> bool:
    """Tell whether ``attr`` is a valid table or array of ``type``."""
    try:
        check_array(attr, type)
    except BlobError:
        return False
    return True


def check_attr_list_len(attr: BlobAttr, type: int, length: int) -> bool:
    """Like :func:`check_attr_list`, bounded to ``length`` bytes."""
    try:
        check_array_len(attr, type, length)
    except BlobError:
        return False
    return True


def _run_start(
    run: BlobAttr | bytes | bytearray, length: int | None
) -> tuple[bytearray, int, int]:
    if isinstance(run, BlobAttr):
        buffer, offset = run.buffer, run.offset
    else:
        buffer, offset = bytearray(run), 0
    if length is None:
        length = len(buffer) - offset
    return buffer, offset, length


def parse(
    policy: Sequence[Policy],
    data: BlobAttr | bytes | bytearray | None,
    length: int | None = None,
) -> list[BlobAttr | None]:
    """Match a run of named attributes against a policy.

    ``data`` is either encoded attributes or a BlobAttr marking the first
    attribute of a run inside a buffer. Returns one entry per policy
    item; the first matching attribute wins. Raises BlobError for empty
    input or an invalid attribute.
    """
    tb: list[BlobAttr | None] = [None] * len(policy)
    if data is None or not length and length is not None:
        raise BlobError("no data to parse")
    buffer, offset, length = _run_start(data, length)
    if not length:
        raise BlobError("no data to parse")
    wanted = [None if p.name is None else p.name.encode("utf-8") for p in policy]

    for attr, rem in _walk(buffer, offset, length):
        if not check_attr_len(attr, False, rem):
            raise BlobError("invalid attribute")
        if not attr.is_extended:
            continue
        attr_id = attr.id
        attr_name = _name_bytes(attr)
        for i, (item, pname) in enumerate(zip(policy, wanted)):
            if pname is None:
                continue
            if (
                item.type not in (BlobmsgType.UNSPEC, BlobmsgType.CAST_INT64)
                and attr_id != item.type
            ):
                continue
            if item.type == BlobmsgType.CAST_INT64 and attr_id not in _INT_TYPES:
                continue
            if len(attr_name) != len(pname) or tb[i] is not None:
                continue
            if attr_name != pname:
                continue
            tb[i] = attr
    return tb


def parse_array(
    policy: Sequence[Policy],
    data: BlobAttr | bytes | bytearray | None,
    length: int | None = None,
) -> list[BlobAttr | None]:
    """Match a run of attributes against a policy by position and type.

    Attributes whose type does not fit the next policy item are skipped.
    Raises BlobError for an invalid attribute.
    """
    tb: list[BlobAttr | None] = [None] * len(policy)
    if data is None or not policy:
        return tb
    buffer, offset, length = _run_start(data, length)
    i = 0
    for attr, rem in _walk(buffer, offset, length):
        item = policy[i]
        if item.type != BlobmsgType.UNSPEC and attr.id != item.type:
            continue
        if not check_attr_len(attr, False, rem):
            raise BlobError("invalid attribute")
        if tb[i] is not None:
            continue
        tb[i] = attr
        i += 1
        if i == len(policy):
            break
    return tb


def parse_attr(policy: Sequence[Policy], attr: BlobAttr) -> list[BlobAttr | None]:
    """Run :func:`parse` over the value of a table attribute."""
    return parse(policy, BlobAttr(attr.buffer, _data_offset(attr)), data_len(attr))


def parse_array_attr(
    policy: Sequence[Policy], attr: BlobAttr
) -> list[BlobAttr | None]:
    """Run :func:`parse_array` over the value of an array attribute."""
    return parse_array(
        policy, BlobAttr(attr.buffer, _data_offset(attr)), data_len(attr)
    )


def _unpack(attr: BlobAttr, fmt: str) -> int | float:
    size = struct.calcsize(fmt)
    if data_len(attr) < size:
        raise BlobError(f"attribute value shorter than {size} bytes")
    return struct.unpack_from(fmt, attr.buffer, _data_offset(attr))[0]


def get_u8(attr: BlobAttr) -> int:
    return _unpack(attr, ">B")


def get_bool(attr: BlobAttr) -> bool:
    return bool(_unpack(attr, ">B"))


def get_u16(attr: BlobAttr) -> int:
    return _unpack(attr, ">H")


def get_u32(attr: BlobAttr) -> int:
    return _unpack(attr, ">I")


def get_u64(attr: BlobAttr) -> int:
    return _unpack(attr, ">Q")


def cast_u64(attr: BlobAttr) -> int:
    """Read any integer attribute as unsigned; 0 for other types."""
    kind = msg_type(attr)
    if kind == BlobmsgType.INT64:
        return get_u64(attr)
    if kind == BlobmsgType.INT32:
        return get_u32(attr)
    if kind == BlobmsgType.INT16:
        return get_u16(attr)
    if kind == BlobmsgType.INT8:
        return get_u8(attr)
    return 0


def cast_s64(attr: BlobAttr) -> int:
    """Read any integer attribute as signed; 0 for other types."""
    kind = msg_type(attr)
    if kind == BlobmsgType.INT64:
        return _unpack(attr, ">q")
    if kind == BlobmsgType.INT32:
        return _unpack(attr, ">i")
    if kind == BlobmsgType.INT16:
        return _unpack(attr, ">h")
    if kind == BlobmsgType.INT8:
        return _unpack(attr, ">b")
    return 0


def get_double(attr: BlobAttr) -> float:
    return _unpack(attr, ">d")


def get_string(attr: BlobAttr | None) -> str | None:
    """The value up to its terminating NUL as text, or None."""
    if attr is None:
        return None
    return data(attr).split(b"\0", 1)[0].decode("utf-8", "replace")


class BlobmsgBuf(BlobBuf):
    """A blob buffer whose top level is a table of named attributes."""

    def __init__(self) -> None:
        super().__init__(BlobmsgType.TABLE)

    def buf_init(self) -> None:
        """Reset the buffer to an empty table."""
        self.init(BlobmsgType.TABLE)

    def _new(self, type: int, name: str | None, payload_len: int) -> tuple[BlobAttr, int]:
        raw_name = (name or "").encode("utf-8")
        header_len = hdrlen(len(raw_name))
        attr = self.new(type, header_len + payload_len)
        attr.id_len = attr.id_len | BLOB_ATTR_EXTENDED
        start = attr.data_offset
        header = struct.pack(">H", len(raw_name) & 0xFFFF) + raw_name
        self.buffer[start:start + header_len] = header + bytes(header_len - len(header))
        return attr, start + header_len

    def add_field(self, type: int, name: str | None, data: bytes = b"") -> BlobAttr:
        """Append an attribute with the given type, name and raw value."""
        payload = bytes(data)
        attr, start = self._new(type, name, len(payload))
        self.buffer[start:start + len(payload)] = payload
        return attr

    def add_u8(self, name: str | None, value: int) -> BlobAttr:
        return self.add_field(BlobmsgType.INT8, name, struct.pack(">B", value & 0xFF))

    def add_u16(self, name: str | None, value: int) -> BlobAttr:
        return self.add_field(
            BlobmsgType.INT16, name, struct.pack(">H", value & 0xFFFF)
        )

    def add_u32(self, name: str | None, value: int) -> BlobAttr:
        return self.add_field(
            BlobmsgType.INT32, name, struct.pack(">I", value & 0xFFFFFFFF)
        )

    def add_u64(self, name: str | None, value: int) -> BlobAttr:
        return self.add_field(
            BlobmsgType.INT64, name, struct.pack(">Q", value & 0xFFFFFFFFFFFFFFFF)
        )

    def add_double(self, name: str | None, value: float) -> BlobAttr:
        return self.add_field(BlobmsgType.DOUBLE, name, struct.pack(">d", value))

    def add_string(self, name: str | None, text: str) -> BlobAttr:
        return self.add_field(
            BlobmsgType.STRING, name, text.encode("utf-8") + b"\0"
        )

    def add_blob(self, attr: BlobAttr) -> BlobAttr:
        """Append a copy of another blobmsg attribute."""
        return self.add_field(msg_type(attr), name(attr), data(attr))

    def open_nested(self, name: str | None, array: bool) -> int:
        """Open a table or array; pass the returned cookie to the close call."""
        kind = BlobmsgType.ARRAY if array else BlobmsgType.TABLE
        cookie = self._require_head().offset
        raw_name = (name or "").encode("utf-8")
        attr, _ = self._new(kind, name, 0)
        head = self._require_head()
        head.set_raw_len(head.pad_len - hdrlen(len(raw_name)))
        self._head = attr.offset
        return cookie

    def open_array(self, name: str | None) -> int:
        return self.open_nested(name, True)

    def open_table(self, name: str | None) -> int:
        return self.open_nested(name, False)

    def close_array(self, cookie: int) -> None:
        self.nest_end(cookie)

    def close_table(self, cookie: int) -> None:
        self.nest_end(cookie)

    def _pending_string(self) -> BlobAttr:
        return BlobAttr(self.buffer, self._require_head().next_offset)

    def alloc_string_buffer(self, name: str | None, maxlen: int) -> int:
        """Start a string attribute with room for ``maxlen`` bytes.

        Returns the buffer offset of the string value. The attribute is
        committed by :meth:`add_string_buffer`.
        """
        maxlen += 1
        attr, start = self._new(BlobmsgType.STRING, name, maxlen)
        self.buffer[start:start + maxlen] = bytes(maxlen)
        head = self._require_head()
        head.set_raw_len(head.pad_len - attr.pad_len)
        attr.set_raw_len(attr.raw_len - maxlen)
        return start

    def realloc_string_buffer(self, maxlen: int) -> int:
        """Make room for ``maxlen`` bytes in the pending string value."""
        attr = self._pending_string()
        end = attr.offset + attr.pad_len
        required = maxlen + 1 - (len(self.buffer) - end)
        if required > 0:
            self.grow(required)
        return _data_offset(attr)

    def write_string_buffer(self, text: str) -> int:
        """Store ``text`` as the pending string value."""
        raw = text.encode("utf-8")
        start = self.realloc_string_buffer(len(raw))
        self.buffer[start:start + len(raw) + 1] = raw + b"\0"
        return start

    def add_string_buffer(self) -> BlobAttr:
        """Commit the pending string attribute."""
        attr = self._pending_string()
        start = _data_offset(attr)
        end = self.buffer.find(b"\0", start)
        if end < 0:
            raise BlobError("unterminated string buffer")
        attr.set_raw_len(attr.raw_len + end - start + 1)
        attr.fill_pad()
        head = self._require_head()
        head.set_raw_len(head.raw_len + attr.pad_len)
        return attr

    def add_printf(self, name: str | None, fmt: str, *args: object) -> int:
        """Append a string built with %-formatting; return its length."""
        text = fmt % args
        raw = text.encode("utf-8")
        self.alloc_string_buffer(name, len(raw))
        self.write_string_buffer(text)
        self.add_string_buffer()
        return len(raw)