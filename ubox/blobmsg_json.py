"""Conversion between JSON values and blobmsg attributes."""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Union

from ubox import blobmsg
from ubox.blob import BlobAttr
from ubox.blobmsg import BlobmsgBuf, BlobmsgType

FormatCallback = Callable[[BlobAttr], Union[str, None]]

_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_MAX_INDENT_TABS = 16

_STRING_ESCAPES = {
    "\b": "\\b",
    "\n": "\\n",
    "\t": "\\t",
    "\r": "\\r",
    '"': '\\"',
    "\\": "\\\\",
}


def _clamp_int64(value: int) -> int:
    return max(_INT64_MIN, min(_INT64_MAX, value))


def _c_string(text: str) -> str:
    return text.split("\0", 1)[0]


def add_object(buf: BlobmsgBuf, obj: Mapping[str, Any]) -> bool:
    """Add every member of a JSON object as a named attribute."""
    if not isinstance(obj, Mapping):
        return False
    return all(add_json_element(buf, key, value) for key, value in obj.items())


def _add_array(buf: BlobmsgBuf, items: Sequence[Any]) -> bool:
    return all(add_json_element(buf, None, item) for item in items)


def add_json_element(buf: BlobmsgBuf, name: str | None, obj: Any) -> bool:
    """Add one JSON value under ``name``; return False for unsupported values."""
    if name is not None:
        name = _c_string(name)

    if isinstance(obj, Mapping):
        cookie = buf.open_table(name)
        ok = add_object(buf, obj)
        buf.close_table(cookie)
        return ok
    if isinstance(obj, (list, tuple)):
        cookie = buf.open_array(name)
        ok = _add_array(buf, obj)
        buf.close_array(cookie)
        return ok
    if isinstance(obj, str):
        buf.add_string(name, _c_string(obj))
        return True
    if isinstance(obj, bool):
        buf.add_u8(name, int(obj))
        return True
    if isinstance(obj, int):
        value = _clamp_int64(obj)
        if _INT32_MIN <= value <= _INT32_MAX:
            buf.add_u32(name, value)
        else:
            buf.add_u64(name, value)
        return True
    if isinstance(obj, float):
        buf.add_double(name, obj)
        return True
    if obj is None:
        buf.add_field(BlobmsgType.UNSPEC, name, b"")
        return True
    return False


def _add_parsed(buf: BlobmsgBuf, text: str) -> bool:
    try:
        obj = json.loads(text)
    except (ValueError, RecursionError):
        return False
    if not isinstance(obj, dict):
        return False
    return add_object(buf, obj)


def add_json_from_string(buf: BlobmsgBuf, text: str) -> bool:
    """Parse a JSON object from ``text`` and add its members."""
    return _add_parsed(buf, text)


def add_json_from_file(buf: BlobmsgBuf, path: str | os.PathLike[str]) -> bool:
    """Parse a JSON object from the file at ``path`` and add its members."""
    try:
        with open(path, "rb") as handle:
            raw = handle.read()
    except OSError:
        return False
    return _add_parsed(buf, raw.decode("utf-8", "replace"))


class _JsonWriter:
    """Accumulates the JSON text of blobmsg attributes."""

    def __init__(self, callback: FormatCallback | None, indent: int) -> None:
        self.parts: list[str] = []
        self.callback = callback
        self.indent = indent >= 0
        self.level = indent if indent >= 0 else 0

    def text(self) -> str:
        return "".join(self.parts)

    def separator(self) -> None:
        if self.indent:
            self.parts.append("\n" + "\t" * min(max(self.level, 0), _MAX_INDENT_TABS))

    def write_string(self, text: str) -> None:
        escaped = []
        for ch in text:
            if ch in _STRING_ESCAPES:
                escaped.append(_STRING_ESCAPES[ch])
            elif ord(ch) < 0x20:
                escaped.append("\\u%04x" % ord(ch))
            else:
                escaped.append(ch)
        self.parts.append('"' + "".join(escaped) + '"')

    def write_element(self, attr: BlobAttr, without_name: bool) -> None:
        if not blobmsg.check_attr(attr, False):
            return

        attr_name = blobmsg.name(attr)
        if not without_name and attr_name:
            self.write_string(attr_name)
            self.parts.append(": " if self.indent else ":")

        if self.callback is not None:
            custom = self.callback(attr)
            if custom is not None:
                self.parts.append(custom)
                return

        kind = attr.id
        if kind == BlobmsgType.UNSPEC:
            self.parts.append("null")
        elif kind == BlobmsgType.BOOL:
            self.parts.append("true" if blobmsg.get_u8(attr) else "false")
        elif kind in (BlobmsgType.INT16, BlobmsgType.INT32, BlobmsgType.INT64):
            self.parts.append(str(blobmsg.cast_s64(attr)))
        elif kind == BlobmsgType.DOUBLE:
            self.parts.append("%f" % blobmsg.get_double(attr))
        elif kind == BlobmsgType.STRING:
            self.write_string(blobmsg.get_string(attr) or "")
        elif kind == BlobmsgType.ARRAY:
            self.write_list(attr, True)
        elif kind == BlobmsgType.TABLE:
            self.write_list(attr, False)

    def write_list(self, container: BlobAttr, array: bool) -> None:
        self.parts.append("[" if array else "{")
        self.level += 1
        self.separator()
        first = True
        for child in blobmsg.iter_attrs(container):
            if not first:
                self.parts.append(",")
                self.separator()
            self.write_element(child, array)
            first = False
        self.level -= 1
        self.separator()
        self.parts.append("]" if array else "}")


def _finish(writer: _JsonWriter, attr: BlobAttr) -> str | None:
    text = writer.text()
    if not text and attr.len == 0:
        return None
    return text


def format_json(
    attr: BlobAttr,
    as_list: bool = True,
    callback: FormatCallback | None = None,
    indent: int = -1,
) -> str | None:
    """Render an attribute as JSON.

    With ``as_list`` the attribute's contents are rendered as an object
    (or an array, for an array attribute); otherwise the attribute is
    rendered as a named element. ``callback`` may supply the text for
    any value; a negative ``indent`` gives compact output.
    """
    writer = _JsonWriter(callback, indent)
    if as_list:
        array = attr.is_extended and blobmsg.msg_type(attr) == BlobmsgType.ARRAY
        writer.write_list(attr, array)
    else:
        writer.write_element(attr, False)
    return _finish(writer, attr)


def format_json_value(
    attr: BlobAttr,
    callback: FormatCallback | None = None,
    indent: int = -1,
) -> str | None:
    """Render the value of an attribute as JSON, without its name."""
    writer = _JsonWriter(callback, indent)
    writer.write_element(attr, True)
    return _finish(writer, attr)