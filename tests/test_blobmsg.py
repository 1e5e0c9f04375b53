import pytest

from ubox import blobmsg
from ubox.blob import BlobError
from ubox.blobmsg import BlobmsgBuf, BlobmsgType, Policy


def _children(buf):
    return list(blobmsg.iter_attrs(buf.head))


def _by_name(buf):
    return {blobmsg.name(c): c for c in _children(buf)}


def test_string_wire_format():
    buf = BlobmsgBuf()
    buf.add_string("foo", "bar")
    assert buf.to_bytes() == bytes.fromhex(
        "02000014" "83000010" "0003666f6f000000" "62617200"
    )


def test_hdrlen_alignment():
    assert blobmsg.hdrlen(0) == 4
    for n in range(40):
        h = blobmsg.hdrlen(n)
        assert h % 4 == 0
        assert n + 3 <= h < n + 7


def test_scalar_roundtrip():
    buf = BlobmsgBuf()
    buf.add_u8("a", 200)
    buf.add_u16("b", 60000)
    buf.add_u32("c", 4000000000)
    buf.add_u64("d", 2**63 + 5)
    buf.add_double("e", 3.25)
    buf.add_string("f", "text")
    buf.add_u8("g", 1)
    attrs = _by_name(buf)
    assert blobmsg.get_u8(attrs["a"]) == 200
    assert blobmsg.get_u16(attrs["b"]) == 60000
    assert blobmsg.get_u32(attrs["c"]) == 4000000000
    assert blobmsg.get_u64(attrs["d"]) == 2**63 + 5
    assert blobmsg.get_double(attrs["e"]) == 3.25
    assert blobmsg.get_string(attrs["f"]) == "text"
    assert blobmsg.get_bool(attrs["g"]) is True
    assert blobmsg.msg_type(attrs["f"]) == BlobmsgType.STRING
    assert all(blobmsg.check_attr(a, True) for a in attrs.values())


def test_cast_signed_and_unsigned():
    buf = BlobmsgBuf()
    buf.add_u16("n", -2)
    buf.add_u32("m", -7)
    buf.add_string("s", "x")
    attrs = _by_name(buf)
    assert blobmsg.cast_s64(attrs["n"]) == -2
    assert blobmsg.cast_u64(attrs["n"]) == 0xFFFE
    assert blobmsg.cast_s64(attrs["m"]) == -7
    assert blobmsg.cast_u64(attrs["s"]) == 0


def test_nested_containers():
    buf = BlobmsgBuf()
    t = buf.open_table("tbl")
    buf.add_u32("x", 1)
    a = buf.open_array("arr")
    buf.add_string(None, "p")
    buf.add_string(None, "q")
    buf.close_array(a)
    buf.close_table(t)
    buf.add_u8("after", 1)

    top = _children(buf)
    assert [blobmsg.name(c) for c in top] == ["tbl", "after"]
    assert sum(c.pad_len for c in top) == buf.head.len
    inner = list(blobmsg.iter_attrs(top[0]))
    assert [blobmsg.name(c) for c in inner] == ["x", "arr"]
    assert [blobmsg.get_string(c) for c in blobmsg.iter_attrs(inner[1])] == ["p", "q"]
    assert blobmsg.check_array(top[0], BlobmsgType.UNSPEC) == 2
    assert blobmsg.check_array(inner[1], BlobmsgType.STRING) == 2


def test_check_array_errors():
    buf = BlobmsgBuf()
    a = buf.open_array("arr")
    for value in (1, 2, 3):
        buf.add_u32(None, value)
    buf.close_array(a)
    t = buf.open_table("tbl")
    buf.add_u32(None, 1)
    buf.close_table(t)
    buf.add_string("s", "v")
    attrs = _by_name(buf)

    assert blobmsg.check_array(attrs["arr"], BlobmsgType.INT32) == 3
    with pytest.raises(BlobError):
        blobmsg.check_array(attrs["arr"], BlobmsgType.STRING)
    assert blobmsg.check_attr_list(attrs["arr"], BlobmsgType.STRING) is False
    assert blobmsg.check_attr_list(attrs["arr"], BlobmsgType.INT32) is True
    with pytest.raises(BlobError):
        blobmsg.check_array(attrs["s"], BlobmsgType.UNSPEC)
    with pytest.raises(BlobError):
        blobmsg.check_array(attrs["tbl"], BlobmsgType.UNSPEC)


def test_check_attr_invalid_values():
    buf = BlobmsgBuf()
    bad = buf.add_field(BlobmsgType.STRING, "s", b"abc")
    good = buf.add_field(BlobmsgType.STRING, "s", b"abc\0")
    short_int = buf.add_field(BlobmsgType.INT32, "i", b"\0\0")
    unnamed = buf.add_string(None, "v")
    assert blobmsg.check_attr(bad, False) is False
    assert blobmsg.check_attr(good, False) is True
    assert blobmsg.check_attr(short_int, False) is False
    assert blobmsg.check_attr(unnamed, True) is False
    assert blobmsg.check_attr(unnamed, False) is True
    assert blobmsg.check_attr_len(good, False, good.raw_len - 1) is False


def test_parse_policy():
    buf = BlobmsgBuf()
    buf.add_string("a", "hello")
    buf.add_string("a", "second")
    buf.add_u32("b", 7)
    buf.add_string("c", "wrong type")
    policy = [
        Policy("a", BlobmsgType.STRING),
        Policy("b", BlobmsgType.INT32),
        Policy("c", BlobmsgType.INT8),
    ]
    tb = blobmsg.parse_attr(policy, buf.head)
    assert blobmsg.get_string(tb[0]) == "hello"
    assert blobmsg.get_u32(tb[1]) == 7
    assert tb[2] is None


def test_parse_cast_int64():
    buf = BlobmsgBuf()
    buf.add_u8("n", 5)
    buf.add_string("m", "x")
    policy = [Policy("n", BlobmsgType.CAST_INT64), Policy("m", BlobmsgType.CAST_INT64)]
    tb = blobmsg.parse_attr(policy, buf.head)
    assert blobmsg.cast_u64(tb[0]) == 5
    assert tb[1] is None


def test_parse_bytes_matches_attr():
    buf = BlobmsgBuf()
    buf.add_string("a", "x")
    buf.add_u32("b", 3)
    policy = [Policy("a"), Policy("b"), Policy("missing")]
    from_attr = blobmsg.parse_attr(policy, buf.head)
    from_bytes = blobmsg.parse(policy, buf.head.data)
    assert [a.raw if a else None for a in from_bytes] == [
        a.raw if a else None for a in from_attr
    ]
    assert from_bytes[2] is None


def test_parse_rejects_empty_and_malformed():
    with pytest.raises(BlobError):
        blobmsg.parse([Policy("a")], b"", 0)
    empty = BlobmsgBuf()
    with pytest.raises(BlobError):
        blobmsg.parse_attr([Policy("a")], empty.head)
    buf = BlobmsgBuf()
    buf.add_field(BlobmsgType.STRING, "a", b"xyz")
    with pytest.raises(BlobError):
        blobmsg.parse_attr([Policy("a")], buf.head)


def test_parse_array_by_position():
    buf = BlobmsgBuf()
    a = buf.open_array("arr")
    buf.add_u32(None, 1)
    buf.add_string(None, "x")
    buf.add_u32(None, 2)
    buf.close_array(a)
    arr = _children(buf)[0]
    policy = [Policy(type=BlobmsgType.STRING), Policy(type=BlobmsgType.INT32)]
    tb = blobmsg.parse_array_attr(policy, arr)
    assert blobmsg.get_string(tb[0]) == "x"
    assert blobmsg.get_u32(tb[1]) == 2


def test_string_buffer_matches_add_string():
    direct = BlobmsgBuf()
    direct.add_string("k", "value")
    staged = BlobmsgBuf()
    staged.alloc_string_buffer("k", 16)
    staged.write_string_buffer("value")
    staged.add_string_buffer()
    assert staged.to_bytes() == direct.to_bytes()


def test_string_buffer_grows():
    buf = BlobmsgBuf()
    buf.alloc_string_buffer("k", 0)
    text = "x" * 1000
    buf.write_string_buffer(text)
    attr = buf.add_string_buffer()
    assert blobmsg.get_string(attr) == text
    assert blobmsg.check_attr(attr, True) is True
    assert _children(buf)[0].raw == attr.raw


def test_printf():
    buf = BlobmsgBuf()
    n = buf.add_printf("msg", "%d-%s", 5, "x")
    attr = _children(buf)[0]
    assert n == len("5-x")
    assert blobmsg.get_string(attr) == "5-x"
    assert blobmsg.name(attr) == "msg"


def test_add_blob_copies_attribute():
    src = BlobmsgBuf()
    src.add_u32("v", 9)
    dst = BlobmsgBuf()
    dst.add_blob(_children(src)[0])
    assert _children(dst)[0].raw == _children(src)[0].raw


def test_buf_init_resets():
    buf = BlobmsgBuf()
    buf.add_string("a", "b")
    buf.buf_init()
    assert _children(buf) == []
    assert buf.head.len == 0
    assert buf.head.id == BlobmsgType.TABLE


def test_none_handling():
    assert blobmsg.data(None) is None
    assert blobmsg.data_len(None) == 0
    assert blobmsg.get_string(None) is None
    assert list(blobmsg.iter_attrs(None)) == []