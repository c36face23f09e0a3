"""Recursive Length Prefix encoding and decoding.

Items are ``bytes`` for strings and ``list`` for lists. Non-negative
integers and ``str`` values are accepted when encoding.
"""

from __future__ import annotations

from typing import Union

EMPTY_STRING_CODE = 0x80
EMPTY_LIST_CODE = 0xC0

_SHORT_LIMIT = 56

Item = Union[bytes, list]


class RlpError(ValueError):
    """Raised when data cannot be RLP-encoded or decoded."""


def _minimal_be(value: int) -> bytes:
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def length_of_length(payload_length: int) -> int:
    """Return the size in bytes of the header for a payload of this length."""
    if payload_length < 0:
        raise ValueError("payload length must not be negative")
    if payload_length < _SHORT_LIMIT:
        return 1
    return 1 + len(_minimal_be(payload_length))


def encode_header(payload_length: int, is_list: bool) -> bytes:
    """Return the RLP header for a string or list payload of the given length."""
    if payload_length < 0:
        raise ValueError("payload length must not be negative")
    offset = EMPTY_LIST_CODE if is_list else EMPTY_STRING_CODE
    if payload_length < _SHORT_LIMIT:
        return bytes([offset + payload_length])
    length_bytes = _minimal_be(payload_length)
    return bytes([offset + _SHORT_LIMIT - 1 + len(length_bytes)]) + length_bytes


def _encode_string(data: bytes) -> bytes:
    if len(data) == 1 and data[0] < EMPTY_STRING_CODE:
        return data
    return encode_header(len(data), False) + data


def encode(item) -> bytes:
    """RLP-encode ``item``."""
    if isinstance(item, (bytes, bytearray, memoryview)):
        return _encode_string(bytes(item))
    if isinstance(item, str):
        return _encode_string(item.encode("utf-8"))
    if isinstance(item, int):
        if item < 0:
            raise RlpError("cannot encode a negative integer")
        return _encode_string(_minimal_be(item))
    if isinstance(item, (list, tuple)):
        payload = b"".join(encode(element) for element in item)
        return encode_header(len(payload), True) + payload
    raise TypeError(f"cannot RLP-encode value of type {type(item).__name__}")


def _read_long_length(buf: bytes, start: int, size: int, limit: int) -> int:
    if start + size > limit:
        raise RlpError("unexpected end of input")
    length_bytes = buf[start : start + size]
    if length_bytes[0] == 0:
        raise RlpError("leading zero in length")
    length = int.from_bytes(length_bytes, "big")
    if length < _SHORT_LIMIT:
        raise RlpError("non-canonical length")
    return length


def _decode_at(buf: bytes, pos: int, limit: int) -> tuple[Item, int]:
    if pos >= limit:
        raise RlpError("unexpected end of input")
    prefix = buf[pos]
    if prefix < EMPTY_STRING_CODE:
        return buf[pos : pos + 1], pos + 1

    if prefix < EMPTY_LIST_CODE:
        is_list = False
        short_max = EMPTY_STRING_CODE + _SHORT_LIMIT - 1
        if prefix <= short_max:
            length, start = prefix - EMPTY_STRING_CODE, pos + 1
        else:
            size = prefix - short_max
            length = _read_long_length(buf, pos + 1, size, limit)
            start = pos + 1 + size
    else:
        is_list = True
        short_max = EMPTY_LIST_CODE + _SHORT_LIMIT - 1
        if prefix <= short_max:
            length, start = prefix - EMPTY_LIST_CODE, pos + 1
        else:
            size = prefix - short_max
            length = _read_long_length(buf, pos + 1, size, limit)
            start = pos + 1 + size

    end = start + length
    if end > limit:
        raise RlpError("unexpected end of input")

    if not is_list:
        data = buf[start:end]
        if length == 1 and data[0] < EMPTY_STRING_CODE:
            raise RlpError("non-canonical single byte")
        return data, end

    items: list = []
    cursor = start
    while cursor < end:
        element, cursor = _decode_at(buf, cursor, end)
        items.append(element)
    return items, end


def decode(data: bytes | bytearray | memoryview) -> Item:
    """Decode a single RLP item occupying all of ``data``."""
    buf = bytes(data)
    item, end = _decode_at(buf, 0, len(buf))
    if end != len(buf):
        raise RlpError("trailing bytes after RLP item")
    return item