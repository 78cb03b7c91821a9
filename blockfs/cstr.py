"""Helpers for fixed-size, NUL-terminated byte strings."""

from __future__ import annotations

from typing import Union

BytesLike = Union[bytes, bytearray, str]


def _as_bytes(value: BytesLike) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8", "surrogateescape")
    return bytes(value)


def cstring(data: BytesLike) -> bytes:
    """The bytes before the first NUL, or all of them if there is none."""
    return _as_bytes(data).split(b"\0", 1)[0]


def strncmp(a: BytesLike, b: BytesLike, n: int) -> int:
    """Compare at most n bytes of two C strings; the end of data acts as NUL."""
    a, b = _as_bytes(a), _as_bytes(b)
    for i in range(max(n, 0)):
        ca = a[i] if i < len(a) else 0
        cb = b[i] if i < len(b) else 0
        if ca != cb:
            return ca - cb
        if ca == 0:
            return 0
    return 0


def strncpy(src: BytesLike, n: int) -> bytes:
    """An n-byte field holding src, NUL padded; not terminated if src fills it."""
    if n <= 0:
        return b""
    text = cstring(src)[:n]
    return text + bytes(n - len(text))


def safestrcpy(src: BytesLike, n: int) -> bytes:
    """The string a buffer of n bytes holds after a terminated copy of src."""
    if n <= 0:
        return b""
    return cstring(src)[: n - 1]