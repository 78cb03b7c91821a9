"""Minimal formatted output understanding %d, %x, %p, %s and %%, plus panic."""

from __future__ import annotations

_DIGITS = "0123456789abcdef"


class Panic(Exception):
    """An unrecoverable kernel-level error."""


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def _format_int(value: int, base: int) -> str:
    value = _int32(value)
    negative = value < 0
    x = -value if negative else value
    digits = []
    while True:
        digits.append(_DIGITS[x % base])
        x //= base
        if x == 0:
            break
    if negative:
        digits.append("-")
    return "".join(reversed(digits))


def kformat(fmt, *args) -> str:
    """Format args with fmt; integers are taken as 32-bit signed values."""
    if fmt is None:
        raise Panic("null fmt")
    out = []
    chars = iter(fmt)
    values = iter(args)

    def next_arg():
        try:
            return next(values)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    for c in chars:
        if c != "%":
            out.append(c)
            continue
        c = next(chars, None)
        if c is None:
            break
        if c == "d":
            out.append(_format_int(next_arg(), 10))
        elif c == "x":
            out.append(_format_int(next_arg(), 16))
        elif c == "p":
            out.append(f"0x{next_arg() & 0xFFFFFFFFFFFFFFFF:016x}")
        elif c == "s":
            s = next_arg()
            if s is None:
                s = "(null)"
            elif isinstance(s, (bytes, bytearray)):
                s = bytes(s).decode("latin-1")
            out.append(s)
        elif c == "%":
            out.append("%")
        else:
            out.append("%" + c)
    return "".join(out)


def panic(message: str):
    """Stop with an unrecoverable error."""
    raise Panic(message)