import pytest

from blockfs.kprintf import Panic, kformat, panic


def test_decimal():
    assert kformat("n=%d", -42) == "n=-42"


def test_hex_is_signed():
    assert kformat("%x", 255) == "ff"
    assert kformat("%x", -1) == "-1"


def test_decimal_wraps_to_32_bits():
    assert kformat("%d", 2**31) == "-2147483648"


def test_pointer():
    assert kformat("%p", 0x1234) == "0x0000000000001234"


def test_null_string():
    assert kformat("%s", None) == "(null)"


def test_string_and_percent():
    assert kformat("%s 100%%", "done") == "done 100%"


def test_unknown_sequence_kept():
    assert kformat("%q") == "%q"


def test_trailing_percent_dropped():
    assert kformat("ab%") == "ab"


def test_null_format_panics():
    with pytest.raises(Panic, match="null fmt"):
        kformat(None)


def test_missing_argument():
    with pytest.raises(TypeError):
        kformat("%d")


def test_panic_raises():
    with pytest.raises(Panic, match="boom"):
        panic("boom")