from concurrent.futures import ThreadPoolExecutor

import pytest

from blockfs.console import BACKSPACE_ECHO, INPUT_BUF_SIZE, Console


@pytest.fixture
def echoed():
    return []


@pytest.fixture
def console(echoed):
    return Console(echoed.append)


def type_text(console, text):
    for ch in text:
        console.interrupt(ch)


@pytest.mark.parametrize("typed,line", [
    ("hi\r", b"hi\n"),
    ("ab\x08c\n", b"ac\n"),
    ("ab\x7f\n", b"a\n"),
    ("abc\x15d\n", b"d\n"),
])
def test_line_editing(console, typed, line):
    type_text(console, typed)
    assert console.read(10) == line


def test_carriage_return_echoed_as_newline(console, echoed):
    type_text(console, "hi\r")
    line = console.read(10)
    assert line == b"hi\n"
    assert b"".join(echoed) == line


def test_backspace_echo(console, echoed):
    type_text(console, "ab\x08")
    assert b"".join(echoed) == b"ab" + BACKSPACE_ECHO
    type_text(console, "\n")
    assert console.read(10) == b"a\n"


def test_end_of_file(console):
    type_text(console, "ab\x04")
    assert console.read(10) == b"ab"
    assert console.read(10) == b""


def test_partial_reads(console):
    type_text(console, "abc\n")
    assert console.read(2) == b"ab"
    assert console.read(10) == b"c\n"


def test_full_buffer_is_released_and_extra_dropped(console):
    type_text(console, "a" * (INPUT_BUF_SIZE + 2))
    assert console.read(INPUT_BUF_SIZE) == b"a" * INPUT_BUF_SIZE


def test_procdump_called():
    calls = []
    Console(procdump=lambda: calls.append(True)).interrupt(0x10)
    assert calls == [True]


def test_write(console, echoed):
    assert console.write(b"hello") == 5
    assert b"".join(echoed) == b"hello"


def test_killed_reader(console):
    console.kill()
    with pytest.raises(InterruptedError):
        console.read(4)


def test_reader_blocks_until_line(console):
    with ThreadPoolExecutor(max_workers=1) as pool:
        pending = pool.submit(console.read, 10)
        assert not pending.done()
        type_text(console, "ok\n")
        assert pending.result(timeout=5) == b"ok\n"


def test_bad_character(console):
    with pytest.raises(ValueError):
        console.interrupt(300)