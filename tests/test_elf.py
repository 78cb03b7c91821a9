import struct

import pytest

from blockfs.elf import (
    ELF_MAGIC,
    ELF_PROG_LOAD,
    PGSIZE,
    ElfError,
    ElfHeader,
    Perm,
    ProgramHeader,
    build_stack,
    flags_to_perm,
    load_image,
    program_name,
)
from blockfs.layout import MAXARG

EHDR = "<I12sHHIQQQIHHHHHH"
PHDR = "<IIQQQQQQ"


def make_elf(segments, entry=0x40, magic=ELF_MAGIC):
    """segments: list of (type, flags, vaddr, content, memsz)."""
    ehsize = struct.calcsize(EHDR)
    phsize = struct.calcsize(PHDR)
    header = struct.pack(EHDR, magic, b"\x02\x01\x01" + bytes(9), 2, 0xF3, 1,
                         entry, ehsize, 0, 0, ehsize, phsize, len(segments),
                         0, 0, 0)
    data_off = ehsize + phsize * len(segments)
    phdrs = b""
    blobs = b""
    for type_, flags, vaddr, content, memsz in segments:
        phdrs += struct.pack(PHDR, type_, flags, data_off + len(blobs), vaddr,
                             vaddr, len(content), memsz, PGSIZE)
        blobs += content
    return header + phdrs + blobs


CODE = b"\x13\x00\x00\x00"


def test_header_unpack():
    data = make_elf([], entry=0x1000)
    hdr = ElfHeader.unpack(data)
    assert hdr.magic == ELF_MAGIC
    assert hdr.entry == 0x1000
    assert hdr.phnum == 0


def test_header_too_short():
    with pytest.raises(ElfError):
        ElfHeader.unpack(b"\x7fELF")


def test_program_header_too_short():
    with pytest.raises(ElfError):
        ProgramHeader.unpack(b"\x00" * 8)


@pytest.mark.parametrize("flags,perm", [
    (1, Perm.X),
    (2, Perm.W),
    (3, Perm.X | Perm.W),
    (4, Perm(0)),
])
def test_flags_to_perm(flags, perm):
    assert flags_to_perm(flags) == perm


def test_load_image():
    data = make_elf([(ELF_PROG_LOAD, 5, 0, CODE, 8), (4, 0, 0, b"xx", 2)],
                    entry=0)
    image = load_image(data)
    assert image.entry == 0
    assert image.size == 8
    assert len(image.segments) == 1
    seg = image.segments[0]
    assert seg.data == CODE
    assert seg.memsz == 8
    assert seg.perm == Perm.X
    assert image.stack_top == 3 * PGSIZE


def test_bad_magic():
    with pytest.raises(ElfError):
        load_image(make_elf([], magic=0))


def test_memsz_smaller_than_filesz():
    with pytest.raises(ElfError):
        load_image(make_elf([(ELF_PROG_LOAD, 1, 0, CODE, 2)]))


def test_unaligned_segment():
    with pytest.raises(ElfError):
        load_image(make_elf([(ELF_PROG_LOAD, 1, 16, CODE, 4)]))


def test_segment_past_end_of_file():
    data = make_elf([(ELF_PROG_LOAD, 1, 0, CODE, 4)])
    with pytest.raises(ElfError):
        load_image(data[:-2])


def test_build_stack_layout():
    top = 3 * PGSIZE
    stack = build_stack(["echo", "hi"], top)
    assert stack.argc == 2
    assert stack.sp % 16 == 0
    assert stack.base <= stack.sp < top
    first = stack.argv[0] - stack.base
    assert stack.page[first: first + 5] == b"echo\0"
    table_off = stack.sp - stack.base
    table = struct.unpack_from("<3Q", stack.page, table_off)
    assert table == stack.argv + (0,)


def test_build_stack_too_many_arguments():
    with pytest.raises(ElfError):
        build_stack(["a"] * (MAXARG + 1), 3 * PGSIZE)


def test_build_stack_argument_too_long():
    with pytest.raises(ElfError):
        build_stack(["x" * PGSIZE], 3 * PGSIZE)


def test_program_name():
    assert program_name("/usr/bin/echo") == "echo"
    assert program_name("plain") == "plain"
    assert program_name("a" * 20) == "a" * 15
    assert program_name("dir/") == ""