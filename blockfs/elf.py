"""Parsing of executable images and layout of a new program's memory and stack."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Flag, auto
from typing import Iterable, List, Tuple, Union

from .layout import MAXARG

PGSIZE = 4096
ELF_MAGIC = 0x464C457F  # "\x7FELF" read little-endian

ELF_PROG_LOAD = 1

ELF_PROG_FLAG_EXEC = 1
ELF_PROG_FLAG_WRITE = 2
ELF_PROG_FLAG_READ = 4

_EHDR = struct.Struct("<I12sHHIQQQIHHHHHH")
_PHDR = struct.Struct("<IIQQQQQQ")
_U64 = 1 << 64
_NAME_SIZE = 16


class ElfError(Exception):
    """Raised when an executable image cannot be loaded."""


class Perm(Flag):
    """Page permissions a loaded segment asks for."""

    W = auto()
    X = auto()


def flags_to_perm(flags: int) -> Perm:
    perm = Perm.X if flags & ELF_PROG_FLAG_EXEC else Perm(0)
    if flags & ELF_PROG_FLAG_WRITE:
        perm |= Perm.W
    return perm


def _round_up(value: int) -> int:
    return (value + PGSIZE - 1) // PGSIZE * PGSIZE


@dataclass
class ElfHeader:
    magic: int
    ident: bytes
    type: int
    machine: int
    version: int
    entry: int
    phoff: int
    shoff: int
    flags: int
    ehsize: int
    phentsize: int
    phnum: int
    shentsize: int
    shnum: int
    shstrndx: int

    @classmethod
    def unpack(cls, data: bytes) -> "ElfHeader":
        if len(data) < _EHDR.size:
            raise ElfError("file header too short")
        return cls(*_EHDR.unpack_from(data))


@dataclass
class ProgramHeader:
    type: int
    flags: int
    off: int
    vaddr: int
    paddr: int
    filesz: int
    memsz: int
    align: int

    @classmethod
    def unpack(cls, data: bytes) -> "ProgramHeader":
        if len(data) < _PHDR.size:
            raise ElfError("program header too short")
        return cls(*_PHDR.unpack_from(data))


@dataclass
class Segment:
    """A loadable segment: file contents at vaddr, zero-filled up to memsz."""

    vaddr: int
    memsz: int
    perm: Perm
    data: bytes


@dataclass
class ElfImage:
    entry: int
    size: int
    segments: List[Segment]

    @property
    def stack_top(self) -> int:
        """Top of the user stack: a guard page and a stack page past the image."""
        return _round_up(self.size) + 2 * PGSIZE


@dataclass
class UserStack:
    """A prepared user stack page; argv holds the argument string addresses."""

    sp: int
    argc: int
    argv: Tuple[int, ...]
    base: int
    page: bytes


def load_image(data: bytes) -> ElfImage:
    """Check an executable and collect the segments it loads."""
    elf = ElfHeader.unpack(data)
    if elf.magic != ELF_MAGIC:
        raise ElfError("bad magic number")
    size = 0
    segments = []
    for i in range(elf.phnum):
        off = elf.phoff + i * _PHDR.size
        ph = ProgramHeader.unpack(data[off: off + _PHDR.size])
        if ph.type != ELF_PROG_LOAD:
            continue
        if ph.memsz < ph.filesz:
            raise ElfError("segment memory size smaller than file size")
        if ph.vaddr + ph.memsz >= _U64:
            raise ElfError("segment wraps the address space")
        if ph.vaddr % PGSIZE != 0:
            raise ElfError("segment not page aligned")
        contents = data[ph.off: ph.off + ph.filesz]
        if len(contents) != ph.filesz:
            raise ElfError("segment extends past end of file")
        size = max(size, ph.vaddr + ph.memsz)
        segments.append(Segment(ph.vaddr, ph.memsz, flags_to_perm(ph.flags),
                                bytes(contents)))
    return ElfImage(elf.entry, size, segments)


def build_stack(argv: Iterable[Union[str, bytes]], stack_top: int) -> UserStack:
    """Push argument strings and the argv pointer table onto a one-page stack."""
    if stack_top < PGSIZE:
        raise ValueError("stack top below one page")
    base = stack_top - PGSIZE
    page = bytearray(PGSIZE)
    sp = stack_top
    pointers: List[int] = []
    for arg in argv:
        if len(pointers) >= MAXARG:
            raise ElfError("too many arguments")
        raw = arg.encode("utf-8") if isinstance(arg, str) else bytes(arg)
        raw = raw.split(b"\0", 1)[0] + b"\0"
        sp -= len(raw)
        sp -= sp % 16
        if sp < base:
            raise ElfError("arguments do not fit on the stack")
        page[sp - base: sp - base + len(raw)] = raw
        pointers.append(sp)
    table = pointers + [0]
    sp -= len(table) * 8
    sp -= sp % 16
    if sp < base:
        raise ElfError("arguments do not fit on the stack")
    packed = struct.pack(f"<{len(table)}Q", *table)
    page[sp - base: sp - base + len(packed)] = packed
    return UserStack(sp, len(pointers), tuple(pointers), base, bytes(page))


def program_name(path: str) -> str:
    """The last path component, cut to fit the process name field."""
    last = path.rsplit("/", 1)[-1]
    raw = last.encode("utf-8")[: _NAME_SIZE - 1]
    return raw.decode("utf-8", "ignore")