"""On-disk formats, system-wide limits and the small enumerations shared by the file system."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import ClassVar, List

# System limits.
NPROC = 64
NCPU = 8
NOFILE = 16
NFILE = 100
NINODE = 50
NDEV = 10
ROOTDEV = 1
MAXARG = 32
MAXOPBLOCKS = 10
LOGSIZE = MAXOPBLOCKS * 3
NBUF = MAXOPBLOCKS * 3
FSSIZE = 2000
MAXPATH = 128

# File system format.
ROOTINO = 1
BSIZE = 1024
FSMAGIC = 0x10203040
NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT
DIRSIZ = 14
BPB = BSIZE * 8

# Major device number of the console.
CONSOLE = 1


class FsError(Exception):
    """Raised when file-system data or a request is not valid."""


_SUPERBLOCK = struct.Struct("<8I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

IPB = BSIZE // _DINODE.size


@dataclass
class Superblock:
    """Layout of the disk: where the log, inodes, bitmap and data live."""

    magic: int = FSMAGIC
    size: int = 0
    nblocks: int = 0
    ninodes: int = 0
    nlog: int = 0
    logstart: int = 0
    inodestart: int = 0
    bmapstart: int = 0

    SIZE: ClassVar[int] = _SUPERBLOCK.size

    def pack(self) -> bytes:
        return _SUPERBLOCK.pack(
            self.magic, self.size, self.nblocks, self.ninodes,
            self.nlog, self.logstart, self.inodestart, self.bmapstart,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "Superblock":
        if len(data) < _SUPERBLOCK.size:
            raise FsError("superblock data too short")
        return cls(*_SUPERBLOCK.unpack_from(data))


@dataclass
class DiskInode:
    """An inode as stored on disk."""

    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: List[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    SIZE: ClassVar[int] = _DINODE.size

    def pack(self) -> bytes:
        if len(self.addrs) != NDIRECT + 1:
            raise FsError(f"inode needs {NDIRECT + 1} block addresses")
        return _DINODE.pack(self.type, self.major, self.minor, self.nlink,
                            self.size, *self.addrs)

    @classmethod
    def unpack(cls, data: bytes) -> "DiskInode":
        if len(data) < _DINODE.size:
            raise FsError("inode data too short")
        type_, major_, minor_, nlink, size, *addrs = _DINODE.unpack_from(data)
        return cls(type_, major_, minor_, nlink, size, list(addrs))


@dataclass
class Dirent:
    """A directory entry; inum 0 marks a free slot."""

    inum: int = 0
    name: str = ""

    SIZE: ClassVar[int] = _DIRENT.size

    def pack(self) -> bytes:
        # struct pads with NULs or truncates to DIRSIZ, as strncpy does.
        return _DIRENT.pack(self.inum, self.name.encode("utf-8", "surrogateescape"))

    @classmethod
    def unpack(cls, data: bytes) -> "Dirent":
        if len(data) < _DIRENT.size:
            raise FsError("directory entry data too short")
        inum, raw = _DIRENT.unpack_from(data)
        name = raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")
        return cls(inum, name)


@dataclass
class Stat:
    """Metadata about a file as reported by fstat."""

    dev: int
    ino: int
    type: int
    nlink: int
    size: int


class FileType(IntEnum):
    DIR = 1
    FILE = 2
    DEVICE = 3


class OpenFlag(IntFlag):
    RDONLY = 0x000
    WRONLY = 0x001
    RDWR = 0x002
    CREATE = 0x200
    TRUNC = 0x400


class Syscall(IntEnum):
    FORK = 1
    EXIT = 2
    WAIT = 3
    PIPE = 4
    READ = 5
    KILL = 6
    EXEC = 7
    FSTAT = 8
    CHDIR = 9
    DUP = 10
    GETPID = 11
    SBRK = 12
    SLEEP = 13
    UPTIME = 14
    OPEN = 15
    WRITE = 16
    MKNOD = 17
    UNLINK = 18
    LINK = 19
    MKDIR = 20
    CLOSE = 21
    CLONE = 22


def inode_block(inum: int, sb: Superblock) -> int:
    """Block holding inode number inum."""
    return inum // IPB + sb.inodestart


def bitmap_block(b: int, sb: Superblock) -> int:
    """Block of the free map holding the bit for block b."""
    return b // BPB + sb.bmapstart


def mkdev(major: int, minor: int) -> int:
    return ((major << 16) | minor) & 0xFFFFFFFF


def major(dev: int) -> int:
    return (dev >> 16) & 0xFFFF


def minor(dev: int) -> int:
    return dev & 0xFFFF