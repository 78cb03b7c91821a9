"""Open files: the system-wide file table, pipes and device switch."""

from __future__ import annotations

import errno
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional, Tuple

from .inode import FileSystem, Inode
from .kprintf import Panic
from .layout import BSIZE, MAXOPBLOCKS, NDEV, NFILE, FsError, Stat

PIPESIZE = 512


class FileKind(Enum):
    NONE = 0
    PIPE = 1
    INODE = 2
    DEVICE = 3


@dataclass
class Device:
    """Read and write handlers for one major device number."""

    read: Optional[Callable[[int], bytes]] = None
    write: Optional[Callable[[bytes], int]] = None


class Pipe:
    """A bounded byte channel with a read end and a write end."""

    def __init__(self) -> None:
        self._data = bytearray()
        self._cond = threading.Condition()
        self.readopen = True
        self.writeopen = True

    def read(self, n: int) -> bytes:
        """Read up to n bytes, waiting while empty and a writer remains."""
        with self._cond:
            while not self._data and self.writeopen:
                self._cond.wait()
            out = bytes(self._data[:max(n, 0)])
            del self._data[:len(out)]
            self._cond.notify_all()
            return out

    def write(self, data: bytes) -> int:
        """Write all of data, waiting for room; fails if the reader is gone."""
        data = bytes(data)
        i = 0
        with self._cond:
            while i < len(data):
                if not self.readopen:
                    raise BrokenPipeError("pipe has no reader")
                room = PIPESIZE - len(self._data)
                if room == 0:
                    self._cond.notify_all()
                    self._cond.wait()
                    continue
                chunk = data[i:i + room]
                self._data += chunk
                i += len(chunk)
            self._cond.notify_all()
        return i

    def close(self, writable: bool) -> None:
        """Close the write end if writable, else the read end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()


@dataclass
class File:
    kind: FileKind = FileKind.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Optional[Pipe] = None
    ip: Optional[Inode] = None
    off: int = 0
    major: int = 0


class FileTable:
    """The system-wide table of open files."""

    def __init__(self, fs: FileSystem, devices: Optional[Mapping[int, object]] = None):
        self.fs = fs
        self.devices = devices if devices is not None else {}
        self._lock = threading.Lock()
        self._files = [File() for _ in range(NFILE)]

    def alloc(self) -> File:
        with self._lock:
            for f in self._files:
                if f.ref == 0:
                    f.ref = 1
                    return f
        raise OSError(errno.ENFILE, "file table full")

    def dup(self, f: File) -> File:
        with self._lock:
            if f.ref < 1:
                raise Panic("filedup")
            f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; the last one releases the pipe end or inode."""
        with self._lock:
            if f.ref < 1:
                raise Panic("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, writable, ip = f.kind, f.pipe, f.writable, f.ip
            f.kind = FileKind.NONE
            f.pipe = None
            f.ip = None
        if kind is FileKind.PIPE:
            pipe.close(writable)
        elif kind in (FileKind.INODE, FileKind.DEVICE):
            with self.fs.log.operation():
                self.fs.put(ip)

    def stat(self, f: File) -> Stat:
        if f.kind in (FileKind.INODE, FileKind.DEVICE):
            with self.fs.locked(f.ip):
                return self.fs.stat(f.ip)
        raise OSError(errno.EBADF, "file has no inode")

    def _device(self, f: File, op: str):
        dev = self.devices.get(f.major) if 0 <= f.major < NDEV else None
        handler = getattr(dev, op, None) if dev is not None else None
        if handler is None:
            raise OSError(errno.ENODEV, f"no {op} handler for device {f.major}")
        return handler

    def read(self, f: File, n: int) -> bytes:
        if not f.readable:
            raise OSError(errno.EBADF, "file not open for reading")
        if f.kind is FileKind.PIPE:
            return f.pipe.read(n)
        if f.kind is FileKind.DEVICE:
            return self._device(f, "read")(n)
        if f.kind is FileKind.INODE:
            with self.fs.locked(f.ip):
                data = self.fs.read(f.ip, f.off, n)
                f.off += len(data)
            return data
        raise Panic("fileread")

    def write(self, f: File, data: bytes) -> int:
        if not f.writable:
            raise OSError(errno.EBADF, "file not open for writing")
        if f.kind is FileKind.PIPE:
            return f.pipe.write(data)
        if f.kind is FileKind.DEVICE:
            return self._device(f, "write")(data)
        if f.kind is FileKind.INODE:
            # A few blocks per transaction: inode, indirect block,
            # allocation blocks and slop for unaligned writes.
            limit = ((MAXOPBLOCKS - 1 - 1 - 2) // 2) * BSIZE
            data = bytes(data)
            i = 0
            while i < len(data):
                chunk = data[i:i + limit]
                with self.fs.log.operation(), self.fs.locked(f.ip):
                    r = self.fs.write(f.ip, f.off, chunk)
                    f.off += r
                if r != len(chunk):
                    break
                i += r
            if i != len(data):
                raise FsError("short write")
            return len(data)
        raise Panic("filewrite")

    def pipe(self) -> Tuple[File, File]:
        """A new pipe as a (read end, write end) pair of files."""
        rf = self.alloc()
        try:
            wf = self.alloc()
        except BaseException:
            self.close(rf)
            raise
        p = Pipe()
        rf.kind, rf.readable, rf.writable, rf.pipe = FileKind.PIPE, True, False, p
        wf.kind, wf.readable, wf.writable, wf.pipe = FileKind.PIPE, False, True, p
        return rf, wf