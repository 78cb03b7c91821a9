"""A memory-backed disk and an LRU cache of locked disk-block buffers."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, List, Mapping, Optional

from .kprintf import Panic
from .layout import BSIZE, FSSIZE, NBUF, FsError


class RamDisk:
    """A disk held in memory, addressed in BSIZE blocks."""

    def __init__(self, data: bytes = b"", nblocks: int = FSSIZE):
        if len(data) > nblocks * BSIZE:
            raise ValueError("image larger than the disk")
        self.nblocks = nblocks
        self._image = bytearray(nblocks * BSIZE)
        self._image[: len(data)] = data

    def _offset(self, blockno: int) -> int:
        if not 0 <= blockno < self.nblocks:
            raise Panic("ramdiskrw: blockno too big")
        return blockno * BSIZE

    def read(self, blockno: int) -> bytes:
        off = self._offset(blockno)
        return bytes(self._image[off: off + BSIZE])

    def write(self, blockno: int, data: bytes) -> None:
        if len(data) != BSIZE:
            raise ValueError(f"block data must be {BSIZE} bytes")
        off = self._offset(blockno)
        self._image[off: off + BSIZE] = data


class Buffer:
    """A cached copy of one disk block, held by at most one thread at a time."""

    def __init__(self) -> None:
        self.dev: Optional[int] = None
        self.blockno = 0
        self.data = bytearray(BSIZE)
        self.valid = False
        self.refcnt = 0
        self._lock = threading.Lock()
        self._owner: Optional[int] = None

    @property
    def held(self) -> bool:
        """Whether the calling thread holds this buffer."""
        return self._lock.locked() and self._owner == threading.get_ident()

    def _acquire(self) -> None:
        self._lock.acquire()
        self._owner = threading.get_ident()

    def _release(self) -> None:
        self._owner = None
        self._lock.release()

    def __repr__(self) -> str:
        return (f"Buffer(dev={self.dev}, blockno={self.blockno}, "
                f"valid={self.valid}, refcnt={self.refcnt})")


class BufferCache:
    """Caches disk blocks; buffers are kept in most-recently-used order."""

    def __init__(self, disks: Mapping[int, RamDisk], nbuf: int = NBUF):
        if nbuf < 1:
            raise ValueError("the cache needs at least one buffer")
        self._disks = disks
        self._lock = threading.Lock()
        # Index 0 is the most recently used buffer.
        self._lru: List[Buffer] = [Buffer() for _ in range(nbuf)]

    def _disk(self, dev: int) -> RamDisk:
        try:
            return self._disks[dev]
        except KeyError:
            raise FsError(f"no such device: {dev}") from None

    def _get(self, dev: int, blockno: int) -> Buffer:
        with self._lock:
            for b in self._lru:
                if b.dev == dev and b.blockno == blockno:
                    b.refcnt += 1
                    break
            else:
                for b in reversed(self._lru):
                    if b.refcnt == 0:
                        b.dev = dev
                        b.blockno = blockno
                        b.valid = False
                        b.refcnt = 1
                        break
                else:
                    raise Panic("bget: no buffers")
        b._acquire()
        return b

    def read(self, dev: int, blockno: int) -> Buffer:
        """Return a locked buffer holding the block's contents."""
        disk = self._disk(dev)
        b = self._get(dev, blockno)
        if not b.valid:
            try:
                b.data[:] = disk.read(blockno)
            except BaseException:
                self.release(b)
                raise
            b.valid = True
        return b

    def write(self, buf: Buffer) -> None:
        """Write a held buffer's contents to disk."""
        if not buf.held:
            raise Panic("bwrite")
        self._disk(buf.dev).write(buf.blockno, bytes(buf.data))

    def release(self, buf: Buffer) -> None:
        """Release a held buffer; unused buffers move to the front of the list."""
        if not buf.held:
            raise Panic("brelse")
        buf._release()
        with self._lock:
            buf.refcnt -= 1
            if buf.refcnt == 0:
                self._lru.remove(buf)
                self._lru.insert(0, buf)

    def pin(self, buf: Buffer) -> None:
        with self._lock:
            buf.refcnt += 1

    def unpin(self, buf: Buffer) -> None:
        with self._lock:
            buf.refcnt -= 1

    @contextmanager
    def block(self, dev: int, blockno: int) -> Iterator[Buffer]:
        """Hold a block's buffer for the duration of a with-block."""
        buf = self.read(dev, blockno)
        try:
            yield buf
        finally:
            self.release(buf)