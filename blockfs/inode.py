"""Block allocation, inodes and file contents on a logged block device."""

from __future__ import annotations

import struct
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from .bio import BufferCache
from .kprintf import Panic
from .layout import (BPB, BSIZE, FSMAGIC, MAXFILE, NDIRECT, NINDIRECT, NINODE,
                     ROOTDEV, DiskInode, FsError, IPB, Stat, Superblock,
                     bitmap_block, inode_block)
from .log import Log

_ADDR = struct.Struct("<I")
_UINT_MAX = 0xFFFFFFFF


class Inode:
    """In-memory copy of an inode; the fields below ``valid`` need the lock."""

    def __init__(self) -> None:
        self.dev: Optional[int] = None
        self.inum = 0
        self.ref = 0
        self.valid = False
        self.type = 0
        self.major = 0
        self.minor = 0
        self.nlink = 0
        self.size = 0
        self.addrs: List[int] = [0] * (NDIRECT + 1)
        self._lock = threading.Lock()
        self._owner: Optional[int] = None

    @property
    def held(self) -> bool:
        """Whether the calling thread holds this inode's lock."""
        return self._lock.locked() and self._owner == threading.get_ident()

    def _acquire(self) -> None:
        self._lock.acquire()
        self._owner = threading.get_ident()

    def _release(self) -> None:
        self._owner = None
        self._lock.release()

    def __repr__(self) -> str:
        return (f"Inode(dev={self.dev}, inum={self.inum}, ref={self.ref}, "
                f"type={self.type}, nlink={self.nlink}, size={self.size})")


def _dinode_slice(inum: int) -> slice:
    off = (inum % IPB) * DiskInode.SIZE
    return slice(off, off + DiskInode.SIZE)


class FileSystem:
    """The file system on one device: blocks, inodes and their contents.

    Operations that change the disk must run inside ``self.log.operation()``.
    """

    def __init__(self, cache: BufferCache, dev: int = ROOTDEV):
        self.cache = cache
        self.dev = dev
        with cache.block(dev, 1) as bp:
            self.sb = Superblock.unpack(bytes(bp.data))
        if self.sb.magic != FSMAGIC:
            raise Panic("invalid file system")
        self.log = Log(cache, dev, self.sb)
        self._itable_lock = threading.Lock()
        self._inodes = [Inode() for _ in range(NINODE)]

    # Blocks.

    def _zero_block(self, bno: int) -> None:
        with self.cache.block(self.dev, bno) as bp:
            bp.data[:] = bytes(BSIZE)
            self.log.write(bp)

    def alloc_block(self) -> Optional[int]:
        """Allocate a zeroed block; None if the disk is full."""
        for b in range(0, self.sb.size, BPB):
            found = None
            with self.cache.block(self.dev, bitmap_block(b, self.sb)) as bp:
                for bi in range(min(BPB, self.sb.size - b)):
                    m = 1 << (bi % 8)
                    if bp.data[bi // 8] & m == 0:
                        bp.data[bi // 8] |= m
                        self.log.write(bp)
                        found = b + bi
                        break
            if found is not None:
                self._zero_block(found)
                return found
        return None

    def free_block(self, b: int) -> None:
        with self.cache.block(self.dev, bitmap_block(b, self.sb)) as bp:
            bi = b % BPB
            m = 1 << (bi % 8)
            if bp.data[bi // 8] & m == 0:
                raise Panic("freeing free block")
            bp.data[bi // 8] &= ~m & 0xFF
            self.log.write(bp)

    # Inodes.

    def alloc_inode(self, type: int) -> Inode:
        """Allocate an on-disk inode of the given type; returns it unlocked."""
        for inum in range(1, self.sb.ninodes):
            with self.cache.block(self.dev, inode_block(inum, self.sb)) as bp:
                where = _dinode_slice(inum)
                if DiskInode.unpack(bytes(bp.data[where])).type != 0:
                    continue
                bp.data[where] = DiskInode(type=type).pack()
                self.log.write(bp)
            return self.get(inum)
        raise FsError("ialloc: no inodes")

    def update(self, ip: Inode) -> None:
        """Copy the in-memory inode to disk."""
        dip = DiskInode(ip.type, ip.major, ip.minor, ip.nlink, ip.size, list(ip.addrs))
        with self.cache.block(ip.dev, inode_block(ip.inum, self.sb)) as bp:
            bp.data[_dinode_slice(ip.inum)] = dip.pack()
            self.log.write(bp)

    def get(self, inum: int) -> Inode:
        """A referenced in-memory inode for inum; neither locked nor read."""
        with self._itable_lock:
            empty = None
            for ip in self._inodes:
                if ip.ref > 0 and ip.dev == self.dev and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise Panic("iget: no inodes")
            empty.dev = self.dev
            empty.inum = inum
            empty.ref = 1
            empty.valid = False
            return empty

    def dup(self, ip: Inode) -> Inode:
        with self._itable_lock:
            ip.ref += 1
        return ip

    def lock(self, ip: Inode) -> None:
        """Lock the inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise Panic("ilock")
        ip._acquire()
        if not ip.valid:
            with self.cache.block(ip.dev, inode_block(ip.inum, self.sb)) as bp:
                dip = DiskInode.unpack(bytes(bp.data[_dinode_slice(ip.inum)]))
            ip.type = dip.type
            ip.major = dip.major
            ip.minor = dip.minor
            ip.nlink = dip.nlink
            ip.size = dip.size
            ip.addrs = list(dip.addrs)
            ip.valid = True
            if ip.type == 0:
                raise Panic("ilock: no type")

    def unlock(self, ip: Inode) -> None:
        if ip is None or not ip.held or ip.ref < 1:
            raise Panic("iunlock")
        ip._release()

    @contextmanager
    def locked(self, ip: Inode) -> Iterator[Inode]:
        """Hold the inode's lock for the duration of a with-block."""
        self.lock(ip)
        try:
            yield ip
        finally:
            self.unlock(ip)

    def put(self, ip: Inode) -> None:
        """Drop a reference; the last one to an unlinked inode frees it on disk."""
        self._itable_lock.acquire()
        try:
            if ip.ref == 1 and ip.valid and ip.nlink == 0:
                ip._acquire()
                self._itable_lock.release()
                try:
                    self.truncate(ip)
                    ip.type = 0
                    self.update(ip)
                    ip.valid = False
                finally:
                    ip._release()
                    self._itable_lock.acquire()
            ip.ref -= 1
        finally:
            self._itable_lock.release()

    def unlock_put(self, ip: Inode) -> None:
        self.unlock(ip)
        self.put(ip)

    # Contents.

    def block_map(self, ip: Inode, bn: int) -> Optional[int]:
        """Disk block of the inode's block bn, allocated if missing; None if full."""
        if 0 <= bn < NDIRECT:
            if ip.addrs[bn] == 0:
                addr = self.alloc_block()
                if addr is None:
                    return None
                ip.addrs[bn] = addr
            return ip.addrs[bn]
        bn -= NDIRECT
        if 0 <= bn < NINDIRECT:
            if ip.addrs[NDIRECT] == 0:
                addr = self.alloc_block()
                if addr is None:
                    return None
                ip.addrs[NDIRECT] = addr
            with self.cache.block(ip.dev, ip.addrs[NDIRECT]) as bp:
                (addr,) = _ADDR.unpack_from(bp.data, bn * _ADDR.size)
                if addr == 0:
                    addr = self.alloc_block()
                    if addr is None:
                        return None
                    _ADDR.pack_into(bp.data, bn * _ADDR.size, addr)
                    self.log.write(bp)
            return addr
        raise Panic("bmap: out of range")

    def truncate(self, ip: Inode) -> None:
        """Discard the inode's contents."""
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self.free_block(ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            with self.cache.block(ip.dev, ip.addrs[NDIRECT]) as bp:
                addrs = struct.unpack_from(f"<{NINDIRECT}I", bp.data)
            for addr in addrs:
                if addr:
                    self.free_block(addr)
            self.free_block(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.update(ip)

    def stat(self, ip: Inode) -> Stat:
        return Stat(ip.dev, ip.inum, ip.type, ip.nlink, ip.size)

    def read(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to n bytes at off; fewer at end of file."""
        if off < 0 or n < 0:
            raise ValueError("offset and count must not be negative")
        if off > ip.size or off + n > _UINT_MAX:
            return b""
        end = min(off + n, ip.size)
        out = bytearray()
        pos = off
        while pos < end:
            addr = self.block_map(ip, pos // BSIZE)
            if addr is None:
                break
            start = pos % BSIZE
            m = min(end - pos, BSIZE - start)
            with self.cache.block(ip.dev, addr) as bp:
                out += bp.data[start: start + m]
            pos += m
        return bytes(out)

    def write(self, ip: Inode, off: int, data: bytes) -> int:
        """Write data at off; returns the bytes written, fewer if the disk fills."""
        n = len(data)
        if off < 0:
            raise ValueError("offset must not be negative")
        if off > ip.size or off + n > _UINT_MAX:
            raise FsError("write offset past end of file")
        if off + n > MAXFILE * BSIZE:
            raise FsError("write past maximum file size")
        tot = 0
        pos = off
        while tot < n:
            addr = self.block_map(ip, pos // BSIZE)
            if addr is None:
                break
            start = pos % BSIZE
            m = min(n - tot, BSIZE - start)
            with self.cache.block(ip.dev, addr) as bp:
                bp.data[start: start + m] = data[tot: tot + m]
                self.log.write(bp)
            tot += m
            pos += m
        if pos > ip.size:
            ip.size = pos
        # The inode goes back to disk even if the size is unchanged,
        # since block_map may have added blocks.
        self.update(ip)
        return tot