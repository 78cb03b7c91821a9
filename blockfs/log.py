"""Write-ahead redo log that makes multi-block file-system updates atomic."""

from __future__ import annotations

import struct
import threading
from contextlib import contextmanager
from typing import Iterator, List, Tuple

from .bio import Buffer, BufferCache
from .kprintf import Panic
from .layout import BSIZE, LOGSIZE, MAXOPBLOCKS, FsError, Superblock

_INT = struct.Struct("<i")


class Log:
    """Groups the block writes of file-system operations into transactions.

    A transaction commits when the last outstanding operation ends: the
    changed blocks are copied into the log, the header is written (the
    commit point), the blocks are installed at their home locations and
    the header is cleared.
    """

    def __init__(self, cache: BufferCache, dev: int, sb: Superblock):
        if _INT.size * (1 + LOGSIZE) >= BSIZE:
            raise Panic("initlog: too big logheader")
        self.cache = cache
        self.dev = dev
        self.start = sb.logstart
        self.size = sb.nlog
        self.outstanding = 0
        self.committing = False
        self._blocks: List[int] = []
        self._cond = threading.Condition()
        self._recover()

    @property
    def pending(self) -> Tuple[int, ...]:
        """Home block numbers logged by the current transaction."""
        with self._cond:
            return tuple(self._blocks)

    def _read_head(self) -> List[int]:
        with self.cache.block(self.dev, self.start) as buf:
            (n,) = _INT.unpack_from(buf.data, 0)
            if not 0 <= n <= LOGSIZE:
                raise FsError(f"corrupt log header: {n} blocks")
            return list(struct.unpack_from(f"<{n}i", buf.data, _INT.size))

    def _write_head(self) -> None:
        with self.cache.block(self.dev, self.start) as buf:
            n = len(self._blocks)
            _INT.pack_into(buf.data, 0, n)
            struct.pack_into(f"<{n}i", buf.data, _INT.size, *self._blocks)
            self.cache.write(buf)

    def _install(self, recovering: bool) -> None:
        for tail, blockno in enumerate(self._blocks):
            with self.cache.block(self.dev, self.start + tail + 1) as lbuf, \
                    self.cache.block(self.dev, blockno) as dbuf:
                dbuf.data[:] = lbuf.data
                self.cache.write(dbuf)
                if not recovering:
                    self.cache.unpin(dbuf)

    def _write_log(self) -> None:
        for tail, blockno in enumerate(self._blocks):
            with self.cache.block(self.dev, self.start + tail + 1) as to, \
                    self.cache.block(self.dev, blockno) as src:
                to.data[:] = src.data
                self.cache.write(to)

    def _recover(self) -> None:
        self._blocks = self._read_head()
        self._install(recovering=True)
        self._blocks = []
        self._write_head()

    def _commit(self) -> None:
        if self._blocks:
            self._write_log()
            self._write_head()
            self._install(recovering=False)
            self._blocks = []
            self._write_head()

    def begin_op(self) -> None:
        """Start a file-system operation, waiting while the log lacks room."""
        with self._cond:
            while (self.committing
                   or len(self._blocks) + (self.outstanding + 1) * MAXOPBLOCKS > LOGSIZE):
                self._cond.wait()
            self.outstanding += 1

    def end_op(self) -> None:
        """End an operation; the last one to end commits the transaction."""
        with self._cond:
            self.outstanding -= 1
            if self.committing:
                raise Panic("log.committing")
            do_commit = self.outstanding == 0
            if do_commit:
                self.committing = True
            else:
                self._cond.notify_all()
        if do_commit:
            try:
                self._commit()
            finally:
                with self._cond:
                    self.committing = False
                    self._cond.notify_all()

    def write(self, buf: Buffer) -> None:
        """Record a modified buffer in the transaction and pin it in the cache."""
        with self._cond:
            if len(self._blocks) >= LOGSIZE or len(self._blocks) >= self.size - 1:
                raise Panic("too big a transaction")
            if self.outstanding < 1:
                raise Panic("log_write outside of trans")
            if buf.blockno not in self._blocks:
                self.cache.pin(buf)
                self._blocks.append(buf.blockno)

    @contextmanager
    def operation(self) -> Iterator["Log"]:
        """Run a with-block as one file-system operation."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()