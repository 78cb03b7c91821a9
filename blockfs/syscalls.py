"""File-system system calls: descriptor handling and checks around the lower layers."""

from __future__ import annotations

import errno
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .file import File, FileKind, FileTable
from .inode import FileSystem, Inode
from .kprintf import Panic
from .layout import NDEV, NOFILE, Dirent, FileType, OpenFlag, Stat
from .path import dir_link, dir_lookup, namecmp, namei, nameiparent


@dataclass
class Process:
    """The per-process state the file calls use: open files and directory."""

    ofile: List[Optional[File]] = field(default_factory=lambda: [None] * NOFILE)
    cwd: Optional[Inode] = None


def _dir_is_empty(fs: FileSystem, dp: Inode) -> bool:
    """Whether dp holds nothing but "." and ".."."""
    for off in range(2 * Dirent.SIZE, dp.size, Dirent.SIZE):
        raw = fs.read(dp, off, Dirent.SIZE)
        if len(raw) != Dirent.SIZE:
            raise Panic("isdirempty: readi")
        if Dirent.unpack(raw).inum != 0:
            return False
    return True


class FileCalls:
    """The file-related system calls of one file system."""

    def __init__(self, fs: FileSystem, files: FileTable):
        self.fs = fs
        self.files = files

    @staticmethod
    def _file(proc: Process, fd: int) -> File:
        if not 0 <= fd < NOFILE or proc.ofile[fd] is None:
            raise OSError(errno.EBADF, f"bad file descriptor {fd}")
        return proc.ofile[fd]

    @staticmethod
    def _fdalloc(proc: Process, f: File) -> int:
        for fd, slot in enumerate(proc.ofile):
            if slot is None:
                proc.ofile[fd] = f
                return fd
        raise OSError(errno.EMFILE, "too many open files")

    def dup(self, proc: Process, fd: int) -> int:
        f = self._file(proc, fd)
        new = self._fdalloc(proc, f)
        self.files.dup(f)
        return new

    def read(self, proc: Process, fd: int, n: int) -> bytes:
        return self.files.read(self._file(proc, fd), n)

    def write(self, proc: Process, fd: int, data: bytes) -> int:
        return self.files.write(self._file(proc, fd), data)

    def close(self, proc: Process, fd: int) -> None:
        f = self._file(proc, fd)
        proc.ofile[fd] = None
        self.files.close(f)

    def fstat(self, proc: Process, fd: int) -> Stat:
        return self.files.stat(self._file(proc, fd))

    def link(self, proc: Process, old: str, new: str) -> None:
        """Make new another name for the file old."""
        fs = self.fs
        with fs.log.operation():
            ip = namei(fs, old, proc.cwd)
            fs.lock(ip)
            if ip.type == FileType.DIR:
                fs.unlock_put(ip)
                raise IsADirectoryError(f"{old}: cannot link a directory")
            ip.nlink += 1
            fs.update(ip)
            fs.unlock(ip)
            try:
                dp, name = nameiparent(fs, new, proc.cwd)
                fs.lock(dp)
                try:
                    if dp.dev != ip.dev:
                        raise OSError(errno.EXDEV, "cross-device link")
                    dir_link(fs, dp, name, ip.inum)
                finally:
                    fs.unlock_put(dp)
            except BaseException:
                fs.lock(ip)
                ip.nlink -= 1
                fs.update(ip)
                fs.unlock_put(ip)
                raise
            fs.put(ip)

    def unlink(self, proc: Process, path: str) -> None:
        fs = self.fs
        with fs.log.operation():
            dp, name = nameiparent(fs, path, proc.cwd)
            fs.lock(dp)
            try:
                if namecmp(name, ".") == 0 or namecmp(name, "..") == 0:
                    raise OSError(errno.EINVAL, f"cannot unlink {name!r}")
                found = dir_lookup(fs, dp, name)
                if found is None:
                    raise FileNotFoundError(f"{path}: no such file or directory")
                ip, off = found
                fs.lock(ip)
                if ip.nlink < 1:
                    raise Panic("unlink: nlink < 1")
                if ip.type == FileType.DIR and not _dir_is_empty(fs, ip):
                    fs.unlock_put(ip)
                    raise OSError(errno.ENOTEMPTY, f"{path}: directory not empty")
                if fs.write(dp, off, Dirent().pack()) != Dirent.SIZE:
                    raise Panic("unlink: writei")
                if ip.type == FileType.DIR:
                    dp.nlink -= 1
                    fs.update(dp)
            except BaseException:
                fs.unlock_put(dp)
                raise
            fs.unlock_put(dp)
            ip.nlink -= 1
            fs.update(ip)
            fs.unlock_put(ip)

    def _create(self, proc: Process, path: str, type_: int,
                major: int, minor: int) -> Inode:
        """Create path, returning its locked inode; an existing file is reused."""
        fs = self.fs
        dp, name = nameiparent(fs, path, proc.cwd)
        fs.lock(dp)
        found = dir_lookup(fs, dp, name)
        if found is not None:
            fs.unlock_put(dp)
            ip = found[0]
            fs.lock(ip)
            if type_ == FileType.FILE and ip.type in (FileType.FILE, FileType.DEVICE):
                return ip
            fs.unlock_put(ip)
            raise FileExistsError(f"{path}: already exists")
        try:
            ip = fs.alloc_inode(type_)
        except BaseException:
            fs.unlock_put(dp)
            raise
        fs.lock(ip)
        ip.major = major
        ip.minor = minor
        ip.nlink = 1
        fs.update(ip)
        try:
            if type_ == FileType.DIR:
                # No nlink for ".": that would be a cyclic count.
                dir_link(fs, ip, ".", ip.inum)
                dir_link(fs, ip, "..", dp.inum)
            dir_link(fs, dp, name, ip.inum)
        except BaseException:
            ip.nlink = 0
            fs.update(ip)
            fs.unlock_put(ip)
            fs.unlock_put(dp)
            raise
        if type_ == FileType.DIR:
            dp.nlink += 1  # for ".."
            fs.update(dp)
        fs.unlock_put(dp)
        return ip

    def open(self, proc: Process, path: str, mode: int = OpenFlag.RDONLY) -> int:
        fs = self.fs
        with fs.log.operation():
            if mode & OpenFlag.CREATE:
                ip = self._create(proc, path, FileType.FILE, 0, 0)
            else:
                ip = namei(fs, path, proc.cwd)
                fs.lock(ip)
                if ip.type == FileType.DIR and mode != OpenFlag.RDONLY:
                    fs.unlock_put(ip)
                    raise IsADirectoryError(f"{path}: is a directory")
            try:
                if ip.type == FileType.DEVICE and not 0 <= ip.major < NDEV:
                    raise OSError(errno.ENODEV, f"bad major device {ip.major}")
                f = self.files.alloc()
                try:
                    fd = self._fdalloc(proc, f)
                except BaseException:
                    self.files.close(f)
                    raise
            except BaseException:
                fs.unlock_put(ip)
                raise
            if ip.type == FileType.DEVICE:
                f.kind = FileKind.DEVICE
                f.major = ip.major
            else:
                f.kind = FileKind.INODE
                f.off = 0
            f.ip = ip
            f.readable = not (mode & OpenFlag.WRONLY)
            f.writable = bool(mode & OpenFlag.WRONLY or mode & OpenFlag.RDWR)
            if mode & OpenFlag.TRUNC and ip.type == FileType.FILE:
                fs.truncate(ip)
            fs.unlock(ip)
        return fd

    def mkdir(self, proc: Process, path: str) -> None:
        with self.fs.log.operation():
            ip = self._create(proc, path, FileType.DIR, 0, 0)
            self.fs.unlock_put(ip)

    def mknod(self, proc: Process, path: str, major: int, minor: int) -> None:
        with self.fs.log.operation():
            ip = self._create(proc, path, FileType.DEVICE, major, minor)
            self.fs.unlock_put(ip)

    def chdir(self, proc: Process, path: str) -> None:
        fs = self.fs
        with fs.log.operation():
            ip = namei(fs, path, proc.cwd)
            fs.lock(ip)
            if ip.type != FileType.DIR:
                fs.unlock_put(ip)
                raise NotADirectoryError(f"{path}: not a directory")
            fs.unlock(ip)
            if proc.cwd is not None:
                fs.put(proc.cwd)
        proc.cwd = ip

    def pipe(self, proc: Process) -> Tuple[int, int]:
        """Open a pipe; returns (read fd, write fd)."""
        rf, wf = self.files.pipe()
        fd0 = None
        try:
            fd0 = self._fdalloc(proc, rf)
            fd1 = self._fdalloc(proc, wf)
        except BaseException:
            if fd0 is not None:
                proc.ofile[fd0] = None
            self.files.close(rf)
            self.files.close(wf)
            raise
        return fd0, fd1