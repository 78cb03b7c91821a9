"""Directory entries and path-name lookup."""

from __future__ import annotations

from typing import Optional, Tuple

from .cstr import strncmp
from .inode import FileSystem, Inode
from .kprintf import Panic
from .layout import DIRSIZ, ROOTINO, Dirent, FileType, FsError


def namecmp(s: str, t: str) -> int:
    """Compare two directory entry names; only the first DIRSIZ bytes count."""
    return strncmp(s, t, DIRSIZ)


def skip_elem(path: str) -> Optional[Tuple[str, str]]:
    """Split off the first element of path.

    Returns (name, rest) where rest has no leading slashes, or None if the
    path holds no element. Names longer than DIRSIZ bytes are cut short.
    """
    stripped = path.lstrip("/")
    if not stripped:
        return None
    elem, _, rest = stripped.partition("/")
    raw = elem.encode("utf-8", "surrogateescape")[:DIRSIZ]
    return raw.decode("utf-8", "surrogateescape"), rest.lstrip("/")


def dir_lookup(fs: FileSystem, dp: Inode, name: str) -> Optional[Tuple[Inode, int]]:
    """Find name in directory dp; returns the entry's inode and byte offset."""
    if dp.type != FileType.DIR:
        raise Panic("dirlookup not DIR")
    for off in range(0, dp.size, Dirent.SIZE):
        raw = fs.read(dp, off, Dirent.SIZE)
        if len(raw) != Dirent.SIZE:
            raise Panic("dirlookup read")
        de = Dirent.unpack(raw)
        if de.inum == 0:
            continue
        if namecmp(name, de.name) == 0:
            return fs.get(de.inum), off
    return None


def dir_link(fs: FileSystem, dp: Inode, name: str, inum: int) -> None:
    """Add the entry (name, inum) to directory dp, reusing a free slot."""
    found = dir_lookup(fs, dp, name)
    if found is not None:
        fs.put(found[0])
        raise FileExistsError(f"{name}: entry exists")
    off = dp.size
    for slot in range(0, dp.size, Dirent.SIZE):
        raw = fs.read(dp, slot, Dirent.SIZE)
        if len(raw) != Dirent.SIZE:
            raise Panic("dirlink read")
        if Dirent.unpack(raw).inum == 0:
            off = slot
            break
    if fs.write(dp, off, Dirent(inum, name).pack()) != Dirent.SIZE:
        raise FsError("dirlink: out of disk space")


def _namex(fs: FileSystem, path: str, cwd: Optional[Inode], parent: bool):
    if path.startswith("/") or cwd is None:
        ip = fs.get(ROOTINO)
    else:
        ip = fs.dup(cwd)
    while (elem := skip_elem(path)) is not None:
        name, path = elem
        fs.lock(ip)
        if ip.type != FileType.DIR:
            fs.unlock_put(ip)
            raise NotADirectoryError(f"{name}: not a directory")
        if parent and path == "":
            fs.unlock(ip)
            return ip, name
        found = dir_lookup(fs, ip, name)
        if found is None:
            fs.unlock_put(ip)
            raise FileNotFoundError(f"{name}: no such file or directory")
        fs.unlock_put(ip)
        ip = found[0]
    if parent:
        fs.put(ip)
        raise FileNotFoundError("path has no final element")
    return ip


def namei(fs: FileSystem, path: str, cwd: Optional[Inode] = None) -> Inode:
    """The referenced, unlocked inode for path.

    Relative paths start at cwd, or at the root if cwd is None.
    Must run inside a log operation.
    """
    return _namex(fs, path, cwd, parent=False)


def nameiparent(fs: FileSystem, path: str,
                cwd: Optional[Inode] = None) -> Tuple[Inode, str]:
    """The parent directory of path's final element, and that element's name."""
    return _namex(fs, path, cwd, parent=True)