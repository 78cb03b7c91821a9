import pytest

from blockfs.bio import BufferCache, RamDisk
from blockfs.inode import FileSystem
from blockfs.kprintf import Panic
from blockfs.layout import (BSIZE, DIRSIZ, FSMAGIC, IPB, LOGSIZE, NDIRECT,
                            ROOTDEV, ROOTINO, DiskInode, Dirent, FileType,
                            Superblock, inode_block)
from blockfs.path import (dir_link, dir_lookup, namecmp, namei, nameiparent,
                          skip_elem)

NBLOCKS = 1000
NINODES = 200


def root_image():
    nlog = LOGSIZE + 1
    bmapstart = 2 + nlog + NINODES // IPB + 1
    datastart = bmapstart + 1
    sb = Superblock(FSMAGIC, NBLOCKS, NBLOCKS - datastart, NINODES, nlog,
                    2, 2 + nlog, bmapstart)
    image = bytearray(NBLOCKS * BSIZE)
    image[BSIZE:BSIZE + Superblock.SIZE] = sb.pack()
    root = DiskInode(type=FileType.DIR, nlink=1, size=2 * Dirent.SIZE,
                     addrs=[datastart] + [0] * NDIRECT)
    at = inode_block(ROOTINO, sb) * BSIZE + (ROOTINO % IPB) * DiskInode.SIZE
    image[at:at + DiskInode.SIZE] = root.pack()
    entries = Dirent(ROOTINO, ".").pack() + Dirent(ROOTINO, "..").pack()
    image[datastart * BSIZE:datastart * BSIZE + len(entries)] = entries
    bitmap = ((1 << (datastart + 1)) - 1).to_bytes(BSIZE, "little")
    image[bmapstart * BSIZE:datastart * BSIZE] = bitmap
    return bytes(image)


@pytest.fixture
def fs():
    filesystem = FileSystem(BufferCache({ROOTDEV: RamDisk(root_image(), NBLOCKS)}), ROOTDEV)
    with filesystem.log.operation():
        yield filesystem


def new_file(fs, type_=FileType.FILE):
    ip = fs.alloc_inode(type_)
    with fs.locked(ip):
        ip.nlink = 1
        fs.update(ip)
    return ip


def link(fs, name, inum, dp=None):
    dp = dp if dp is not None else fs.get(ROOTINO)
    with fs.locked(dp):
        dir_link(fs, dp, name, inum)
    return dp


@pytest.mark.parametrize("path,expected", [
    ("a/bb/c", ("a", "bb/c")),
    ("///a//bb", ("a", "bb")),
    ("a", ("a", "")),
    ("", None),
    ("////", None),
])
def test_skip_elem_examples(path, expected):
    assert skip_elem(path) == expected


def test_skip_elem_truncates_long_names():
    assert skip_elem("/" + "x" * 20 + "/tail") == ("x" * DIRSIZ, "tail")


def test_namecmp():
    assert namecmp("abc", "abc") == 0
    assert namecmp("a", "b") < 0
    assert namecmp("a" * DIRSIZ + "x", "a" * DIRSIZ + "y") == 0


def test_namei_root(fs):
    ip = namei(fs, "/")
    assert ip.inum == ROOTINO
    fs.put(ip)


def test_dir_link_then_lookup(fs):
    ip = new_file(fs)
    root = link(fs, "hello", ip.inum)
    with fs.locked(root):
        found, off = dir_lookup(fs, root, "hello")
        assert dir_lookup(fs, root, "missing") is None
    assert found.inum == ip.inum
    assert off == 2 * Dirent.SIZE


def test_dir_link_duplicate_raises(fs):
    ip = new_file(fs)
    root = link(fs, "dup", ip.inum)
    with pytest.raises(FileExistsError):
        link(fs, "dup", ip.inum, root)


def test_dir_link_reuses_free_slot(fs):
    a = new_file(fs)
    b = new_file(fs)
    root = link(fs, "a", a.inum)
    with fs.locked(root):
        _, off = dir_lookup(fs, root, "a")
        size_before = root.size
        fs.write(root, off, Dirent().pack())
        dir_link(fs, root, "b", b.inum)
        found, off_b = dir_lookup(fs, root, "b")
    assert off_b == off
    assert root.size == size_before
    assert found.inum == b.inum


def test_dir_lookup_on_file_panics(fs):
    ip = new_file(fs)
    with fs.locked(ip):
        with pytest.raises(Panic):
            dir_lookup(fs, ip, "x")


def test_namei_missing_raises(fs):
    with pytest.raises(FileNotFoundError):
        namei(fs, "/nothing")


def test_namei_through_file_raises(fs):
    link(fs, "f", new_file(fs).inum)
    with pytest.raises(NotADirectoryError):
        namei(fs, "/f/x")


def test_nameiparent_returns_parent_and_name(fs):
    dp, name = nameiparent(fs, "/newfile")
    assert (dp.inum, name) == (ROOTINO, "newfile")
    fs.put(dp)


def test_nameiparent_of_root_raises(fs):
    with pytest.raises(FileNotFoundError):
        nameiparent(fs, "/")


def test_relative_path_uses_cwd(fs):
    sub = new_file(fs, FileType.DIR)
    leaf = new_file(fs)
    for name, inum in ((".", sub.inum), ("..", ROOTINO), ("leaf", leaf.inum)):
        link(fs, name, inum, sub)
    assert namei(fs, "leaf", sub).inum == leaf.inum
    assert namei(fs, "..", sub).inum == ROOTINO
    with pytest.raises(FileNotFoundError):
        namei(fs, "leaf")