# blockfs

`blockfs` is a small block file system that lives in memory. It has a buffer
cache, a redo log for crash-safe multi-block updates, inodes with direct and
indirect blocks, directories, path lookup, an open-file table with pipes and
devices, and descriptor-level calls such as `open`, `read` and `write`. It has
no dependencies beyond the standard library.

## Modules

- **`blockfs.layout`**: the on-disk format and limits. `Superblock`,
  `DiskInode` and `Dirent` are dataclasses with `pack()` and
  `unpack(data)`; `Stat` holds what `fstat` reports. The enumerations are
  `FileType` (`DIR`, `FILE`, `DEVICE`), `OpenFlag` (`RDONLY`, `WRONLY`,
  `RDWR`, `CREATE`, `TRUNC`) and `Syscall` (the system call numbers).
  `inode_block(inum, sb)` and `bitmap_block(b, sb)` locate inodes and bitmap
  bits; `mkdev`, `major` and `minor` combine and split device numbers.
  `FsError` is raised for malformed data and some failed requests.
- **`blockfs.cstr`**: NUL-terminated byte-string helpers: `cstring`,
  `strncmp`, `strncpy` (NUL-padded fixed field) and `safestrcpy` (always
  leaves room for the terminator).
- **`blockfs.kprintf`**: `kformat(fmt, *args)` understands `%d`, `%x`
  (32-bit signed), `%p` (16 hex digits), `%s` (`None` prints `(null)`) and
  `%%`; other sequences are printed as they are. `panic(message)` raises
  `Panic`.
- **`blockfs.console`**: `Console(output, procdump)`, a line-editing input
  buffer. Characters are fed in with `interrupt(c)`; `^H` and DEL erase a
  character, `^U` erases the line, `^D` marks end of file, `^P` calls
  `procdump`, and carriage return becomes newline. Input is echoed to
  `output`. `read(n)` blocks until a full line (or `^D`, or a full buffer)
  is available; `kill()` makes a waiting reader raise `InterruptedError`.
  `write(data)` sends bytes to `output`.
- **`blockfs.bio`**: `RamDisk(data, nblocks)` holds a disk image in memory,
  read and written in 1024-byte blocks. `BufferCache(disks, nbuf)` maps
  device numbers to disks and keeps `Buffer`s in most-recently-used order;
  `read`, `write`, `release`, `pin`, `unpin`, and the context manager
  `block(dev, blockno)`.
- **`blockfs.log`**: `Log(cache, dev, sb)` recovers any committed
  transaction when created, then groups operations: `begin_op`, `end_op`,
  the context manager `operation()`, and `write(buf)` to record a changed
  buffer. The transaction commits when the last outstanding operation ends.
  `pending` lists the blocks logged so far.
- **`blockfs.inode`**: `FileSystem(cache, dev)` reads the superblock of an
  already-formatted device and opens its log (available as `fs.log`). It
  provides `alloc_block`, `free_block`, `alloc_inode`, `update`, `get`,
  `dup`, `lock`, `unlock`, the context manager `locked`, `put`,
  `unlock_put`, `block_map`, `truncate`, `stat`, `read` and `write` over
  `Inode` objects.
- **`blockfs.path`**: `namecmp`, `skip_elem`, `dir_lookup`, `dir_link`,
  `namei(fs, path, cwd)` and `nameiparent(fs, path, cwd)`. Relative paths
  start at `cwd`, or at the root when `cwd` is `None`.
- **`blockfs.file`**: `FileTable(fs, devices)` with `alloc`, `dup`, `close`,
  `stat`, `read`, `write` and `pipe`; `File`, `FileKind`, `Pipe` (a
  512-byte bounded channel) and `Device` (read and write handlers for a
  major device number).
- **`blockfs.syscalls`**: `FileCalls(fs, files)` runs `open`, `read`,
  `write`, `close`, `dup`, `fstat`, `link`, `unlink`, `mkdir`, `mknod`,
  `chdir` and `pipe` on behalf of a `Process`, which holds the open-file
  slots and the current directory.
- **`blockfs.elf`**: `ElfHeader` and `ProgramHeader` parsing,
  `load_image(data)` (checks the image and collects loadable segments with
  their `Perm`), `flags_to_perm`, `build_stack(argv, stack_top)` (lays out
  argument strings and the argv pointer table on one 4096-byte page) and
  `program_name(path)`.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Layout on disk

Blocks are 1024 bytes. An image is arranged as

```
[ boot block | super block | log | inode blocks | free bit map | data blocks ]
```

The superblock sits in block 1 and carries the magic number `0x10203040`.
Each inode has 12 direct block addresses and one indirect block, so a file
holds at most 268 blocks. Directory entries are 16 bytes: a 2-byte inode
number and a name of up to 14 bytes. Inode 1 is the root directory.

## Errors

- Conditions the file system cannot recover from — freeing a free block,
  running out of cache buffers or in-memory inodes, writing outside a
  transaction, a transaction that outgrows the log — raise `Panic`.
- Ordinary failures raise the matching built-in exception:
  `FileNotFoundError`, `FileExistsError`, `NotADirectoryError`,
  `IsADirectoryError`, `BrokenPipeError`, or `OSError` with an `errno`
  such as `EBADF`, `EMFILE`, `ENFILE`, `ENODEV`, `ENOTEMPTY`, `EINVAL` or
  `EXDEV`.
- `FsError` is raised for malformed records, running out of inodes, writes
  past the end of a file or the maximum file size, and short writes.
- `ElfError` is raised for executable images that cannot be loaded.

Every change to the disk must happen inside a transaction; use
`with fs.log.operation():` so that each `begin_op` is matched by an `end_op`.
The `FileCalls` methods open their own transactions.

## What it does not do

- There is no formatter. `FileSystem` expects a device that already holds a
  valid superblock, log, inode area, bitmap and root directory; building such
  an image is left to the caller, who can use the records in
  `blockfs.layout`.
- Storage is in memory only. `RamDisk` takes an initial image as bytes, but
  nothing writes the image back to a file.
- There is no command-line program, no process scheduler and no way to run
  the executables that `blockfs.elf` parses; it only checks images and lays
  out segments and the argument stack.