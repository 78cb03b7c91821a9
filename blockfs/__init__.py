"""An in-memory logging block file system: buffer cache, redo log, inodes, directories, open files, pipes and descriptor calls."""

__version__ = "0.1.0"