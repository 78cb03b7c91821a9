[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "blockfs"
version = "0.1.0"
description = "An in-memory logging block file system with buffer cache, inodes, directories, pipes and file-descriptor calls"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "inode", "buffer-cache", "write-ahead-log", "pipe", "elf"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["blockfs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
