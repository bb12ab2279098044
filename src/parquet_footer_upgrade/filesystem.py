"""Filesystem access for the footer upgrade, on top of ``pyarrow.fs``.

Any pyarrow filesystem works (local, HDFS, S3, ...). Paths are the
filesystem's own paths. Relative paths resolve against the root given in the
filesystem URI (or the working directory on the local filesystem); absolute
paths, including the backup directory, are used as they are.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

import pyarrow as pa
import pyarrow.fs as pafs

logger = logging.getLogger(__name__)

HIDDEN_FILE_PREFIX = "_"
DOT_FILE_PREFIX = "."

# Suffix of the hidden staging copy used when a filesystem cannot append.
STAGING_SUFFIX = ".footer-upgrade"
COPY_CHUNK_SIZE = 8 * 1024 * 1024


class InitializationError(RuntimeError):
    """The target filesystem could not be set up."""


@dataclass(frozen=True)
class FileRecord:
    path: str
    size: int


@dataclass
class WalkResult:
    files: List[FileRecord] = field(default_factory=list)
    directories: List[str] = field(default_factory=list)


def is_visible(name: str) -> bool:
    """Skip ``_SUCCESS``, ``_metadata``, ``.crc`` sidecars and similar."""

    return not (name.startswith(HIDDEN_FILE_PREFIX) or name.startswith(DOT_FILE_PREFIX))


class FooterFileSystem:
    """The handful of filesystem operations the upgrade needs."""

    def __init__(self, fs: pafs.FileSystem, root: Optional[str] = None):
        self.fs = fs
        self.root = root or None

    def __repr__(self) -> str:
        return f"FooterFileSystem({self.fs.type_name}, root={self.root})"

    def normalize(self, path: str) -> str:
        path = str(path)
        if isinstance(self.fs, pafs.LocalFileSystem):
            p = Path(path).expanduser()
            if self.root and not p.is_absolute():
                p = Path(self.root) / p
            return str(p.resolve())
        if self.root and not path.startswith("/"):
            return self.root.rstrip("/") + "/" + path
        return path

    def local_path(self, path: str) -> Optional[Path]:
        """Return the OS path behind ``path`` when the data lives on local disk."""

        if isinstance(self.fs, pafs.LocalFileSystem):
            return Path(path)
        return None

    def stat(self, path: str) -> pafs.FileInfo:
        info = self.fs.get_file_info(path)
        if info.type == pafs.FileType.NotFound:
            raise FileNotFoundError(f"No such file or directory: {path}")
        return info

    def record(self, path: str) -> FileRecord:
        info = self.stat(path)
        return FileRecord(path=info.path, size=int(info.size or 0))

    def exists(self, path: str) -> bool:
        return self.fs.get_file_info(path).type != pafs.FileType.NotFound

    def list_dir(self, path: str) -> List[pafs.FileInfo]:
        infos = self.fs.get_file_info(pafs.FileSelector(path, recursive=False))
        return sorted((i for i in infos if is_visible(i.base_name)), key=lambda i: i.path)

    def walk(self, path: str) -> WalkResult:
        """Collect the visible files under ``path`` (or ``path`` itself if it is a file)."""

        out = WalkResult()
        self._walk(self.stat(path), out)
        return out

    def _walk(self, info: pafs.FileInfo, out: WalkResult) -> None:
        if info.type == pafs.FileType.Directory:
            out.directories.append(info.path)
            for child in self.list_dir(info.path):
                self._walk(child, out)
        elif info.type == pafs.FileType.File:
            out.files.append(FileRecord(path=info.path, size=int(info.size or 0)))

    def open_input(self, path: str):
        return self.fs.open_input_file(path)

    @contextmanager
    def open_append(self, path: str) -> Iterator[pa.NativeFile]:
        """Open ``path`` for appending.

        Filesystems without append support (object stores, checksumming
        wrappers) get a hidden staging copy of the current bytes instead.
        Writes go to the copy, which replaces ``path`` once the block exits
        cleanly; on error the copy is removed and ``path`` is left as it was.
        """

        try:
            stream = self.fs.open_append_stream(path, compression=None)
        except NotImplementedError:
            stream = None

        if stream is not None:
            with stream:
                yield stream
            return

        staging = staging_path(path)
        logger.warning("append unsupported by %s; rewriting %s through %s", self.fs.type_name, path, staging)
        try:
            with self.fs.open_output_stream(staging, compression=None) as out:
                with self.fs.open_input_stream(path, compression=None) as src:
                    while True:
                        chunk = src.read(COPY_CHUNK_SIZE)
                        if not chunk:
                            break
                        out.write(chunk)
                yield out
            self.fs.move(staging, path)
        except Exception:
            if self.exists(staging):
                self.fs.delete_file(staging)
            raise

    def copy(self, src: str, dest: str) -> None:
        self.fs.copy_file(src, dest)

    def delete(self, path: str) -> None:
        self.fs.delete_file(path)

    def create_dir(self, path: str) -> None:
        self.fs.create_dir(path, recursive=True)

    def touch_dirs(self, paths: List[str]) -> int:
        """Bump the modification time of ``paths``; returns how many were touched.

        Readers that cache per-directory metadata key it on the directory
        mtime, so rewritten footers must invalidate it.
        """

        touched = 0
        for p in paths:
            local = self.local_path(p)
            if local is None:
                logger.debug("cannot set mtime on %s for %s; skipped", self.fs.type_name, p)
                continue
            try:
                os.utime(local, None)
                touched += 1
            except OSError as e:
                logger.warning("failed to refresh mtime of %s: %s", local, e)
        return touched


def staging_path(path: str) -> str:
    """Hidden sibling of ``path`` used while rewriting it."""

    head, sep, name = path.rpartition("/")
    return f"{head}{sep}{DOT_FILE_PREFIX}{name}{STAGING_SUFFIX}"


def open_filesystem(uri: Optional[str] = None) -> FooterFileSystem:
    """Create the filesystem the upgrade runs against.

    With no URI the local filesystem is used. The path component of a URI
    (``hdfs://nn:8020/warehouse``) becomes the root that relative paths are
    resolved against.
    """

    if not uri:
        return FooterFileSystem(pafs.LocalFileSystem())

    try:
        fs, base_path = pafs.FileSystem.from_uri(uri)
    except (OSError, ValueError, pa.ArrowException) as e:
        raise InitializationError(f"cannot open filesystem {uri}: {e}") from e

    root = base_path if base_path and base_path.strip("/") else None
    logger.info("Using filesystem %s (root=%s)", fs.type_name, root or "/")
    return FooterFileSystem(fs, root=root)
