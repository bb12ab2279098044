"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pyarrow as pa
import pyarrow.fs as pafs
import pyarrow.parquet as pq
import pytest

from parquet_footer_upgrade.filesystem import FooterFileSystem
from parquet_footer_upgrade.footer import read_footer, write_footer


@pytest.fixture
def repo_root():
    """Return the repository root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def src_path(repo_root):
    """Return the src directory path."""
    return repo_root / "src"


@pytest.fixture
def local_fs():
    return FooterFileSystem(pafs.LocalFileSystem())


def sample_table(num_rows: int = 5) -> pa.Table:
    return pa.table(
        {
            "id": pa.array(range(num_rows), type=pa.int64()),
            "name": pa.array([f"row-{i}" for i in range(num_rows)], type=pa.string()),
        }
    )


def restamp_created_by(path: Path, created_by: str | bytes) -> None:
    """Rewrite the footer of ``path`` in place so it claims ``created_by``.

    The old footer is cut off, so the file looks exactly like one written by
    that writer.
    """

    fs = FooterFileSystem(pafs.LocalFileSystem())
    result = read_footer(fs, fs.record(str(path)))
    result.footer.created_by = created_by
    with open(path, "r+b") as f:
        f.truncate(result.footer_offset)
        f.seek(result.footer_offset)
        write_footer(result.footer, f)


def write_parquet(path: Path, created_by: str | bytes | None = None, num_rows: int = 5) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    pq.write_table(sample_table(num_rows), str(path))
    if created_by is not None:
        restamp_created_by(path, created_by)
    return path


@pytest.fixture
def make_parquet():
    return write_parquet


class NoAppendHandler(pafs.FileSystemHandler):
    """Local files behind a filesystem that, like an object store, cannot append."""

    def __init__(self):
        self.local = pafs.LocalFileSystem()
        self.append_attempts = 0

    def __eq__(self, other):
        return isinstance(other, NoAppendHandler)

    def __ne__(self, other):
        return not self == other

    def get_type_name(self):
        return "no-append"

    def normalize_path(self, path):
        return path

    def get_file_info(self, paths):
        return self.local.get_file_info(paths)

    def get_file_info_selector(self, selector):
        return self.local.get_file_info(selector)

    def create_dir(self, path, recursive):
        self.local.create_dir(path, recursive=recursive)

    def delete_dir(self, path):
        self.local.delete_dir(path)

    def delete_dir_contents(self, path, missing_dir_ok=False):
        self.local.delete_dir_contents(path, missing_dir_ok=missing_dir_ok)

    def delete_root_dir_contents(self):
        raise NotImplementedError("refusing to wipe the root")

    def delete_file(self, path):
        self.local.delete_file(path)

    def move(self, src, dest):
        self.local.move(src, dest)

    def copy_file(self, src, dest):
        self.local.copy_file(src, dest)

    def open_input_stream(self, path):
        return self.local.open_input_stream(path)

    def open_input_file(self, path):
        return self.local.open_input_file(path)

    def open_output_stream(self, path, metadata):
        return self.local.open_output_stream(path, metadata=metadata)

    def open_append_stream(self, path, metadata):
        self.append_attempts += 1
        raise NotImplementedError("append is not supported")


@pytest.fixture
def no_append_handler():
    return NoAppendHandler()


@pytest.fixture
def no_append_fs(no_append_handler):
    return FooterFileSystem(pafs.PyFileSystem(no_append_handler))
