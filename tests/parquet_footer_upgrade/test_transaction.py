"""Tests for the backup, rewrite and rollback transaction."""

from __future__ import annotations

from collections import namedtuple
from pathlib import Path

import pyarrow.fs as pafs
import pyarrow.parquet as pq
import pytest

from parquet_footer_upgrade import transaction
from parquet_footer_upgrade.config import UpgradeConfig
from parquet_footer_upgrade.filesystem import FooterFileSystem
from parquet_footer_upgrade.footer import read_footer
from parquet_footer_upgrade.transaction import (
    BackupFailedError,
    RollbackFailedError,
    TransactionState,
    UpdateFailedError,
    UpgradeTransaction,
)
from parquet_footer_upgrade.version import CREATED_BY


@pytest.fixture
def old_file(tmp_path: Path, make_parquet) -> Path:
    return make_parquet(tmp_path / "data" / "part-0.parquet", created_by="parquet-mr version 1.4.0")


@pytest.fixture
def config(tmp_path: Path) -> UpgradeConfig:
    return UpgradeConfig(temp_dir=str(tmp_path / "backup"))


def _transaction(fs: FooterFileSystem, config: UpgradeConfig, path: Path) -> UpgradeTransaction:
    record = fs.record(str(path))
    result = read_footer(fs, record)
    return UpgradeTransaction(fs, config, record, result.footer)


def test_commit_appends_new_footer(local_fs, config, old_file: Path):
    """Test that a committed upgrade appends a footer and removes the backup."""
    original = old_file.read_bytes()
    txn = _transaction(local_fs, config, old_file)

    written = txn.run()

    data = old_file.read_bytes()
    assert txn.state == TransactionState.COMMITTED
    assert len(data) == len(original) + written
    assert data[: len(original)] == original
    assert not Path(txn.backup_path).exists()
    assert pq.read_metadata(str(old_file)).created_by == CREATED_BY
    assert pq.read_table(str(old_file)).num_rows == 5


def test_backup_lives_in_temp_dir(local_fs, config, old_file: Path, tmp_path: Path):
    """Test that backups are named after the file inside the temp dir."""
    txn = _transaction(local_fs, config, old_file)
    assert txn.backup_path == str(tmp_path / "backup" / "part-0.parquet")


def test_rollback_restores_original_bytes(local_fs, config, old_file: Path, monkeypatch):
    """Test that a failed write restores the file bit for bit."""
    original = old_file.read_bytes()

    def failing_write_footer(footer, out):
        out.write(b"partial footer bytes")
        raise OSError("simulated write failure")

    monkeypatch.setattr(transaction, "write_footer", failing_write_footer)
    txn = _transaction(local_fs, config, old_file)

    with pytest.raises(UpdateFailedError, match="simulated write failure"):
        txn.run()

    assert txn.state == TransactionState.ROLLED_BACK
    assert old_file.read_bytes() == original
    assert not Path(txn.backup_path).exists()


def test_failed_verification_rolls_back(local_fs, config, old_file: Path, monkeypatch):
    """Test that a footer that does not read back is rolled back."""
    original = old_file.read_bytes()

    def garbage_footer(footer, out):
        out.write(b"not a footer")
        return 12

    monkeypatch.setattr(transaction, "write_footer", garbage_footer)
    txn = _transaction(local_fs, config, old_file)

    with pytest.raises(UpdateFailedError, match="verification failed"):
        txn.run()

    assert old_file.read_bytes() == original
    assert not Path(txn.backup_path).exists()


def test_existing_backup_blocks_transaction(local_fs, config, old_file: Path, tmp_path: Path):
    """Test that a leftover backup is never overwritten."""
    original = old_file.read_bytes()
    stale = tmp_path / "backup" / "part-0.parquet"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"left over from an interrupted run")
    txn = _transaction(local_fs, config, old_file)

    with pytest.raises(BackupFailedError, match="already exists"):
        txn.run()

    assert txn.state == TransactionState.INITIAL
    assert old_file.read_bytes() == original
    assert stale.read_bytes() == b"left over from an interrupted run"


def test_backup_onto_itself_is_refused(local_fs, old_file: Path):
    config = UpgradeConfig(temp_dir=str(old_file.parent))
    txn = _transaction(local_fs, config, old_file)

    with pytest.raises(BackupFailedError, match="file itself"):
        txn.run()
    assert old_file.exists()


def test_insufficient_temp_space(local_fs, config, old_file: Path, monkeypatch):
    """Test that the backup is refused when the temp dir is too small."""
    original = old_file.read_bytes()
    usage = namedtuple("usage", "total used free percent")
    monkeypatch.setattr(transaction.psutil, "disk_usage", lambda path: usage(100, 100, 0, 100.0))
    txn = _transaction(local_fs, config, old_file)

    with pytest.raises(BackupFailedError, match="not enough free space"):
        txn.run()
    assert old_file.read_bytes() == original


class _RestoreFailsFileSystem(FooterFileSystem):
    def __init__(self):
        super().__init__(pafs.LocalFileSystem())
        self.copies = 0

    def copy(self, src: str, dest: str) -> None:
        self.copies += 1
        if self.copies > 1:
            raise OSError("simulated restore failure")
        super().copy(src, dest)


def test_failed_rollback_keeps_backup(config, old_file: Path, monkeypatch):
    """Test that the backup survives when it cannot be restored."""
    original = old_file.read_bytes()
    fs = _RestoreFailsFileSystem()

    def failing_write_footer(footer, out):
        raise OSError("simulated write failure")

    monkeypatch.setattr(transaction, "write_footer", failing_write_footer)
    txn = _transaction(fs, config, old_file)

    with pytest.raises(RollbackFailedError) as excinfo:
        txn.run()

    assert excinfo.value.backup_path == txn.backup_path
    assert Path(txn.backup_path).read_bytes() == original
    assert txn.state == TransactionState.REWRITTEN
