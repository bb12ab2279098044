"""Backup, rewrite, and commit-or-rollback of a single file's footer.

States::

    INITIAL -> BACKED_UP -> REWRITTEN -> COMMITTED
                                      \\-> ROLLED_BACK

The new footer is appended after the existing bytes; the old footer stays
behind as dead bytes and the row group offsets it shares with the new one
are left untouched.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

import psutil
import pyarrow.parquet as pq

from .config import UpgradeConfig
from .filesystem import FileRecord, FooterFileSystem
from .footer import read_footer, write_footer

logger = logging.getLogger(__name__)


class UpgradeError(Exception):
    def __init__(self, message: str, *, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class BackupFailedError(UpgradeError):
    """The backup could not be taken; the file was not modified."""


class UpdateFailedError(UpgradeError):
    """Writing or verifying the new footer failed."""


class RollbackFailedError(UpgradeError):
    """The original bytes could not be restored; the backup was kept."""

    def __init__(self, message: str, *, path: Optional[str] = None, backup_path: Optional[str] = None):
        super().__init__(message, path=path)
        self.backup_path = backup_path


class TransactionState(str, Enum):
    INITIAL = "initial"
    BACKED_UP = "backed_up"
    REWRITTEN = "rewritten"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class UpgradeTransaction:
    def __init__(self, fs: FooterFileSystem, config: UpgradeConfig, record: FileRecord, footer: Any):
        self.fs = fs
        self.config = config
        self.record = record
        self.footer = footer
        self.state = TransactionState.INITIAL
        self.temp_dir = fs.normalize(config.temp_dir)
        self.backup_path = self.temp_dir.rstrip("/") + "/" + record.path.rstrip("/").rsplit("/", 1)[-1]
        self.bytes_written = 0

    def run(self) -> int:
        """Upgrade the file; returns the number of footer bytes appended.

        Raises BackupFailedError, UpdateFailedError (after a successful
        rollback) or RollbackFailedError.
        """

        self.backup()
        try:
            self.rewrite()
            if self.config.verify:
                self.verify()
        except UpdateFailedError:
            self.rollback()
            raise
        self.commit()
        return self.bytes_written

    def backup(self) -> None:
        path = self.record.path
        if self.fs.normalize(path) == self.fs.normalize(self.backup_path):
            raise BackupFailedError(f"backup location {self.backup_path} is the file itself", path=path)

        try:
            self.fs.create_dir(self.temp_dir)
            if self.fs.exists(self.backup_path):
                raise BackupFailedError(
                    f"a backup already exists at {self.backup_path}; reconcile it before upgrading {path}",
                    path=path,
                )
            self._check_free_space()
            self.fs.copy(path, self.backup_path)
        except BackupFailedError:
            raise
        except Exception as e:
            raise BackupFailedError(f"Backup failed: {e}", path=path) from e

        self.state = TransactionState.BACKED_UP
        logger.debug("backed up %s -> %s", path, self.backup_path)

    def _check_free_space(self) -> None:
        local = self.fs.local_path(self.temp_dir)
        if local is None:
            return
        needed = self.record.size + int(self.config.min_free_space_mb * 1024 * 1024)
        free = psutil.disk_usage(str(local)).free
        if free < needed:
            raise BackupFailedError(
                f"not enough free space in {self.temp_dir}: need {needed} bytes, have {free}",
                path=self.record.path,
            )

    def rewrite(self) -> None:
        path = self.record.path
        try:
            with self.fs.open_append(path) as out:
                self.bytes_written = write_footer(self.footer, out)
        except Exception as e:
            self.state = TransactionState.REWRITTEN
            raise UpdateFailedError(f"{type(e).__name__}: {e}", path=path) from e
        self.state = TransactionState.REWRITTEN
        logger.debug("appended %d footer bytes to %s", self.bytes_written, path)

    def verify(self) -> None:
        path = self.record.path
        try:
            result = read_footer(self.fs, self.fs.record(path))
            with self.fs.open_input(path) as f:
                num_rows = pq.ParquetFile(f).metadata.num_rows
        except Exception as e:
            raise UpdateFailedError(f"verification failed: {type(e).__name__}: {e}", path=path) from e

        if result.original_created_by != self.footer.created_by:
            raise UpdateFailedError(
                f"verification failed: footer reports created_by {result.original_created_by!r}",
                path=path,
            )
        if num_rows != self.footer.num_rows:
            raise UpdateFailedError(
                f"verification failed: {num_rows} rows readable, footer declares {self.footer.num_rows}",
                path=path,
            )

    def commit(self) -> None:
        self.state = TransactionState.COMMITTED
        try:
            self.fs.delete(self.backup_path)
        except Exception as e:
            logger.warning("upgraded %s but could not remove backup %s: %s", self.record.path, self.backup_path, e)

    def rollback(self) -> None:
        path = self.record.path
        logger.warning("restoring %s from %s", path, self.backup_path)
        try:
            self.fs.copy(self.backup_path, path)
        except Exception as e:
            raise RollbackFailedError(
                f"Rollback failed, original kept at {self.backup_path}: {type(e).__name__}: {e}",
                path=path,
                backup_path=self.backup_path,
            ) from e

        self.state = TransactionState.ROLLED_BACK
        try:
            self.fs.delete(self.backup_path)
        except Exception as e:
            logger.warning("restored %s but could not remove backup %s: %s", path, self.backup_path, e)
