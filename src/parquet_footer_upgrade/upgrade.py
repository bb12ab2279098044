"""Walk the requested paths and upgrade each file whose writer is affected."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from .config import UpgradeConfig
from .filesystem import FileRecord, FooterFileSystem, open_filesystem
from .footer import FooterError, FooterReadResult, read_footer
from .transaction import UpgradeError, UpgradeTransaction
from .version import CREATED_BY, VersionVerdict, classify

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"
FAILURE = "FAILURE"
SKIPPED = "SKIPPED"


class InspectionKind(str, Enum):
    CURRENT = "current"
    NEEDS_UPGRADE = "needs_upgrade"
    DECODE_ERROR = "decode_error"


@dataclass(frozen=True)
class FileInspection:
    kind: InspectionKind
    record: FileRecord
    footer: Optional[FooterReadResult] = None
    verdict: Optional[VersionVerdict] = None
    error: Optional[Exception] = None


@dataclass(frozen=True)
class UpgradeOutcome:
    path: str
    status: str
    reason: str = ""
    would_upgrade: bool = False

    def line(self) -> str:
        if self.status == SUCCESS:
            return f"{SUCCESS} : {self.path}"
        if self.status == FAILURE:
            return f"{FAILURE} : {self.path}. Cause: {self.reason}"
        return f"{SKIPPED} : {self.path}. Reason: {self.reason}"


@dataclass
class RunSummary:
    scanned: int = 0
    upgraded: int = 0
    skipped: int = 0
    failed: int = 0
    would_upgrade: int = 0
    path_errors: int = 0

    def record(self, outcome: UpgradeOutcome) -> None:
        self.scanned += 1
        if outcome.status == SUCCESS:
            self.upgraded += 1
        elif outcome.status == FAILURE:
            self.failed += 1
        else:
            self.skipped += 1
        if outcome.would_upgrade:
            self.would_upgrade += 1


def inspect_file(fs: FooterFileSystem, record: FileRecord, created_by: str = CREATED_BY) -> FileInspection:
    """Read the footer of ``record`` and classify its writer version."""

    try:
        result = read_footer(fs, record, created_by=created_by)
    except (FooterError, OSError) as e:
        return FileInspection(kind=InspectionKind.DECODE_ERROR, record=record, error=e)

    verdict = classify(result.original_created_by)
    kind = InspectionKind.NEEDS_UPGRADE if verdict.upgrade else InspectionKind.CURRENT
    return FileInspection(kind=kind, record=record, footer=result, verdict=verdict)


def upgrade_file(fs: FooterFileSystem, record: FileRecord, config: UpgradeConfig) -> UpgradeOutcome:
    """Inspect and, if needed, upgrade one file. Never raises for per-file problems."""

    inspection = inspect_file(fs, record)
    if inspection.kind == InspectionKind.DECODE_ERROR:
        return UpgradeOutcome(record.path, SKIPPED, f"File skipped. ({inspection.error})")

    logger.info("Created by: %s", inspection.footer.original_created_by)

    if inspection.kind == InspectionKind.CURRENT:
        return UpgradeOutcome(record.path, SKIPPED, inspection.verdict.reason)

    if config.dry_run:
        return UpgradeOutcome(
            record.path,
            SKIPPED,
            f"dry run, would upgrade ({inspection.verdict.reason})",
            would_upgrade=True,
        )

    txn = UpgradeTransaction(fs, config, record, inspection.footer.footer)
    try:
        written = txn.run()
    except UpgradeError as e:
        logger.debug("transaction for %s ended in state %s", record.path, txn.state.value)
        return UpgradeOutcome(record.path, FAILURE, str(e))

    logger.info("appended %d byte footer to %s (%s)", written, record.path, inspection.verdict.reason)
    return UpgradeOutcome(record.path, SUCCESS)


def run_upgrade(
    paths: Iterable[str],
    config: UpgradeConfig,
    fs: Optional[FooterFileSystem] = None,
) -> RunSummary:
    """Upgrade every visible file under ``paths``, one at a time.

    Prints one status line per file. Raises InitializationError only when the
    filesystem itself cannot be opened.
    """

    if fs is None:
        fs = open_filesystem(config.filesystem_uri)

    summary = RunSummary()
    t0 = time.time()
    for raw_path in paths:
        path = fs.normalize(raw_path)
        print(f"Executing footer upgrade on {path}", flush=True)
        try:
            walk = fs.walk(path)
        except (OSError, ValueError) as e:
            summary.path_errors += 1
            print(f"\tFailed to get list of file(s). Skipping. ({e})", flush=True)
            continue

        for record in walk.files:
            print(f"\tUpgrading {record.path}", flush=True)
            try:
                outcome = upgrade_file(fs, record, config)
            except Exception as e:
                logger.exception("unexpected error while upgrading %s", record.path)
                outcome = UpgradeOutcome(record.path, FAILURE, f"{type(e).__name__}: {e}")
            summary.record(outcome)
            print(outcome.line(), flush=True)

        if not config.dry_run:
            touched = fs.touch_dirs(walk.directories)
            logger.info("refreshed mtime on %d directories under %s", touched, path)

    elapsed = time.time() - t0
    line = (
        f"scanned={summary.scanned} upgraded={summary.upgraded} skipped={summary.skipped} "
        f"failed={summary.failed} elapsed_s={int(elapsed)}"
    )
    if config.dry_run:
        line += f" would_upgrade={summary.would_upgrade}"
    print(line, flush=True)
    return summary
