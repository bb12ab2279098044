"""Command line entrypoint.

Examples:
    parquet-footer-upgrade /data/warehouse/events
    parquet-footer-upgrade --tempDir=/scratch/backups part-0000.parquet part-0001.parquet
    parquet-footer-upgrade --filesystem hdfs://namenode:8020 /warehouse/events
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .config import TEMP_DIR_ENV, UpgradeConfig, default_temp_dir
from .filesystem import InitializationError, open_filesystem
from .upgrade import run_upgrade
from .version import CREATED_BY, TOOL_VERSION


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="parquet-footer-upgrade",
        description=(
            "Rewrite the footer of Parquet files written by parquet-mr releases with corrupt "
            "binary statistics (PARQUET-251) so readers interpret them correctly. Row data is "
            "never modified."
        ),
        epilog=f"Rewritten footers report created_by {CREATED_BY!r}.",
    )
    ap.add_argument("paths", nargs="*", help="Files or directories to upgrade (directories are walked recursively)")
    ap.add_argument(
        "--tempDir",
        "--temp-dir",
        dest="temp_dir",
        default=None,
        metavar="PATH",
        help=(
            f"Directory for backups while a file is rewritten (default: ${TEMP_DIR_ENV} or {default_temp_dir()}). "
            "An absolute path is used as is on the target filesystem, never under the --filesystem root"
        ),
    )
    ap.add_argument("--config", default=None, help="JSON file with UpgradeConfig fields")
    ap.add_argument(
        "--filesystem",
        default=None,
        metavar="URI",
        help=(
            "pyarrow filesystem URI the paths live on (default: local filesystem). "
            "Relative paths resolve against the URI path"
        ),
    )
    ap.add_argument("--dry-run", action="store_true", help="Only report which files would be upgraded")
    ap.add_argument("--no-verify", action="store_true", help="Skip re-reading each file after rewriting it")
    ap.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {TOOL_VERSION}")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.temp_dir is not None and not args.temp_dir.strip():
        ap.error("--tempDir requires a value, e.g. --tempDir=/tmp/backups")

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )

    if not args.paths:
        print("Nothing to do.", flush=True)
        return 0

    try:
        config = UpgradeConfig.from_args(args)
    except (OSError, ValueError, TypeError) as e:
        print(f"Invalid configuration. ({e})", file=sys.stderr, flush=True)
        return 2

    try:
        fs = open_filesystem(config.filesystem_uri)
    except InitializationError as e:
        print(f"Initialization failed. ({e})", flush=True)
        return 2

    summary = run_upgrade(args.paths, config, fs)
    print("Done", flush=True)
    return 1 if summary.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
