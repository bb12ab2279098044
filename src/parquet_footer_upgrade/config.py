"""Upgrade configuration."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Backups are staged here unless --tempDir, the config file, or
# $PARQUET_UPGRADE_TEMP_DIR says otherwise.
DEFAULT_TEMP_DIR = "/tmp"
TEMP_DIR_ENV = "PARQUET_UPGRADE_TEMP_DIR"


def default_temp_dir() -> str:
    return os.getenv(TEMP_DIR_ENV) or DEFAULT_TEMP_DIR


@dataclass
class UpgradeConfig:
    """Upgrade configuration"""
    temp_dir: str = field(default_factory=default_temp_dir)
    # pyarrow filesystem URI; None means the local filesystem.
    filesystem_uri: Optional[str] = None
    # Re-read the footer (and open the file with pyarrow) after rewriting it.
    verify: bool = True
    dry_run: bool = False
    # Extra free space required in a local temp dir on top of the file size.
    min_free_space_mb: float = 0.0

    def __post_init__(self):
        self.temp_dir = str(self.temp_dir)
        if not self.temp_dir:
            raise ValueError("temp_dir cannot be empty")

    @classmethod
    def from_json(cls, path: Path) -> 'UpgradeConfig':
        """Load configuration from JSON file"""
        with open(path) as f:
            data = json.load(f)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown config keys in {path}: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_args(cls, args) -> 'UpgradeConfig':
        """Create config from command-line args, with JSON config as fallback"""
        if getattr(args, 'config', None):
            config_file = Path(args.config)
            logger.info(f"Loading configuration from {config_file}")
            config = cls.from_json(config_file)
        else:
            config = cls()

        if getattr(args, 'temp_dir', None):
            logger.info(f"Overriding temp_dir: {args.temp_dir}")
            config.temp_dir = str(args.temp_dir)
        if getattr(args, 'filesystem', None):
            config.filesystem_uri = args.filesystem
        if getattr(args, 'no_verify', False):
            config.verify = False
        if getattr(args, 'dry_run', False):
            config.dry_run = True
        return config
