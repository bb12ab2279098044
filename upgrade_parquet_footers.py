#!/usr/bin/env python3
"""Backwards-compatible wrapper for the Parquet footer upgrade.

Moved to:
  parquet_footer_upgrade.cli
"""

from parquet_footer_upgrade.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
