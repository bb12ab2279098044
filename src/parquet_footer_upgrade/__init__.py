"""Repair Parquet footers written by parquet-mr releases with corrupt statistics.

Affected files get a new footer appended whose ``created_by`` names a fixed
writer; row data is never touched.
"""

from .version import TOOL_VERSION as __version__

__all__ = ["__version__"]
