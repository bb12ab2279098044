"""Read and write the trailing Parquet footer.

File layout::

    [PAR1][... row groups ...][FileMetaData (thrift compact)][u32 LE length][PAR1]

The footer is decoded with thriftpy2 against the bundled ``parquet.thrift``
and re-encoded whole. Nothing before the footer is ever read or written here.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Optional

import thriftpy2
from thriftpy2.protocol import TCompactProtocolFactory
from thriftpy2.utils import deserialize, serialize

from .filesystem import FileRecord, FooterFileSystem
from .version import CREATED_BY

logger = logging.getLogger(__name__)

MAGIC = b"PAR1"
FOOTER_LENGTH_SIZE = 4
MIN_FILE_SIZE = len(MAGIC) + FOOTER_LENGTH_SIZE + len(MAGIC)

parquet_thrift = thriftpy2.load(
    str(Path(__file__).with_name("parquet.thrift")),
    module_name="parquet_thrift",
)

_PROTOCOL = TCompactProtocolFactory()


class FooterError(Exception):
    """The file does not end in a readable Parquet footer."""

    def __init__(self, message: str, *, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class FooterTooSmallError(FooterError):
    pass


class BadMagicError(FooterError):
    pass


class CorruptFooterIndexError(FooterError):
    pass


class FooterDecodeError(FooterError):
    pass


@dataclass
class FooterReadResult:
    footer: Any
    original_created_by: Optional[str]
    footer_offset: int
    footer_length: int


def decode_footer(data: bytes) -> Any:
    """Decode a serialized FileMetaData block."""

    try:
        footer = deserialize(parquet_thrift.FileMetaData(), data, _PROTOCOL)
    except Exception as e:
        raise FooterDecodeError(f"footer does not decode as FileMetaData: {type(e).__name__}: {e}") from e

    if footer.schema is None or footer.row_groups is None:
        raise FooterDecodeError("footer is missing the schema or row group list")
    return footer


def encode_footer(footer: Any) -> bytes:
    return serialize(footer, _PROTOCOL)


def read_footer(fs: FooterFileSystem, record: FileRecord, created_by: str = CREATED_BY) -> FooterReadResult:
    """Locate and decode the footer of ``record``.

    The decoded footer has its ``created_by`` replaced with ``created_by``, ready
    to be written back; the value found on disk is returned separately as
    ``original_created_by``.
    """

    path = record.path
    if record.size < MIN_FILE_SIZE:
        raise FooterTooSmallError(f"{path} is not a Parquet file (too small: {record.size} bytes)", path=path)

    length_offset = record.size - FOOTER_LENGTH_SIZE - len(MAGIC)

    with fs.open_input(path) as f:
        f.seek(length_offset)
        tail = f.read(FOOTER_LENGTH_SIZE + len(MAGIC))
        if len(tail) < FOOTER_LENGTH_SIZE + len(MAGIC):
            raise FooterTooSmallError(f"{path} is shorter than its recorded size {record.size}", path=path)

        (footer_length,) = struct.unpack("<I", tail[:FOOTER_LENGTH_SIZE])
        magic = tail[FOOTER_LENGTH_SIZE:]
        if magic != MAGIC:
            raise BadMagicError(
                f"{path} is not a Parquet file. expected magic number at tail {list(MAGIC)} but found {list(magic)}",
                path=path,
            )

        footer_offset = length_offset - footer_length
        if footer_offset < len(MAGIC) or footer_offset >= length_offset:
            raise CorruptFooterIndexError(
                f"corrupted file: the footer index is not within the file "
                f"(footer_length={footer_length} length_offset={length_offset})",
                path=path,
            )

        f.seek(footer_offset)
        data = f.read(footer_length)

    if len(data) != footer_length:
        raise FooterDecodeError(f"{path}: short read of footer ({len(data)} of {footer_length} bytes)", path=path)

    try:
        footer = decode_footer(data)
    except FooterDecodeError as e:
        e.path = path
        raise

    original_created_by = footer.created_by
    if isinstance(original_created_by, bytes):
        # thriftpy2 hands back raw bytes when the string is not valid UTF-8.
        original_created_by = original_created_by.decode("utf-8", errors="replace")
    footer.created_by = created_by
    logger.debug("read footer path=%s offset=%d length=%d", path, footer_offset, footer_length)

    return FooterReadResult(
        footer=footer,
        original_created_by=original_created_by,
        footer_offset=footer_offset,
        footer_length=footer_length,
    )


def write_footer(footer: Any, out: BinaryIO) -> int:
    """Append ``footer`` followed by its length and the closing magic.

    ``out`` must already be positioned after the data the footer describes;
    it is only ever written to, so append-only streams work. Returns the
    number of bytes written.
    """

    data = encode_footer(footer)
    out.write(data)
    footer_length = len(data)
    out.write(struct.pack("<I", footer_length))
    out.write(MAGIC)
    return footer_length + FOOTER_LENGTH_SIZE + len(MAGIC)
