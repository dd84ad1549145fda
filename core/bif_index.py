# core/bif_index.py
"""Reader for Plex ``index-sd.bif`` preview files.

File layout (all integers little-endian):

    0x00  magic 89 42 49 46 0D 0A 1A 0A  (``\\x89BIF\\r\\n\\x1a\\n``)
    0x0C  uint32 number of thumbnails in the file
    0x40  index table, one 8-byte record per thumbnail:
            uint32 timestamp of the thumbnail, in seconds
            uint32 offset of the thumbnail's JPEG data

A thumbnail's bytes run from its own offset to the next record's offset.
The last thumbnail runs to the end of the file.
"""
import logging
import struct
from dataclasses import dataclass

from core.errors import CorruptIndexError

logger = logging.getLogger(__name__)

BIF_MAGIC = b"\x89BIF\r\n\x1a\n"

_COUNT_OFFSET = 0x0C
_INDEX_TABLE_START = 0x40
_RECORD = struct.Struct("<II")
_COUNT = struct.Struct("<I")


@dataclass(frozen=True)
class FrameSpan:
    """Byte range of one thumbnail inside a BIF file."""
    index: int
    start: int
    end: int
    interval: int
    frame_count: int

    @property
    def size(self) -> int:
        return self.end - self.start


def _record(data: bytes, index: int):
    pos = _INDEX_TABLE_START + index * _RECORD.size
    if pos + _RECORD.size > len(data):
        raise CorruptIndexError(f"Index record {index} lies beyond the end of the file ({len(data)} bytes)")
    return _RECORD.unpack_from(data, pos)


def frame_count(data: bytes) -> int:
    if len(data) < _INDEX_TABLE_START:
        raise CorruptIndexError(f"File too small to hold a BIF header ({len(data)} bytes)")
    count = _COUNT.unpack_from(data, _COUNT_OFFSET)[0]
    if count < 1:
        raise CorruptIndexError("BIF file does not contain any thumbnails")
    return count


def read_interval(data: bytes) -> int:
    """Return the number of seconds between thumbnails.

    The first record must be at timestamp 0, anything else means we're not
    looking at a file we understand.
    """
    if data[:len(BIF_MAGIC)] != BIF_MAGIC:
        logger.warning("Unexpected BIF magic %s, attempting to read anyway.", data[:len(BIF_MAGIC)].hex())

    first_timestamp, _ = _record(data, 0)
    if first_timestamp != 0:
        raise CorruptIndexError(f"Unexpected thumbnail file contents: first timestamp is {first_timestamp}, expected 0")

    interval, _ = _record(data, 1)
    if interval <= 0:
        raise CorruptIndexError(f"Invalid thumbnail interval {interval}")
    return interval


def frame_index(timestamp: int, interval: int, count: int) -> int:
    """Map a timestamp (seconds) to a thumbnail index, clamped to the file's range."""
    index = timestamp // interval
    max_index = count - 1
    if index > max_index:
        logger.warning("Received thumbnail request beyond max timestamp (%ds). Retrieving last thumbnail instead.", timestamp)
        return max_index
    if index < 0:
        logger.warning("Received negative thumbnail request (%ds). Retrieving first thumbnail instead.", timestamp)
        return 0
    return index


def locate_frame(data: bytes, timestamp: int, interval: int = 0) -> FrameSpan:
    """Find the thumbnail covering ``timestamp`` (seconds, rounded down).

    ``interval`` may be passed in when it was discovered by an earlier parse of
    the same file; otherwise it is read (and validated) from the index table.
    """
    count = frame_count(data)
    if interval <= 0:
        interval = read_interval(data)

    index = frame_index(timestamp, interval, count)
    start = _record(data, index)[1]
    end = len(data) if index == count - 1 else _record(data, index + 1)[1]
    if not 0 < start < end <= len(data):
        raise CorruptIndexError(f"Thumbnail {index} has invalid bounds [{start:#x}, {end:#x}) in a {len(data):#x} byte file")

    return FrameSpan(index=index, start=start, end=end, interval=interval, frame_count=count)


def extract_frame(data: bytes, timestamp: int, interval: int = 0):
    """Return ``(thumbnail_bytes, span)`` for the thumbnail covering ``timestamp``."""
    span = locate_frame(data, timestamp, interval)
    return bytes(data[span.start:span.end]), span
