# core/errors.py
"""Exceptions raised by the thumbnail sources."""
from typing import Optional


class ThumbnailError(Exception):
    """Base class for every thumbnail retrieval failure."""


class NotAvailableError(ThumbnailError):
    """The media item has no thumbnail source (no BIF file, no readable media file)."""

    def __init__(self, media_id, reason: str = ""):
        self.media_id = media_id
        message = f"No thumbnails for {media_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CorruptIndexError(ThumbnailError):
    """The BIF index could not be decoded."""


class SubprocessFailure(ThumbnailError):
    """ffmpeg exited non-zero, timed out, or produced no usable frame."""

    def __init__(self, message: str, stderr: Optional[bytes] = None):
        super().__init__(message)
        self.stderr = stderr


class FilesystemError(ThumbnailError):
    """Reading or writing the on-disk thumbnail cache failed."""
