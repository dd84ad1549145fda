# core/ffmpeg_thumbnails.py
"""Precise thumbnails generated on the fly with ffmpeg.

Requires a reasonably recent ffmpeg on PATH (the ``<n>ms`` seek syntax needs >= 4).
Generated frames are kept in memory and in ``<cache_root>/<media_id>/<ms>.jpg``,
which lives until a full shutdown.
"""
import logging
import os
import shutil
import subprocess
import threading
import time

from PIL import Image

from core.aging_cache import FfmpegItemCache
from core.errors import FilesystemError, SubprocessFailure
from core.thumbnail_source import DEFAULT_MAX_CACHE, ThumbnailSource

logger = logging.getLogger(__name__)

# Files associated with a metadata item, longest first.
FILE_QUERY = """
    SELECT parts.file AS file, media.duration AS duration FROM metadata_items metadata
    INNER JOIN media_items media ON media.metadata_item_id=metadata.id
    INNER JOIN media_parts parts ON parts.media_item_id=media.id
    WHERE metadata.id=?
    ORDER BY media.duration DESC;
"""

FFMPEG_TIMEOUT = 10
# Thumbnails are displayed 240px wide, no need to go over that.
THUMBNAIL_WIDTH = 240
BUCKET_MS = 100
# Reported durations don't always line up with the video stream, stay this far from the end.
END_MARGIN_MS = 1000


def bucket_timestamp(timestamp: int, duration: int) -> int:
    """Round ``timestamp`` (ms) down to its 100ms bucket, kept inside the playable range."""
    rounded = (int(timestamp) // BUCKET_MS) * BUCKET_MS
    return max(0, min(duration - END_MARGIN_MS, rounded))


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove partial thumbnail %s: %s", path, e)


class FfmpegThumbnailSource(ThumbnailSource):

    def __init__(self, database, cache_root: str, max_cache: int = DEFAULT_MAX_CACHE,
                 timeout: float = FFMPEG_TIMEOUT, scale_width: int = THUMBNAIL_WIDTH,
                 ffmpeg: str = "ffmpeg"):
        super().__init__(database, max_cache)
        self.cache_root = cache_root
        self.timeout = timeout
        self.scale_width = scale_width
        self.ffmpeg = ffmpeg

    def _probe(self, media_id) -> FfmpegItemCache:
        rows = self.database.query_rows(FILE_QUERY, [media_id])
        for row in rows:
            file_path = row.get("file")
            if file_path and os.path.exists(file_path):
                logger.debug("Found file for %s: %s", media_id, file_path)
                return FfmpegItemCache(True, file_path=file_path, duration=int(row.get("duration") or 0))

        logger.debug("No file found for %s", media_id)
        return FfmpegItemCache(False)

    def get_thumbnail(self, media_id, timestamp: int) -> bytes:
        """Return a frame of ``media_id`` at ``timestamp`` ms, to the nearest tenth of a second (rounded down)."""
        item = self._require_item(media_id)
        timestamp = bucket_timestamp(timestamp, item.duration)

        cached = self.cache.try_get(media_id, timestamp)
        if cached is not None:
            logger.debug("Found cached thumbnail for %s:%d", media_id, timestamp)
            return cached

        return self._file_cache_or_generate(media_id, item, timestamp)

    def thumbnail_path(self, media_id, timestamp: int) -> str:
        return os.path.join(self.cache_root, str(media_id), f"{timestamp}.jpg")

    def _file_cache_or_generate(self, media_id, item: FfmpegItemCache, timestamp: int) -> bytes:
        save_file = self.thumbnail_path(media_id, timestamp)
        if os.path.exists(save_file):
            logger.debug("Found cached thumbnail file for %s:%d", media_id, timestamp)
            data = self._read(save_file)
            self.cache.add(media_id, timestamp, data)
            return data

        try:
            os.makedirs(os.path.dirname(save_file), exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Could not create thumbnail cache directory for {media_id}: {e}") from e

        start = time.perf_counter()
        self._generate(item.file_path, timestamp, save_file)
        data = self._read(save_file)
        self.cache.add(media_id, timestamp, data)
        logger.debug("Generated thumbnail %s:%d in %dms", media_id, timestamp,
                     round((time.perf_counter() - start) * 1000))
        return data

    def _generate(self, source: str, timestamp: int, save_file: str) -> None:
        """Run ffmpeg for a single frame, moving it to ``save_file`` only if it succeeded."""
        # One temp file per caller, so concurrent runs for the same frame never share it.
        part_file = f"{os.path.splitext(save_file)[0]}.{os.getpid()}-{threading.get_ident()}.part.jpg"
        cmd = [
            self.ffmpeg,
            "-loglevel", "error",
            "-noaccurate_seek",             # slightly off is fine, seeking fast is not optional
            "-ss", f"{timestamp}ms",
            "-i", source,
            "-vf", f"scale={self.scale_width}:-1",
            "-vframes", "1",
            "-y",
            part_file,
        ]
        try:
            try:
                subprocess.run(cmd, capture_output=True, check=True, timeout=self.timeout)
            except subprocess.TimeoutExpired as e:
                raise SubprocessFailure(f"ffmpeg timed out after {self.timeout}s for {source}@{timestamp}ms",
                                        e.stderr) from e
            except subprocess.CalledProcessError as e:
                raise SubprocessFailure(f"ffmpeg exited with status {e.returncode} for {source}@{timestamp}ms",
                                        e.stderr) from e
            except OSError as e:
                raise SubprocessFailure(f"Could not run {self.ffmpeg}: {e}") from e

            if not os.path.exists(part_file):
                raise SubprocessFailure(f"ffmpeg produced no output for {source}@{timestamp}ms")
            try:
                with Image.open(part_file) as img:
                    img.verify()
            except (OSError, SyntaxError) as e:
                raise SubprocessFailure(f"ffmpeg output for {source}@{timestamp}ms is not a valid image: {e}") from e

            try:
                os.replace(part_file, save_file)
            except OSError as e:
                raise FilesystemError(f"Could not move generated thumbnail into place: {e}") from e
        finally:
            _remove_quietly(part_file)

    @staticmethod
    def _read(path: str) -> bytes:
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise FilesystemError(f"Could not read thumbnail {path}: {e}") from e

    def close(self, full_shutdown: bool) -> None:
        """On full shutdown, wipe out the cache folder."""
        super().close(full_shutdown)
        if not full_shutdown:
            logger.debug("FfmpegThumbnailSource: Not a full shutdown, not clearing cache.")
            return

        if not os.path.exists(self.cache_root):
            return

        try:
            shutil.rmtree(self.cache_root)
            logger.debug("FfmpegThumbnailSource: Successfully removed cached thumbnails.")
        except OSError as e:
            logger.warning("FfmpegThumbnailSource: Failed to clear cached thumbnails: %s", e)
