import functools
import logging
import os
import subprocess
from typing import Optional

from core.bif_thumbnails import BifThumbnailSource
from core.errors import NotAvailableError
from core.ffmpeg_thumbnails import FfmpegThumbnailSource
from core.thumbnail_source import DEFAULT_MAX_CACHE, ThumbnailSource

logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=1)
def _is_ffmpeg_available(ffmpeg: str = "ffmpeg") -> bool:
    try:
        subprocess.run([ffmpeg, "-version"], capture_output=True, check=True, timeout=5)
        return True
    except (OSError, subprocess.SubprocessError):
        logger.warning("ffmpeg not found or unavailable.")
        return False


class ThumbnailManager:
    """
    Entry point for thumbnail retrieval.

    Owns exactly one thumbnail source for its lifetime: ffmpeg-generated
    thumbnails when ``thumbnails.precise`` is set, Plex's index-sd.bif files
    otherwise. The command layer holds the instance and calls ``create`` once
    the Plex database is available.
    """

    def __init__(self, config_manager):
        self.config_manager = config_manager
        self._source: Optional[ThumbnailSource] = None
        self._watcher = None

    @staticmethod
    def test_ffmpeg() -> bool:
        """Return True if ffmpeg can be found on PATH. Never raises."""
        return _is_ffmpeg_available()

    @property
    def is_active(self) -> bool:
        return self._source is not None

    @property
    def source(self) -> Optional[ThumbnailSource]:
        return self._source

    def create(self, database, data_path: str) -> ThumbnailSource:
        """Create the thumbnail source selected by the configuration.

        ``data_path`` is the root of Plex's data directory.
        """
        if self._source is not None:
            logger.warning("Thumbnail manager already initialized, we shouldn't be initializing it again")
            return self._source

        max_cache = self.config_manager.get("thumbnails.max_cache", DEFAULT_MAX_CACHE)
        if self.config_manager.get("thumbnails.precise", False):
            project_root = os.path.expanduser(self.config_manager.get("project_root", "~/.intro-editor"))
            self._source = FfmpegThumbnailSource(
                database,
                os.path.join(project_root, "cache"),
                max_cache=max_cache,
                timeout=self.config_manager.get("thumbnails.ffmpeg_timeout", 10),
                scale_width=self.config_manager.get("thumbnails.scale_width", 240),
            )
        else:
            self._source = BifThumbnailSource(database, data_path, max_cache=max_cache)
            if self.config_manager.get("thumbnails.watch_index_files", False):
                self._start_watcher(self._source)

        logger.info("ThumbnailManager: using %s", type(self._source).__name__)
        return self._source

    def _start_watcher(self, source: BifThumbnailSource) -> None:
        from filewatcher.watcher import IndexWatcher
        self._watcher = IndexWatcher(source)
        self._watcher.start()

    def close(self, full_shutdown: bool) -> None:
        """Release the thumbnail source.

        ``full_shutdown`` distinguishes a real shutdown from a suspend/restart;
        only the former clears on-disk caches.
        """
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        if self._source is not None:
            self._source.close(full_shutdown)
            self._source = None

    def has_thumbnails(self, media_id) -> bool:
        return self._active_source(media_id).has_thumbnails(media_id)

    def get_thumbnail(self, media_id, timestamp: int) -> bytes:
        """Return the thumbnail for ``media_id`` at ``timestamp`` milliseconds."""
        return self._active_source(media_id).get_thumbnail(media_id, timestamp)

    def invalidate(self, media_id) -> bool:
        """Forget cached state for ``media_id``, e.g. after Plex generated new index files."""
        if self._source is None:
            return False
        return self._source.invalidate(media_id)

    def _active_source(self, media_id) -> ThumbnailSource:
        if self._source is None:
            raise NotAvailableError(media_id, "thumbnail manager has not been created")
        return self._source
