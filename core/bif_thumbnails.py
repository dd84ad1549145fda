# core/bif_thumbnails.py
"""Thumbnails read from the ``index-sd.bif`` files Plex generates for each media part."""
import logging
import os
import threading
from typing import Dict, List, Set

from core import bif_index
from core.aging_cache import BifItemCache
from core.errors import NotAvailableError
from core.thumbnail_source import DEFAULT_MAX_CACHE, ThumbnailSource

logger = logging.getLogger(__name__)

# Media part hashes for a metadata item, used to locate the bundle holding index-sd.bif.
HASH_QUERY = """
    SELECT media_parts.id, media_parts.hash AS hash FROM media_parts
    INNER JOIN media_items ON media_parts.media_item_id=media_items.id
    INNER JOIN metadata_items ON media_items.metadata_item_id=metadata_items.id
    WHERE metadata_items.id=?
    ORDER BY media_parts.id ASC;
"""


def bif_path_for_hash(data_path: str, media_hash: str) -> str:
    """Path of the index file Plex keeps for the media part with the given hash."""
    return os.path.join(
        data_path, "Media", "localhost", media_hash[0], media_hash[1:] + ".bundle",
        "Contents", "Indexes", "index-sd.bif",
    )


class BifThumbnailSource(ThumbnailSource):
    """
    Pulls individual thumbnails out of Plex's preview index files.

    Thumbnails are only as precise as the index's interval (usually 2s), but
    nothing has to be generated.
    """

    def __init__(self, database, data_path: str, max_cache: int = DEFAULT_MAX_CACHE):
        super().__init__(database, max_cache)
        self.data_path = data_path
        # index path -> media ids whose (negative) probe looked for it
        self._missing_paths: Dict[str, Set] = {}
        self._missing_lock = threading.Lock()

    def _probe(self, media_id) -> BifItemCache:
        rows = self.database.query_rows(HASH_QUERY, [media_id])

        # Items with multiple versions may have multiple BIF files. Use the newest one.
        newest_path, newest_mtime, found = "", 0.0, 0
        candidates: List[str] = []
        for row in rows:
            media_hash = row.get("hash")
            if not media_hash or len(media_hash) < 2:
                continue
            path = bif_path_for_hash(self.data_path, media_hash)
            candidates.append(path)
            try:
                stat = os.stat(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Could not stat thumbnail index %s: %s", path, e)
                continue

            found += 1
            if stat.st_mtime > newest_mtime or not newest_path:
                newest_path, newest_mtime = path, stat.st_mtime

        if newest_path:
            extra = f" (newest of {found})" if found > 1 else ""
            logger.debug("Found thumbnail index file for %s%s: %s", media_id, extra, newest_path)
            return BifItemCache(True, bif_path=newest_path)

        logger.debug("Did not find thumbnail index file for %s", media_id)
        with self._missing_lock:
            for path in candidates:
                self._missing_paths.setdefault(os.path.normpath(path), set()).add(media_id)
        return BifItemCache(False)

    def index_file_appeared(self, path: str) -> List:
        """Invalidate items whose earlier probe looked for ``path`` and didn't find it.

        Returns the ids that were invalidated.
        """
        with self._missing_lock:
            media_ids = self._missing_paths.pop(os.path.normpath(path), set())

        invalidated = [media_id for media_id in media_ids if self.invalidate(media_id)]
        if invalidated:
            logger.info("Thumbnail index %s appeared, re-checking %s", path, invalidated)
        return invalidated

    def get_thumbnail(self, media_id, timestamp: int) -> bytes:
        """Return the indexed thumbnail closest to ``timestamp`` (milliseconds), rounded down."""
        # The index holds whole seconds, so anything finer is irrelevant.
        seconds = int(timestamp // 1000)
        item = self._require_item(media_id)

        if item.interval:
            index = bif_index.frame_index(seconds, item.interval, item.frame_count)
            cached = self.cache.try_get(media_id, index)
            if cached is not None:
                logger.debug("Found cached thumbnail for %s:%s", media_id, seconds)
                return cached

        return self._read_thumbnail(media_id, item, seconds)

    def _read_thumbnail(self, media_id, item: BifItemCache, seconds: int) -> bytes:
        try:
            with open(item.bif_path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise NotAvailableError(media_id, f"failed to read thumbnail file {item.bif_path}") from e

        thumbnail, span = bif_index.extract_frame(data, seconds, item.interval)
        if not item.interval:
            # frame_count first: readers treat a non-zero interval as "both known".
            item.frame_count = span.frame_count
            item.interval = span.interval

        logger.debug("Thumbnail found for %s:%s, caching (%d bytes).", media_id, seconds, span.size)
        self.cache.add(media_id, span.index, thumbnail)
        return thumbnail

    def invalidate(self, media_id) -> bool:
        with self._missing_lock:
            for media_ids in self._missing_paths.values():
                media_ids.discard(media_id)
        return super().invalidate(media_id)

    def close(self, full_shutdown: bool) -> None:
        with self._missing_lock:
            self._missing_paths.clear()
        super().close(full_shutdown)
