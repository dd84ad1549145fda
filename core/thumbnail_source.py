# core/thumbnail_source.py
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Hashable

from core.aging_cache import AgingCache, MediaItemCache
from core.errors import NotAvailableError

logger = logging.getLogger(__name__)

# Upper bound of cached thumbnails' rank, see AgingCache.
DEFAULT_MAX_CACHE = 200


class ThumbnailSource(ABC):
    """Base class for the two ways of producing a thumbnail for a media item."""

    def __init__(self, database, max_cache: int = DEFAULT_MAX_CACHE):
        self.database = database
        self.cache: AgingCache = AgingCache(max_cache)
        self._probe_locks: Dict[Hashable, threading.Lock] = defaultdict(threading.Lock)
        self._probe_locks_guard = threading.Lock()

    @abstractmethod
    def _probe(self, media_id) -> MediaItemCache:
        """Look for a thumbnail source for ``media_id``. Called once per item."""

    @abstractmethod
    def get_thumbnail(self, media_id, timestamp: int) -> bytes:
        """Return the thumbnail for ``media_id`` at ``timestamp`` milliseconds.

        Raises NotAvailableError if the item has no thumbnail source.
        """

    def has_thumbnails(self, media_id) -> bool:
        """Determine whether thumbnails can be produced for ``media_id``.

        The result, negative or positive, is remembered until ``invalidate``.
        """
        cached = self.cache.get_item(media_id)
        if cached is not None:
            return cached.has_thumbnails

        with self._probe_lock(media_id):
            # Another thread may have finished the probe while we waited.
            cached = self.cache.get_item(media_id)
            if cached is not None:
                return cached.has_thumbnails

            item = self._probe(media_id)
            self.cache.add_item(media_id, item)
            return item.has_thumbnails

    def invalidate(self, media_id) -> bool:
        """Drop everything known about ``media_id`` so the next request probes again."""
        removed = self.cache.remove_item(media_id)
        with self._probe_locks_guard:
            self._probe_locks.pop(media_id, None)
        if removed:
            logger.debug("%s: invalidated cached state for %s", type(self).__name__, media_id)
        return removed

    def close(self, full_shutdown: bool) -> None:
        self.cache.clear()
        with self._probe_locks_guard:
            self._probe_locks.clear()

    def _require_item(self, media_id):
        if self.cache.get_item(media_id) is None:
            self.has_thumbnails(media_id)

        item = self.cache.get_item(media_id)
        if item is None or not item.has_thumbnails:
            raise NotAvailableError(media_id)
        return item

    def _probe_lock(self, media_id) -> threading.Lock:
        with self._probe_locks_guard:
            return self._probe_locks[media_id]
