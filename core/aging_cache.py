# core/aging_cache.py
"""In-memory thumbnail cache with batched rank decay.

Every add or cache hit is a "tick" and resets the touched thumbnail's rank to
``max_cache + 1``. Ranks are only decayed every ``max_tick`` ticks, when every
cached thumbnail loses ``max_tick`` rank in one sweep and anything at or below
zero is dropped. A thumbnail that isn't touched therefore survives roughly
``max_cache`` further accesses to other thumbnails.

Item entries (``MediaItemCache``) are never evicted by the sweep, only the
thumbnails they hold.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_MAX_TICK = 20


@dataclass
class CachedThumbnail:
    data: bytes
    rank: int


@dataclass
class MediaItemCache:
    """Thumbnail state for a single media item."""
    has_thumbnails: bool
    thumbnails: Dict[Hashable, CachedThumbnail] = field(default_factory=dict)


@dataclass
class BifItemCache(MediaItemCache):
    bif_path: str = ""
    # Seconds between thumbnails, 0 until the file has been read once.
    interval: int = 0
    frame_count: int = 0


@dataclass
class FfmpegItemCache(MediaItemCache):
    file_path: str = ""
    # Milliseconds, as reported by Plex.
    duration: int = 0


ItemT = TypeVar("ItemT", bound=MediaItemCache)


class AgingCache(Generic[ItemT]):
    """Map of media ids to their cached thumbnails."""

    def __init__(self, max_cache: int, max_tick: int = DEFAULT_MAX_TICK):
        self._max_cache = max_cache
        self._max_tick = max_tick
        self._tick = 0
        self._items: Dict[Hashable, ItemT] = {}
        self._lock = threading.Lock()

    @property
    def max_cache(self) -> int:
        return self._max_cache

    @property
    def max_tick(self) -> int:
        return self._max_tick

    def add_item(self, media_id, item: ItemT) -> None:
        with self._lock:
            self._items[media_id] = item

    def get_item(self, media_id) -> Optional[ItemT]:
        with self._lock:
            return self._items.get(media_id)

    def remove_item(self, media_id) -> bool:
        """Forget everything about ``media_id``, including a negative existence result."""
        with self._lock:
            return self._items.pop(media_id, None) is not None

    def add(self, media_id, key, data: bytes) -> None:
        """Cache thumbnail ``data`` for ``media_id`` under bucket ``key``."""
        with self._lock:
            item = self._items.get(media_id)
            if item is None:
                logger.warning("Unable to add thumbnail to cache, item cache for %s is not initialized!", media_id)
                return

            item.thumbnails[key] = CachedThumbnail(data, self._max_cache + 1)
            self._touch()

    def try_get(self, media_id, key) -> Optional[bytes]:
        with self._lock:
            item = self._items.get(media_id)
            if item is None:
                return None
            entry = item.thumbnails.get(key)
            if entry is None:
                return None

            entry.rank = self._max_cache + 1
            self._touch()
            return entry.data

    def rank_of(self, media_id, key) -> Optional[int]:
        with self._lock:
            item = self._items.get(media_id)
            entry = item.thumbnails.get(key) if item else None
            return entry.rank if entry else None

    def thumbnail_count(self) -> int:
        with self._lock:
            return sum(len(item.thumbnails) for item in self._items.values())

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._tick = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, media_id) -> bool:
        with self._lock:
            return media_id in self._items

    def _touch(self) -> None:
        # Caller holds self._lock.
        self._tick += 1
        if self._tick != self._max_tick:
            return

        self._tick = 0
        evicted = 0
        for item in self._items.values():
            for key in list(item.thumbnails):
                entry = item.thumbnails[key]
                entry.rank -= self._max_tick
                if entry.rank <= 0:
                    del item.thumbnails[key]
                    evicted += 1

        if evicted:
            logger.debug("AgingCache: evicted %d thumbnail(s)", evicted)
