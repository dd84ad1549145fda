"""
Shared pytest fixtures for the thumbnail tests.
"""
import io
import os
import sqlite3
import struct
import sys

# Ensure project root is on path for all tests
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from PIL import Image

from core.bif_index import BIF_MAGIC
from core.plex_database import PlexDatabase


class MockConfigManager:
    """Minimal ConfigManager substitute that accepts a plain dict.

    Only implements the interface used by ThumbnailManager.
    """

    def __init__(self, overrides: dict | None = None):
        self._cfg: dict = {
            "project_root": None,    # must be overridden per fixture
            "logging_level": "DEBUG",
            "thumbnails": {
                "precise": False,
                "max_cache": 200,
                "ffmpeg_timeout": 10,
                "scale_width": 240,
                "watch_index_files": False,
            },
        }
        if overrides:
            for key, value in overrides.items():
                if isinstance(value, dict) and isinstance(self._cfg.get(key), dict):
                    self._cfg[key].update(value)
                else:
                    self._cfg[key] = value

    def get(self, key: str, default=None):
        keys = key.split(".")
        val = self._cfg
        for k in keys:
            if isinstance(val, dict):
                val = val.get(k)
            else:
                return default
        return val if val is not None else default


def jpeg_bytes(color=(200, 30, 30), size=(32, 18)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=color).save(buf, "JPEG")
    return buf.getvalue()


def build_bif(records, length: int, count: int | None = None, magic: bytes = BIF_MAGIC) -> bytes:
    """Build a BIF file from ``(timestamp, offset)`` records.

    Frame ``i`` is filled with the byte ``i + 1`` so tests can tell frames apart.
    """
    data = bytearray(length)
    data[:len(magic)] = magic
    struct.pack_into("<I", data, 0x0C, len(records) if count is None else count)
    for i, (timestamp, offset) in enumerate(records):
        struct.pack_into("<II", data, 0x40 + i * 8, timestamp, offset)

    offsets = [offset for _, offset in records] + [length]
    table_end = 0x40 + len(records) * 8
    for i in range(len(records)):
        start = max(offsets[i], table_end)
        data[start:offsets[i + 1]] = bytes([i + 1]) * (offsets[i + 1] - start)
    return bytes(data)


class PlexLibrary:
    """Writable stand-in for the Plex library database, read back through PlexDatabase."""

    def __init__(self, root):
        self.root = root
        self.data_path = str(root / "Plex Media Server")
        self.db_path = str(root / "com.plexapp.plugins.library.db")
        os.makedirs(self.data_path, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.executescript("""
            CREATE TABLE metadata_items (id INTEGER PRIMARY KEY, title TEXT);
            CREATE TABLE media_items (id INTEGER PRIMARY KEY, metadata_item_id INTEGER, duration INTEGER);
            CREATE TABLE media_parts (id INTEGER PRIMARY KEY, media_item_id INTEGER, hash TEXT, file TEXT);
        """)
        conn.commit()
        conn.close()
        self._db = None

    def add_item(self, metadata_id: int, versions) -> None:
        """Add an item with one media item/part per ``(hash, file, duration)`` version."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("INSERT INTO metadata_items (id, title) VALUES (?, ?)", (metadata_id, f"Item {metadata_id}"))
        for media_hash, file_path, duration in versions:
            cursor = conn.execute(
                "INSERT INTO media_items (metadata_item_id, duration) VALUES (?, ?)", (metadata_id, duration))
            conn.execute(
                "INSERT INTO media_parts (media_item_id, hash, file) VALUES (?, ?, ?)",
                (cursor.lastrowid, media_hash, file_path))
        conn.commit()
        conn.close()

    def write_bif(self, media_hash: str, data: bytes) -> str:
        from core.bif_thumbnails import bif_path_for_hash
        path = bif_path_for_hash(self.data_path, media_hash)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return path

    @property
    def db(self) -> PlexDatabase:
        if self._db is None:
            self._db = PlexDatabase(self.db_path)
        return self._db

    def close(self):
        if self._db is not None:
            self._db.close()


@pytest.fixture()
def plex(tmp_path):
    """A fresh Plex library database plus data directory under tmp_path."""
    library = PlexLibrary(tmp_path)
    yield library
    library.close()


# Records and length of the three-frame index used throughout the tests.
SCENARIO_RECORDS = [(0, 0x40), (2, 0x1000), (4, 0x2000)]
SCENARIO_LENGTH = 0x3000


@pytest.fixture()
def scenario_bif() -> bytes:
    return build_bif(SCENARIO_RECORDS, SCENARIO_LENGTH)
