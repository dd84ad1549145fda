# core/plex_database.py
"""Read-only access to the Plex Media Server library database."""
import logging
import os
import sqlite3
from threading import Lock
from typing import Any, Dict, List, Sequence

logger = logging.getLogger(__name__)


class PlexDatabase:
    """
    Thin query interface over ``com.plexapp.plugins.library.db``.

    The database is owned by Plex, so it is always opened read-only.
    """

    def __init__(self, db_path: str):
        logger.info("Opening Plex database: %s", db_path)
        if not os.path.exists(db_path):
            raise FileNotFoundError(f"Plex database not found: {db_path}")

        self.db_path = db_path
        self._lock = Lock()
        # Handler threads share the connection, serialized by self._lock.
        self.conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    def query_rows(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run ``query`` and return every row as a dict."""
        try:
            with self._lock:
                cursor = self.conn.execute(query, tuple(params))
                return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.error("Plex database query failed: %s", e)
            raise

    def close(self) -> None:
        with self._lock:
            self.conn.close()
