"""
Response Cache - SQLite-backed TTL cache for metadata lookups

Keys are logical ("lastfm:track:<mbid>", "mb:recording:<mbid>", ...), never raw
URLs. The cache is an optimization only: every read or write failure is logged
and behaves like a miss.
"""
import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

HOUR = 3600
DAY = 24 * HOUR

# TTLs by lookup kind (seconds)
TTL_TRACK_INFO = DAY
TTL_SIMILAR_TRACKS = 7 * DAY
TTL_ARTIST_INFO = DAY
TTL_TOP_TRACKS = DAY
TTL_MB_LOOKUP = 30 * DAY
TTL_RESOLVED_QUERY = 7 * DAY

_SCHEMA = """
CREATE TABLE IF NOT EXISTS response_cache (
    cache_key TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    stored_at REAL NOT NULL,
    expires_at REAL NOT NULL
)
"""


class ResponseCache:
    """Read-through cache shared by the metadata clients (last writer wins)."""

    def __init__(self, db_path: str = "data/metadata_cache.db",
                 clock: Callable[[], float] = time.time):
        self.db_path = db_path
        self._clock = clock
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._shared_conn = None
        else:
            # In-memory databases vanish with their connection, so keep one open
            self._shared_conn = sqlite3.connect(":memory:", check_same_thread=False)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        if self._shared_conn is not None:
            return self._shared_conn
        return sqlite3.connect(self.db_path, timeout=10)

    def _close(self, conn: sqlite3.Connection) -> None:
        if conn is not self._shared_conn:
            conn.close()

    def _ensure_schema(self) -> None:
        try:
            with self._lock:
                conn = self._connect()
                try:
                    conn.execute(_SCHEMA)
                    conn.commit()
                finally:
                    self._close(conn)
        except sqlite3.Error as e:
            logger.warning(f"Response cache unavailable ({self.db_path}): {e}")

    def get(self, key: str) -> Optional[Any]:
        """Return the cached payload for key, or None if absent/expired."""
        try:
            with self._lock:
                conn = self._connect()
                try:
                    row = conn.execute(
                        "SELECT payload, expires_at FROM response_cache WHERE cache_key=?",
                        (key,),
                    ).fetchone()
                finally:
                    self._close(conn)
        except sqlite3.Error as e:
            logger.debug(f"Cache read failed for {key}: {e}")
            self.misses += 1
            return None

        if not row or row[1] <= self._clock():
            logger.debug(f"Cache MISS: {key}")
            self.misses += 1
            return None

        try:
            payload = json.loads(row[0])
        except ValueError:
            self.misses += 1
            return None
        logger.debug(f"Cache HIT: {key}")
        self.hits += 1
        return payload

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store value under key for ttl_seconds."""
        now = self._clock()
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.debug(f"Not caching {key}: {e}")
            return
        try:
            with self._lock:
                conn = self._connect()
                try:
                    conn.execute(
                        "REPLACE INTO response_cache (cache_key, payload, stored_at, expires_at) "
                        "VALUES (?, ?, ?, ?)",
                        (key, payload, now, now + ttl_seconds),
                    )
                    conn.commit()
                finally:
                    self._close(conn)
        except sqlite3.Error as e:
            logger.debug(f"Cache write failed for {key}: {e}")

    def purge_expired(self) -> int:
        """Delete expired rows; returns the number removed."""
        try:
            with self._lock:
                conn = self._connect()
                try:
                    cur = conn.execute(
                        "DELETE FROM response_cache WHERE expires_at <= ?", (self._clock(),)
                    )
                    conn.commit()
                    return cur.rowcount
                finally:
                    self._close(conn)
        except sqlite3.Error as e:
            logger.warning(f"Cache purge failed: {e}")
            return 0

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get statistics about the cache"""
        total = self.hits + self.misses
        return {
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': self.hits / total if total else 0.0,
        }
