"""SQLite-based resolution cache and in-flight request de-duplication."""

import json
import logging
import sqlite3
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from .errors import UpstreamFailureError
from .models import ResolutionResult

logger = logging.getLogger(__name__)


def cache_key(zip_code: str, normalized_address: Optional[str] = None) -> str:
    """'75001' or '75001|123 main street'."""
    if not normalized_address:
        return zip_code
    return f"{zip_code}|{normalized_address.lower()}"


class ResolutionCache:
    """SQLite cache for resolution results, with a TTL per entry.

    Expired rows are swept every ``sweep_every`` writes.
    """

    SWEEP_EVERY = 500

    def __init__(self, db_path: Union[Path, str] = ":memory:", clock: Callable[[], float] = time.time,
                 sweep_every: int = SWEEP_EVERY):
        self.db_path = db_path
        self._clock = clock
        self.sweep_every = sweep_every
        self._writes = 0
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self):
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS resolution_cache (
                cache_key TEXT PRIMARY KEY,
                result_json TEXT NOT NULL,
                created_at REAL NOT NULL,
                expires_at REAL NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_expires ON resolution_cache(expires_at)
        """)
        self._conn.commit()

    def get(self, key: str) -> Optional[ResolutionResult]:
        """Cached result for key, or None if not cached / expired."""
        with self._lock:
            row = self._conn.execute(
                "SELECT result_json FROM resolution_cache WHERE cache_key = ? AND expires_at > ?",
                (key, self._clock()),
            ).fetchone()
        if not row:
            return None
        try:
            return ResolutionResult.from_dict(json.loads(row[0]))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Cache: dropping unreadable entry {key}: {e}")
            self.invalidate(key)
            return None

    def put(self, key: str, result: ResolutionResult, ttl_seconds: int):
        now = self._clock()
        result_json = json.dumps(result.to_dict())
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO resolution_cache (cache_key, result_json, created_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (key, result_json, now, now + ttl_seconds),
            )
            self._conn.commit()
            self._writes += 1
            sweep = self._writes >= self.sweep_every
            if sweep:
                self._writes = 0
        if sweep:
            self.clear_expired()

    def invalidate(self, key: str):
        with self._lock:
            self._conn.execute("DELETE FROM resolution_cache WHERE cache_key = ?", (key,))
            self._conn.commit()

    def clear_expired(self) -> int:
        with self._lock:
            deleted = self._conn.execute(
                "DELETE FROM resolution_cache WHERE expires_at <= ?", (self._clock(),)
            ).rowcount
            self._conn.commit()
        if deleted:
            logger.info(f"Cache: cleared {deleted} expired entries")
        return deleted

    @property
    def size(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM resolution_cache").fetchone()
        return row[0] if row else 0

    def close(self):
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


class InFlightRequests:
    """
    Collapse concurrent identical lookups into one call.

    The first caller for a key runs the work; later callers for the same key
    block on the leader's Future and receive its result or its exception.
    """

    def __init__(self, wait_timeout: float = 30.0):
        self.wait_timeout = wait_timeout
        self._lock = threading.Lock()
        self._pending: Dict[str, Future] = {}

    def run(self, key: str, fn: Callable[[], ResolutionResult]) -> ResolutionResult:
        with self._lock:
            future = self._pending.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._pending[key] = future

        if not leader:
            logger.debug(f"In-flight: joining pending lookup {key}")
            try:
                return future.result(timeout=self.wait_timeout)
            except FutureTimeout as e:
                raise UpstreamFailureError(context={"key": key, "reason": "in-flight wait timed out"}) from e

        try:
            result = fn()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._pending.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
