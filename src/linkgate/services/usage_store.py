"""TTL-bounded counters recording how often each login link was consumed.

Entries are keyed by the URL-encoded signature and expire ``retention_seconds``
after they were first written. The retention must outlive any link, so a
counter is always available for the whole lifetime of the link it guards.
"""

import itertools
import logging
import threading
import time
from collections.abc import Callable, Mapping
from contextlib import contextmanager
from typing import Any, Protocol

from linkgate.db import connect

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

# Expired counters are swept on every Nth write
DEFAULT_PURGE_INTERVAL = 100


class UsageStore(Protocol):
    """Protocol that all usage counter backends must implement."""

    retention_seconds: int

    def increment(self, key: str) -> int:
        """Atomically add one use to ``key`` and return the new count."""
        ...

    def get(self, key: str) -> int:
        """Return the number of recorded uses for ``key`` (0 if absent or expired)."""
        ...

    def purge_expired(self) -> int:
        """Drop expired counters now. Returns how many were removed."""
        ...


def _check_retention(retention_seconds: int) -> int:
    if isinstance(retention_seconds, bool) or not isinstance(retention_seconds, int):
        raise TypeError("retention_seconds must be an int")
    if retention_seconds <= 0:
        raise ValueError("retention_seconds must be positive")
    return retention_seconds


class MemoryUsageStore:
    """Process-local store. Suitable for tests and single-process deployments."""

    def __init__(
        self,
        retention_seconds: int,
        clock: Clock = time.time,
        purge_interval: int = DEFAULT_PURGE_INTERVAL,
    ) -> None:
        self.retention_seconds = _check_retention(retention_seconds)
        if purge_interval < 1:
            raise ValueError("purge_interval must be positive")
        self.purge_interval = purge_interval
        self._clock = clock
        self._entries: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._writes = 0

    def increment(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[1] <= now:
                count, expires_at = 1, now + self.retention_seconds
            else:
                count, expires_at = entry[0] + 1, entry[1]
            self._entries[key] = (count, expires_at)
            self._writes += 1
            if self._writes % self.purge_interval == 0:
                self._purge_locked(now)
            return count

    def get(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return 0
            if entry[1] <= now:
                del self._entries[key]
                return 0
            return entry[0]

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: float) -> int:
        stale = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


class SqliteUsageStore:
    """Store backed by the ``login_link_usage`` table of an SQLite database."""

    def __init__(
        self,
        db_path: str,
        retention_seconds: int,
        clock: Clock = time.time,
        purge_interval: int = DEFAULT_PURGE_INTERVAL,
    ) -> None:
        self.db_path = db_path
        self.retention_seconds = _check_retention(retention_seconds)
        if purge_interval < 1:
            raise ValueError("purge_interval must be positive")
        self.purge_interval = purge_interval
        self._clock = clock
        self._writes = itertools.count(1)
        self._ensure_table()

    def _ensure_table(self) -> None:
        conn = connect(self.db_path)
        try:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS login_link_usage ("
                "    key        TEXT PRIMARY KEY,"
                "    count      INTEGER NOT NULL,"
                "    expires_at INTEGER NOT NULL"
                ");"
            )
        finally:
            conn.close()

    @contextmanager
    def _transaction(self):
        """Context manager for write transactions. Yields (conn, cursor)."""
        conn = connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("BEGIN IMMEDIATE;")
        try:
            yield conn, cursor
            cursor.execute("COMMIT;")
        except Exception:
            cursor.execute("ROLLBACK;")
            raise
        finally:
            conn.close()

    def increment(self, key: str) -> int:
        now = int(self._clock())
        expires_at = now + self.retention_seconds
        # Stale rows are restarted in place; live rows keep their original expiry.
        with self._transaction() as (_, cursor):
            rows = cursor.execute(
                "INSERT INTO login_link_usage (key, count, expires_at) VALUES (?, 1, ?) "
                "ON CONFLICT(key) DO UPDATE SET "
                "count = CASE WHEN login_link_usage.expires_at <= ? THEN 1 "
                "ELSE login_link_usage.count + 1 END, "
                "expires_at = CASE WHEN login_link_usage.expires_at <= ? THEN excluded.expires_at "
                "ELSE login_link_usage.expires_at END "
                "RETURNING count",
                (key, expires_at, now, now),
            ).fetchall()
        if next(self._writes) % self.purge_interval == 0:
            self.purge_expired()
        return int(rows[0][0])

    def get(self, key: str) -> int:
        now = int(self._clock())
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT count FROM login_link_usage WHERE key = ? AND expires_at > ?",
                (key, now),
            ).fetchone()
            return int(row[0]) if row else 0
        finally:
            conn.close()

    def purge_expired(self) -> int:
        """Delete expired rows. Returns how many were removed."""
        now = int(self._clock())
        with self._transaction() as (conn, cursor):
            cursor.execute("DELETE FROM login_link_usage WHERE expires_at <= ?", (now,))
            removed = conn.changes()
        if removed:
            logger.info(f"Purged {removed} expired login link usage counters")
        return removed


# INCR then set the TTL only on the write that created the key.
_INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""


class RedisUsageStore:
    """Store backed by Redis; expiry is delegated to key TTLs."""

    def __init__(
        self,
        retention_seconds: int,
        url: str | None = None,
        client: Any = None,
        prefix: str = "linkgate:usage:",
    ) -> None:
        self.retention_seconds = _check_retention(retention_seconds)
        if client is None:
            if not url:
                raise ValueError("RedisUsageStore needs either a url or a client")
            from redis import Redis

            client = Redis.from_url(url, socket_timeout=5.0)
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def increment(self, key: str) -> int:
        return int(self.client.eval(_INCREMENT_SCRIPT, 1, self._key(key), self.retention_seconds))

    def get(self, key: str) -> int:
        value = self.client.get(self._key(key))
        return int(value) if value is not None else 0

    def purge_expired(self) -> int:
        # Redis drops the keys itself when their TTL runs out
        return 0


def create_usage_store(config: Mapping[str, Any]) -> UsageStore:
    """Build the usage store named by ``USAGE_STORE`` in a Flask-style config mapping."""
    kind = str(config.get("USAGE_STORE", "sqlite")).lower()
    retention = int(config.get("USAGE_RETENTION_SECONDS", 3600))

    match kind:
        case "memory":
            return MemoryUsageStore(retention)
        case "sqlite":
            return SqliteUsageStore(config["DATABASE_PATH"], retention)
        case "redis":
            return RedisUsageStore(retention, url=config.get("REDIS_URL") or None)
        case _:
            raise ValueError(f"Unknown usage store backend: {kind!r}")

