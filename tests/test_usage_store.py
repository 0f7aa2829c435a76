"""Tests for the usage counter stores."""

import threading
from unittest.mock import MagicMock

import pytest

from linkgate.db import connect
from linkgate.services.usage_store import (
    MemoryUsageStore,
    RedisUsageStore,
    SqliteUsageStore,
    create_usage_store,
)

RETENTION = 360


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path, clock):
    if request.param == "memory":
        return MemoryUsageStore(RETENTION, clock=clock)
    return SqliteUsageStore(str(tmp_path / "usage.sqlite3"), RETENTION, clock=clock)


def test_absent_key_counts_zero(store):
    assert store.get("missing") == 0


def test_increment_returns_running_count(store):
    assert store.increment("sig") == 1
    assert store.increment("sig") == 2
    assert store.get("sig") == 2
    assert store.get("other") == 0


def test_entries_expire_at_the_horizon(store, clock):
    store.increment("sig")

    clock.advance(RETENTION - 1)
    assert store.get("sig") == 1

    clock.advance(1)
    assert store.get("sig") == 0


def test_writes_do_not_extend_the_horizon(store, clock):
    store.increment("sig")
    clock.advance(RETENTION - 1)
    assert store.increment("sig") == 2

    clock.advance(1)
    assert store.get("sig") == 0


def test_increment_after_expiry_starts_over(store, clock):
    store.increment("sig")
    store.increment("sig")
    clock.advance(RETENTION)

    assert store.increment("sig") == 1
    clock.advance(RETENTION - 1)
    assert store.get("sig") == 1


def test_purge_expired(store, clock):
    store.increment("old")
    clock.advance(RETENTION)
    store.increment("new")

    assert store.purge_expired() == 1
    assert store.get("new") == 1
    assert store.purge_expired() == 0


def test_writes_sweep_expired_entries(tmp_path, clock):
    memory = MemoryUsageStore(RETENTION, clock=clock, purge_interval=2)
    sqlite_path = str(tmp_path / "usage.sqlite3")
    sqlite = SqliteUsageStore(sqlite_path, RETENTION, clock=clock, purge_interval=2)

    for s in (memory, sqlite):
        s.increment("old")
    clock.advance(RETENTION)
    for s in (memory, sqlite):
        s.increment("new")

    assert len(memory) == 1
    conn = connect(sqlite_path)
    try:
        rows = list(conn.execute("SELECT key FROM login_link_usage"))
    finally:
        conn.close()
    assert rows == [("new",)]


@pytest.mark.parametrize("interval", [0, -1])
def test_purge_interval_must_be_positive(tmp_path, interval):
    with pytest.raises(ValueError):
        MemoryUsageStore(RETENTION, purge_interval=interval)
    with pytest.raises(ValueError):
        SqliteUsageStore(str(tmp_path / "usage.sqlite3"), RETENTION, purge_interval=interval)


def test_concurrent_increments_are_not_lost(store):
    threads_count, per_thread = 4, 10
    results: list[int] = []
    lock = threading.Lock()

    def worker():
        for _ in range(per_thread):
            count = store.increment("sig")
            with lock:
                results.append(count)

    threads = [threading.Thread(target=worker) for _ in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    total = threads_count * per_thread
    assert store.get("sig") == total
    assert sorted(results) == list(range(1, total + 1))


def test_sqlite_store_persists_across_instances(tmp_path, clock):
    path = str(tmp_path / "usage.sqlite3")
    SqliteUsageStore(path, RETENTION, clock=clock).increment("sig")

    assert SqliteUsageStore(path, RETENTION, clock=clock).get("sig") == 1


@pytest.mark.parametrize("retention", [0, -1])
def test_retention_must_be_positive(retention):
    with pytest.raises(ValueError):
        MemoryUsageStore(retention)


def test_retention_must_be_an_int():
    with pytest.raises(TypeError):
        MemoryUsageStore(1.5)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


def test_redis_increment_runs_atomic_script():
    client = MagicMock()
    client.eval.return_value = 2
    store = RedisUsageStore(RETENTION, client=client)

    assert store.increment("sig%3D") == 2
    script, numkeys, key, ttl = client.eval.call_args.args
    assert "INCR" in script and "EXPIRE" in script
    assert (numkeys, key, ttl) == (1, "linkgate:usage:sig%3D", RETENTION)


def test_redis_get():
    client = MagicMock()
    client.get.side_effect = lambda key: b"3" if key == "linkgate:usage:sig" else None
    store = RedisUsageStore(RETENTION, client=client)

    assert store.get("sig") == 3
    assert store.get("other") == 0


def test_redis_purge_leaves_expiry_to_the_server():
    client = MagicMock()

    assert RedisUsageStore(RETENTION, client=client).purge_expired() == 0
    client.delete.assert_not_called()


def test_redis_requires_url_or_client():
    with pytest.raises(ValueError):
        RedisUsageStore(RETENTION)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def test_create_usage_store(tmp_path):
    memory = create_usage_store({"USAGE_STORE": "memory", "USAGE_RETENTION_SECONDS": 900})
    assert isinstance(memory, MemoryUsageStore)
    assert memory.retention_seconds == 900

    sqlite = create_usage_store(
        {"USAGE_STORE": "sqlite", "DATABASE_PATH": str(tmp_path / "db.sqlite3")}
    )
    assert isinstance(sqlite, SqliteUsageStore)
    assert sqlite.retention_seconds == 3600


def test_create_usage_store_rejects_unknown_backend():
    with pytest.raises(ValueError):
        create_usage_store({"USAGE_STORE": "carrier-pigeon"})
