from datetime import datetime, timedelta, timezone

import pytest

from pool_health import config
from pool_health.exceptions import StorageError
from pool_health.store import JsonFileStore, MemoryStore, PoolCache

T0 = datetime(2025, 9, 1, tzinfo=timezone.utc)


def test_memory_store_copies_values():
    store = MemoryStore()
    value = {"index": 3}
    store.put("k", value)
    value["index"] = 99
    assert store.get("k") == {"index": 3}
    assert store.get("missing") is None


def test_json_file_store_roundtrip(tmp_path):
    store = JsonFileStore(tmp_path / "data")
    assert store.get(config.CURSOR_KEY) is None
    store.put(config.CURSOR_KEY, {"index": 7, "timestamp": "2025-01-01T00:00:00+00:00"})
    assert store.get(config.CURSOR_KEY)["index"] == 7
    assert (tmp_path / "data" / "rotation_cursor.json").exists()
    assert [p.name for p in (tmp_path / "data").iterdir()] == ["rotation_cursor.json"]


def test_json_file_store_tolerates_corrupt_file(tmp_path):
    (tmp_path / "catalog_cache.json").write_text("{not json")
    assert JsonFileStore(tmp_path).get(config.CATALOG_KEY) is None


def test_json_file_store_raises_storage_error(tmp_path):
    with pytest.raises(StorageError):
        JsonFileStore(tmp_path).put("bad", {"value": object()})
    assert list(tmp_path.iterdir()) == []


def test_merge_upserts_and_keeps_untouched(record_factory, series_factory):
    cache = PoolCache()
    cache.merge([record_factory("a", 40), record_factory("b", 70, series=series_factory(3, apr=5.0))])
    cache.merge([record_factory("b", 55, series=series_factory(8, apr=9.0), when=T0 + timedelta(days=1))])

    snap = cache.snapshot()
    assert [r.pool_id for r in snap] == ["b", "a"]
    b = snap[0]
    assert b.health_score == 55
    assert len(b.series) == 8
    assert b.series.apr[0] == 9.0


def test_merge_sorts_descending_and_truncates(record_factory):
    cache = PoolCache(max_size=3)
    cache.merge([record_factory(pid, score) for pid, score in [("a", 10), ("b", 90), ("c", 50), ("d", 70), ("e", 30)]])
    assert [r.pool_id for r in cache.snapshot()] == ["b", "d", "c"]
    assert len(cache) == 3


def test_last_updated_never_moves_backwards(record_factory):
    cache = PoolCache()
    later = T0 + timedelta(hours=5)
    cache.merge([record_factory("a", 40, when=later)])
    cache.merge([record_factory("a", 45, when=T0)])
    record = cache.snapshot()[0]
    assert record.health_score == 45
    assert record.last_updated == later


def test_snapshot_is_immutable_copy(record_factory):
    cache = PoolCache()
    cache.merge([record_factory("a", 40)])
    before = cache.snapshot()
    cache.merge([record_factory("b", 60)])
    assert isinstance(before, tuple)
    assert [r.pool_id for r in before] == ["a"]
    assert len(cache.snapshot()) == 2


def test_persist_and_load_roundtrip(record_factory):
    store = MemoryStore()
    cache = PoolCache(store)
    cache.merge([record_factory("a", 85, risk="conservative"), record_factory("b", 20, risk="speculative")])
    cache.persist()

    payload = store.get(config.SCORED_KEY)
    assert set(payload) == {"pools", "timestamp", "stats"}
    assert payload["stats"]["total_pools"] == 2
    assert payload["stats"]["high_risk_pools"] == 1

    restored = PoolCache(store)
    assert restored.load() == 2
    assert restored.snapshot() == cache.snapshot()
    assert restored.updated_at == cache.updated_at


def test_load_skips_unreadable_rows(record_factory):
    store = MemoryStore()
    store.put(config.SCORED_KEY, {"pools": [record_factory("a", 50).to_dict(), {"pool_id": "x"}], "timestamp": None})
    cache = PoolCache(store)
    assert cache.load() == 1
    assert cache.updated_at is None
