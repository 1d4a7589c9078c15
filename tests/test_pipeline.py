from datetime import datetime, timedelta, timezone

import pytest

from pool_health import config
from pool_health.exceptions import CursorPersistError, CycleInProgress, StorageError
from pool_health.models import PoolTimeSeries
from pool_health.pipeline import IngestionPipeline, RotationCursor, build_pipeline
from pool_health.store import MemoryStore, PoolCache


class FakeSource:
    def __init__(self, catalog, series):
        self.catalog = catalog
        self.series = series
        self.fetched = []

    def fetch_catalog(self):
        return list(self.catalog)

    def fetch_series(self, pool_id):
        self.fetched.append(pool_id)
        value = self.series.get(pool_id, PoolTimeSeries())
        if isinstance(value, Exception):
            raise value
        return value


class CursorFailingStore(MemoryStore):
    def put(self, key, value):
        if key == config.CURSOR_KEY:
            raise StorageError("disk full")
        super().put(key, value)


class Clock:
    def __init__(self):
        self.t = datetime(2025, 9, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.t += timedelta(seconds=1)
        return self.t


@pytest.fixture
def pipeline_factory():
    def _make(source, store=None, batch_size=3, start=0, sleeps=None):
        store = store or MemoryStore()
        cursor = RotationCursor(store)
        cursor.index = start
        return IngestionPipeline(
            source,
            PoolCache(store),
            cursor,
            batch_size=batch_size,
            fetch_delay=2.0,
            sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
            now=Clock(),
        )

    return _make


@pytest.mark.parametrize(
    "start, batch, length",
    [(0, 3, 10), (7, 3, 10), (8, 5, 10), (9, 1, 10), (0, 10, 10), (3, 4, 5), (4, 4, 5)],
)
def test_cursor_advances_modulo_catalog(start, batch, length):
    store = MemoryStore()
    cursor = RotationCursor(store)
    cursor.index = start
    indices = cursor.batch(length, batch)
    assert indices == [(start + i) % length for i in range(batch)]
    assert cursor.advance(length, batch) == (start + batch) % length
    assert store.get(config.CURSOR_KEY)["index"] == (start + batch) % length


def test_cursor_wraps_to_zero_when_catalog_shrinks():
    cursor = RotationCursor(MemoryStore())
    cursor.index = 12
    assert cursor.batch(5, 2) == [0, 1]
    assert cursor.advance(5, 2) == 2


def test_cursor_batch_never_repeats_entries():
    cursor = RotationCursor(MemoryStore())
    cursor.index = 1
    assert cursor.batch(3, 10) == [1, 2, 0]


@pytest.mark.parametrize("stored", [None, {"index": "x"}, {"index": -4}, {"nope": 1}])
def test_cursor_load_defaults_to_zero(stored):
    store = MemoryStore()
    if stored is not None:
        store.put(config.CURSOR_KEY, stored)
    assert RotationCursor(store).load() == 0


def test_cursor_load_restores_index():
    store = MemoryStore()
    store.put(config.CURSOR_KEY, {"index": 6, "timestamp": "2025-01-01T00:00:00+00:00"})
    assert RotationCursor(store).load() == 6


def test_full_rotation_covers_every_entry(entry_factory, series_factory, pipeline_factory):
    catalog = [entry_factory(f"p{i}") for i in range(7)]
    source = FakeSource(catalog, {})
    pipeline = pipeline_factory(source, batch_size=3)
    for _ in range(7):
        pipeline.run_cycle()
    assert {e.pool_id for e in catalog} == set(source.fetched)


def test_cycle_isolates_per_pool_failures(entry_factory, series_factory, pipeline_factory):
    catalog = [entry_factory(f"p{i}") for i in range(5)]
    source = FakeSource(catalog, {
        "p0": series_factory(60),
        "p1": PoolTimeSeries(),                 # provider gave nothing
        "p2": series_factory(3),                # too short
        "p3": RuntimeError("parser exploded"),
    })
    sleeps = []
    pipeline = pipeline_factory(source, batch_size=4, sleeps=sleeps)

    result = pipeline.run_cycle()

    assert source.fetched == ["p0", "p1", "p2", "p3"]
    assert (result.attempted, result.scored, result.skipped, result.failed) == (4, 1, 1, 2)
    assert set(result.failures) == {"p1", "p3"}
    assert sleeps == [2.0, 2.0, 2.0]
    assert result.cursor_start == 0
    assert result.cursor_end == 4
    assert [r.pool_id for r in pipeline.cache.snapshot()] == ["p0"]


def test_scored_record_shape(entry_factory, series_factory, pipeline_factory):
    source = FakeSource([entry_factory("p0", symbol="USDC-USDT", project="curve-dex")], {"p0": series_factory(40)})
    pipeline = pipeline_factory(source)
    pipeline.run_cycle()
    record = pipeline.cache.snapshot()[0]
    assert record.platform == "curve-dex"
    assert record.token_pair == "USDC-USDT"
    assert 0 <= record.health_score <= 100
    assert record.risk_category in {"conservative", "moderate", "aggressive", "speculative"}
    assert len(record.series) == 40


def test_volume_falls_back_to_latest_series_point(entry_factory, series_factory, pipeline_factory):
    source = FakeSource([entry_factory("p0", volume=0.0)], {"p0": series_factory(20, volume=777.0)})
    pipeline = pipeline_factory(source)
    pipeline.run_cycle()
    assert pipeline.cache.snapshot()[0].volume_24h == 777.0


def test_rerun_with_same_inputs_is_idempotent(entry_factory, series_factory, pipeline_factory):
    catalog = [entry_factory("p0"), entry_factory("p1", symbol="WSTETH-WETH")]
    source = FakeSource(catalog, {"p0": series_factory(90), "p1": series_factory(400, apr=lambda i: 3 + i % 5)})
    pipeline = pipeline_factory(source, batch_size=2)

    pipeline.run_cycle()
    first = {r.pool_id: r for r in pipeline.cache.snapshot()}
    pipeline.run_cycle()
    second = {r.pool_id: r for r in pipeline.cache.snapshot()}

    for pid in first:
        assert second[pid].health_score == first[pid].health_score
        assert second[pid].breakdown == first[pid].breakdown
        assert second[pid].last_updated > first[pid].last_updated


def test_cursor_write_failure_is_loud(entry_factory, series_factory, pipeline_factory):
    source = FakeSource([entry_factory("p0")], {"p0": series_factory(30)})
    store = CursorFailingStore()
    pipeline = pipeline_factory(source, store=store)
    with pytest.raises(CursorPersistError):
        pipeline.run_cycle()
    # scoring already happened and was saved
    assert store.get(config.SCORED_KEY)["pools"][0]["pool_id"] == "p0"
    assert not pipeline.running


def test_empty_catalog_leaves_cursor_alone(pipeline_factory):
    store = MemoryStore()
    pipeline = pipeline_factory(FakeSource([], {}), store=store, start=2)
    result = pipeline.run_cycle()
    assert result.attempted == 0
    assert pipeline.cursor.index == 2
    assert store.get(config.CURSOR_KEY) is None


def test_concurrent_cycle_is_rejected(entry_factory, series_factory, pipeline_factory):
    pipeline = None
    seen = []

    class ReentrantSource(FakeSource):
        def fetch_catalog(self):
            try:
                pipeline.run_cycle()
            except CycleInProgress as exc:
                seen.append(exc)
            return super().fetch_catalog()

    pipeline = pipeline_factory(ReentrantSource([entry_factory("p0")], {"p0": series_factory(30)}))
    result = pipeline.run_cycle()
    assert len(seen) == 1
    assert result.scored == 1
    assert not pipeline.running


def test_build_pipeline_restores_state(tmp_path, record_factory):
    first = build_pipeline({}, data_dir=str(tmp_path))
    first.cache.merge([record_factory("a", 70, risk="moderate")])
    first.cache.persist()
    first.cursor.advance(10, 4)

    second = build_pipeline({"POOL_HEALTH_BATCH_SIZE": "12", "POOL_HEALTH_PROFILE": "v1-simple"}, data_dir=str(tmp_path))
    assert [r.pool_id for r in second.cache.snapshot()] == ["a"]
    assert second.cursor.index == 4
    assert second.batch_size == 12
    assert second.profile == "v1-simple"


@pytest.mark.parametrize("raw", ["0", "-2", "lots"])
def test_bad_batch_size_setting_falls_back_to_default(tmp_path, raw):
    pipeline = build_pipeline({"POOL_HEALTH_BATCH_SIZE": raw}, data_dir=str(tmp_path))
    assert pipeline.batch_size == config.BATCH_SIZE


@pytest.mark.parametrize("size", [0, -1])
def test_pipeline_rejects_non_positive_batch_size(size):
    store = MemoryStore()
    with pytest.raises(ValueError):
        IngestionPipeline(FakeSource([], {}), PoolCache(store), RotationCursor(store), batch_size=size)
