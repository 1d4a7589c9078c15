import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from . import config
from .classifier import classify_risk
from .engine import calculate_health_score, resolve_profile
from .exceptions import CursorPersistError, CycleInProgress, InsufficientHistory, SourceUnavailable, StorageError
from .models import CycleResult, PoolCatalogEntry, ScoredPoolRecord
from .source import DefiLlamaSource
from .store import JsonFileStore, PoolCache

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RotationCursor:
    """Durable round-robin position in the catalog."""

    def __init__(self, store, key: str = config.CURSOR_KEY):
        self.store = store
        self.key = key
        self.index = 0

    def load(self) -> int:
        value = self.store.get(self.key)
        try:
            index = int(value["index"]) if value else 0
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Ignoring unreadable rotation cursor %r", value)
            index = 0
        self.index = index if index >= 0 else 0
        return self.index

    def start(self, catalog_len: int) -> int:
        # A shrunken catalog can leave the cursor past the end.
        return self.index if 0 <= self.index < catalog_len else 0

    def batch(self, catalog_len: int, batch_size: int) -> List[int]:
        if catalog_len <= 0 or batch_size <= 0:
            return []
        start = self.start(catalog_len)
        return [(start + i) % catalog_len for i in range(min(batch_size, catalog_len))]

    def advance(self, catalog_len: int, batch_size: int, now: Optional[datetime] = None) -> int:
        """Move by batch_size modulo catalog_len and persist; raises CursorPersistError if the write fails."""
        self.index = (self.start(catalog_len) + batch_size) % catalog_len
        now = now or _utcnow()
        try:
            self.store.put(self.key, {"index": self.index, "timestamp": now.isoformat()})
        except Exception as exc:
            LOGGER.critical("Failed to persist rotation cursor %d: %s", self.index, exc)
            raise CursorPersistError(f"could not persist rotation cursor {self.index}") from exc
        return self.index


class IngestionPipeline:
    def __init__(
        self,
        source,
        cache: PoolCache,
        cursor: RotationCursor,
        batch_size: int = config.BATCH_SIZE,
        fetch_delay: float = config.FETCH_DELAY,
        min_history: int = config.MIN_HISTORY_DAYS,
        profile: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = _utcnow,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.source = source
        self.cache = cache
        self.cursor = cursor
        self.batch_size = batch_size
        self.fetch_delay = fetch_delay
        self.min_history = min_history
        self.profile = resolve_profile(profile)[0]
        self.sleep = sleep
        self.now = now
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def run_cycle(self) -> CycleResult:
        """Process one batch. Raises CycleInProgress if another cycle holds the lock."""
        if not self._lock.acquire(blocking=False):
            raise CycleInProgress("an ingestion cycle is already running")
        try:
            return self._run()
        finally:
            self._lock.release()

    def score_pool(self, entry: PoolCatalogEntry) -> ScoredPoolRecord:
        series = self.source.fetch_series(entry.pool_id)
        if series.is_empty:
            raise SourceUnavailable(f"no chart data for {entry.pool_id}")
        if len(series) < self.min_history:
            raise InsufficientHistory(f"{entry.pool_id} has {len(series)} of {self.min_history} days")

        volume_24h = entry.volume_24h or (series.volume[-1] if series.volume else 0.0)
        result = calculate_health_score(
            entry.tvl,
            volume_24h,
            series.apr,
            series.tvl,
            symbol=entry.symbol,
            platform=entry.project,
            profile=self.profile,
        )
        return ScoredPoolRecord(
            pool_id=entry.pool_id,
            platform=entry.project,
            chain=entry.chain,
            token_pair=entry.symbol,
            tvl=entry.tvl,
            volume_24h=volume_24h,
            health_score=result.score,
            breakdown=result.breakdown,
            risk_category=classify_risk(result.score).key,
            series=series,
            last_updated=self.now(),
            fee_meta=entry.fee_meta,
        )

    def _run(self) -> CycleResult:
        result = CycleResult(started_at=self.now())
        catalog = self.source.fetch_catalog()
        result.catalog_size = len(catalog)
        if not catalog:
            LOGGER.warning("Empty catalog; nothing to ingest this cycle")
            result.finished_at = self.now()
            return result

        indices = self.cursor.batch(len(catalog), self.batch_size)
        result.cursor_start = self.cursor.start(len(catalog))
        scored = []
        for n, idx in enumerate(indices):
            if n:
                self.sleep(self.fetch_delay)
            entry = catalog[idx]
            result.attempted += 1
            try:
                scored.append(self.score_pool(entry))
            except InsufficientHistory as exc:
                result.skipped += 1
                LOGGER.debug("Skipping pool: %s", exc)
            except SourceUnavailable as exc:
                result.failed += 1
                result.failures[entry.pool_id] = str(exc)
                LOGGER.warning("No usable data for pool %s this cycle", entry.pool_id)
            except Exception as exc:
                result.failed += 1
                result.failures[entry.pool_id] = repr(exc)
                LOGGER.exception("Failed to score pool %s", entry.pool_id)
            else:
                result.scored += 1

        if scored:
            self.cache.merge(scored, now=self.now())
            try:
                self.cache.persist()
            except StorageError as exc:
                LOGGER.error("Could not persist scored pools: %s", exc)

        result.cursor_end = self.cursor.advance(len(catalog), self.batch_size, now=self.now())
        result.finished_at = self.now()
        LOGGER.info(
            "Cycle done: %d attempted, %d scored, %d skipped, %d failed; cursor %d -> %d of %d",
            result.attempted, result.scored, result.skipped, result.failed,
            result.cursor_start, result.cursor_end, result.catalog_size,
        )
        return result


def _setting(secrets, key: str, default, cast=str, minimum=None):
    value = secrets.get(key) if secrets is not None else None
    if value in (None, ""):
        return default
    try:
        value = cast(value)
    except (TypeError, ValueError):
        LOGGER.warning("Invalid %s=%r, using %r", key, value, default)
        return default
    if minimum is not None and value < minimum:
        LOGGER.warning("%s=%r is below %r, using %r", key, value, minimum, default)
        return default
    return value


def build_pipeline(secrets=None, data_dir: Optional[str] = None, **overrides) -> IngestionPipeline:
    """Wire a file-backed pipeline and restore its state from disk."""
    secrets = secrets if secrets is not None else os.environ
    data_dir = data_dir or _setting(secrets, "POOL_HEALTH_DATA_DIR", config.DATA_DIR)
    store = JsonFileStore(data_dir)
    cache = PoolCache(store)
    cache.load()
    cursor = RotationCursor(store)
    cursor.load()
    overrides.setdefault("batch_size", _setting(secrets, "POOL_HEALTH_BATCH_SIZE", config.BATCH_SIZE, int, minimum=1))
    overrides.setdefault("profile", _setting(secrets, "POOL_HEALTH_PROFILE", config.DEFAULT_PROFILE))
    return IngestionPipeline(DefiLlamaSource(store, secrets=secrets), cache, cursor, **overrides)
