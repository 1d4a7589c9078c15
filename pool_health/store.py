from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from . import config
from .exceptions import StorageError
from .models import ScoredPoolRecord
from .query import summary_metrics

LOGGER = logging.getLogger(__name__)


class MemoryStore:
    """Key-value store kept in process memory. Values go through JSON so callers never share state."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def put(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"cannot serialize {key!r}: {exc}") from exc


class JsonFileStore:
    """One JSON file per key under a directory; writes are atomic renames."""

    def __init__(self, directory: str | os.PathLike) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Unreadable store entry %s: %s", path, exc)
            return None

    def put(self, key: str, value: Any) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(self.directory), prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(value, fh)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"cannot write {path}: {exc}") from exc


class PoolCache:
    """Process-wide scored-pool state.

    Only the active ingestion cycle calls merge(); readers get an immutable
    tuple from snapshot().
    """

    def __init__(self, store=None, max_size: Optional[int] = config.MAX_RETAINED_POOLS) -> None:
        self.store = store
        self.max_size = max_size
        self._lock = threading.Lock()
        self._records: Tuple[ScoredPoolRecord, ...] = ()
        self._updated_at: Optional[datetime] = None
        self._stats: Dict[str, Any] = summary_metrics(())

    def __len__(self) -> int:
        return len(self._records)

    @property
    def updated_at(self) -> Optional[datetime]:
        return self._updated_at

    @property
    def stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    def snapshot(self) -> Tuple[ScoredPoolRecord, ...]:
        with self._lock:
            return self._records

    def load(self) -> int:
        """Initialize from the durable store; returns the number of records restored."""
        if self.store is None:
            return 0
        payload = self.store.get(config.SCORED_KEY) or {}
        records = []
        for row in payload.get("pools") or []:
            try:
                records.append(ScoredPoolRecord.from_dict(row))
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Dropping unreadable cached pool %r: %s", row.get("pool_id") if isinstance(row, dict) else row, exc)
        ordered = self._ordered(records)
        updated_at = None
        if payload.get("timestamp"):
            try:
                updated_at = datetime.fromisoformat(payload["timestamp"])
            except (TypeError, ValueError):
                updated_at = None
        with self._lock:
            self._records = ordered
            self._updated_at = updated_at
            self._stats = summary_metrics(ordered)
        LOGGER.info("Restored %d scored pools from cache", len(ordered))
        return len(ordered)

    def _ordered(self, records: Iterable[ScoredPoolRecord]) -> Tuple[ScoredPoolRecord, ...]:
        ordered = sorted(records, key=lambda r: (-r.health_score, r.pool_id))
        if self.max_size:
            ordered = ordered[: self.max_size]
        return tuple(ordered)

    def merge(self, records: Iterable[ScoredPoolRecord], now: Optional[datetime] = None) -> Tuple[ScoredPoolRecord, ...]:
        """Upsert by pool id, resort by score and truncate; untouched pools keep their record."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            by_id = {r.pool_id: r for r in self._records}
            for record in records:
                previous = by_id.get(record.pool_id)
                if previous is not None and record.last_updated < previous.last_updated:
                    record = record.with_last_updated(previous.last_updated)
                by_id[record.pool_id] = record
            merged = self._ordered(by_id.values())
            self._records = merged
            self._updated_at = now
            self._stats = summary_metrics(merged)
        return merged

    def persist(self) -> None:
        if self.store is None:
            return
        records = self.snapshot()
        self.store.put(config.SCORED_KEY, {
            "pools": [r.to_dict() for r in records],
            "timestamp": (self._updated_at or datetime.now(timezone.utc)).isoformat(),
            "stats": self.stats,
        })
