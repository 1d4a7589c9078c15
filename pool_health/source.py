import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from . import config
from .engine import is_major_token, recognizable_tickers
from .exceptions import MalformedRecord, RateLimited, SourceError, SourceUnavailable, StorageError
from .models import PoolCatalogEntry, PoolTimeSeries

LOGGER = logging.getLogger(__name__)


def _llama_base(secrets) -> str:
    return secrets.get("DEFILLAMA_YIELDS_BASE", config.DEFILLAMA_YIELDS_BASE).rstrip("/")


def _num(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def is_quality_pool(
    entry: PoolCatalogEntry,
    min_tvl: float = config.CATALOG_MIN_TVL,
    quality_tvl: float = config.CATALOG_QUALITY_TVL,
) -> bool:
    if entry.tvl < min_tvl:
        return False
    tickers = recognizable_tickers(entry.symbol)
    if len(tickers) < 2:
        return False
    if entry.tvl > quality_tvl:
        return True
    return any(t in config.STABLECOINS or is_major_token(t) for t in tickers)


def filter_catalog(
    rows: Iterable[Dict[str, Any]],
    min_tvl: float = config.CATALOG_MIN_TVL,
    quality_tvl: float = config.CATALOG_QUALITY_TVL,
    max_size: Optional[int] = config.CATALOG_MAX_SIZE,
) -> List[PoolCatalogEntry]:
    """Keep well-formed quality pools, tvl-descending, one entry per pool id."""
    seen = set()
    out = []
    malformed = 0
    for row in rows or []:
        try:
            entry = PoolCatalogEntry.from_api(row)
        except MalformedRecord:
            malformed += 1
            continue
        if entry.pool_id in seen or not is_quality_pool(entry, min_tvl, quality_tvl):
            continue
        seen.add(entry.pool_id)
        out.append(entry)
    if malformed:
        LOGGER.debug("Excluded %d malformed catalog rows", malformed)
    out.sort(key=lambda e: e.tvl, reverse=True)
    return out[:max_size] if max_size else out


def parse_chart(payload: Any, window: int = config.SERIES_WINDOW) -> PoolTimeSeries:
    """Turn a chart response into parallel daily series, oldest first.

    Points without a timestamp or an APY are dropped. Daily fees are estimated
    from base APY: tvl * apyBase / 100 / 365.
    """
    rows = payload.get("data") if isinstance(payload, dict) else payload
    points = [
        p for p in rows or []
        if isinstance(p, dict) and p.get("timestamp") and p.get("apy") is not None
    ]
    points.sort(key=lambda p: str(p["timestamp"]))
    dates, tvl, apr, volume, fees = [], [], [], [], []
    for p in points:
        point_tvl = _num(p.get("tvlUsd"))
        base_apy = p.get("apyBase") if p.get("apyBase") is not None else p.get("apy")
        dates.append(str(p["timestamp"])[:10])
        tvl.append(point_tvl)
        apr.append(_num(p.get("apy")))
        volume.append(_num(p.get("volumeUsd1d")))
        fees.append(point_tvl * _num(base_apy) / 100.0 / 365.0)
    series = PoolTimeSeries(tuple(dates), tuple(tvl), tuple(apr), tuple(volume), tuple(fees))
    return series.tail(window)


class DefiLlamaSource:
    """Catalog and chart reads against the DefiLlama yields API."""

    def __init__(
        self,
        store,
        secrets=None,
        http=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        timeout: float = config.REQUEST_TIMEOUT,
        backoff: float = config.RATE_LIMIT_BACKOFF,
        max_attempts: int = config.MAX_ATTEMPTS,
        catalog_ttl: float = config.CATALOG_TTL,
    ):
        self.store = store
        self.secrets = secrets if secrets is not None else os.environ
        self.http = http or requests
        self.sleep = sleep
        self.clock = clock
        self.timeout = timeout
        self.backoff = backoff
        self.max_attempts = max_attempts
        self.catalog_ttl = catalog_ttl

    @property
    def base(self) -> str:
        return _llama_base(self.secrets)

    def _request(self, url: str) -> Any:
        try:
            r = self.http.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SourceUnavailable(f"{url}: {exc}") from exc
        if r.status_code == 429:
            raise RateLimited(url)
        if r.status_code != 200:
            raise SourceUnavailable(f"{url}: HTTP {r.status_code}")
        try:
            return r.json()
        except ValueError as exc:
            raise SourceUnavailable(f"{url}: invalid JSON") from exc

    def _get_json(self, url: str) -> Any:
        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.backoff),
            retry=retry_if_exception_type(RateLimited),
            sleep=self.sleep,
            reraise=True,
            before_sleep=lambda state: LOGGER.warning(
                "Rate limited on %s, retrying in %.1fs", url, self.backoff
            ),
        )
        return retryer(self._request, url)

    def fetch_catalog(self) -> List[PoolCatalogEntry]:
        cached = self.store.get(config.CATALOG_KEY)
        now = self.clock()
        if cached and now - float(cached.get("timestamp") or 0) < self.catalog_ttl:
            return [PoolCatalogEntry.from_dict(row) for row in cached.get("data") or []]

        try:
            payload = self._get_json(f"{self.base}/pools")
        except SourceError as exc:
            if cached and cached.get("data"):
                LOGGER.warning("Catalog fetch failed (%s); serving stale cache", exc)
                return [PoolCatalogEntry.from_dict(row) for row in cached["data"]]
            LOGGER.error("Catalog fetch failed and no cache available: %s", exc)
            return []

        rows = payload.get("data") if isinstance(payload, dict) else payload
        entries = filter_catalog(rows if isinstance(rows, list) else [])
        LOGGER.info("Fetched catalog: %d quality pools", len(entries))
        try:
            self.store.put(config.CATALOG_KEY, {
                "data": [e.to_dict() for e in entries],
                "timestamp": now,
                "fetched_at": datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            })
        except StorageError as exc:
            LOGGER.warning("Could not cache catalog: %s", exc)
        return entries

    def fetch_series(self, pool_id: str) -> PoolTimeSeries:
        """Return the pool's chart series, or an empty series when the provider fails."""
        try:
            payload = self._get_json(f"{self.base}/chart/{pool_id}")
        except RateLimited:
            LOGGER.warning("Still rate limited for pool %s after retry", pool_id)
            return PoolTimeSeries()
        except SourceError as exc:
            LOGGER.warning("Chart fetch failed for pool %s: %s", pool_id, exc)
            return PoolTimeSeries()
        try:
            return parse_chart(payload)
        except ValueError as exc:
            LOGGER.warning("Unusable chart for pool %s: %s", pool_id, exc)
            return PoolTimeSeries()
