from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import MalformedRecord

REQUIRED_CATALOG_FIELDS = ("pool", "symbol", "chain", "project", "tvlUsd")


def _to_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class PoolCatalogEntry:
    pool_id: str
    symbol: str
    chain: str
    project: str
    tvl: float
    volume_24h: float = 0.0
    fee_meta: Optional[Dict[str, Any]] = None

    @classmethod
    def from_api(cls, row: Dict[str, Any]) -> "PoolCatalogEntry":
        """Build an entry from a raw provider row; raises MalformedRecord on missing fields."""
        if not isinstance(row, dict):
            raise MalformedRecord(f"catalog row is not an object: {row!r}")
        missing = [k for k in REQUIRED_CATALOG_FIELDS if row.get(k) in (None, "")]
        if missing:
            raise MalformedRecord(f"catalog row {row.get('pool')!r} missing {missing}")
        try:
            tvl = float(row["tvlUsd"])
        except (TypeError, ValueError):
            raise MalformedRecord(f"catalog row {row['pool']!r} has non-numeric tvl")
        fee_meta = {k: row[k] for k in ("poolMeta", "apyBase") if row.get(k) is not None}
        return cls(
            pool_id=str(row["pool"]),
            symbol=str(row["symbol"]),
            chain=str(row["chain"]),
            project=str(row["project"]),
            tvl=tvl,
            volume_24h=_to_float(row.get("volumeUsd1d")),
            fee_meta=fee_meta or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolCatalogEntry":
        return cls(**{f.name: data.get(f.name) for f in fields(cls) if f.name in data})


@dataclass(frozen=True)
class PoolTimeSeries:
    """Four parallel daily series for one pool, oldest first."""

    dates: Tuple[str, ...] = ()
    tvl: Tuple[float, ...] = ()
    apr: Tuple[float, ...] = ()
    volume: Tuple[float, ...] = ()
    fees: Tuple[float, ...] = ()

    def __post_init__(self):
        lengths = {len(self.dates), len(self.tvl), len(self.apr), len(self.volume), len(self.fees)}
        if len(lengths) != 1:
            raise ValueError(f"time series arrays must have equal length, got {sorted(lengths)}")

    def __len__(self) -> int:
        return len(self.dates)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    def tail(self, n: int) -> "PoolTimeSeries":
        if n <= 0 or len(self) <= n:
            return self
        return PoolTimeSeries(
            dates=self.dates[-n:],
            tvl=self.tvl[-n:],
            apr=self.apr[-n:],
            volume=self.volume[-n:],
            fees=self.fees[-n:],
        )

    def to_dict(self) -> Dict[str, List]:
        return {
            "dates": list(self.dates),
            "tvl": list(self.tvl),
            "apr": list(self.apr),
            "volume": list(self.volume),
            "fees": list(self.fees),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, List]]) -> "PoolTimeSeries":
        data = data or {}
        return cls(
            dates=tuple(data.get("dates") or ()),
            tvl=tuple(data.get("tvl") or ()),
            apr=tuple(data.get("apr") or ()),
            volume=tuple(data.get("volume") or ()),
            fees=tuple(data.get("fees") or ()),
        )


@dataclass(frozen=True)
class ScoreBreakdown:
    liquidity: float = 0.0
    yield_stability: float = 0.0
    il_risk: float = 0.0
    protocol_trust: float = 0.0
    activity: float = 0.0
    track_record: float = 0.0
    risk_adjusted: float = 0.0
    pool_type_bonus: float = 0.0

    def total(self) -> float:
        return sum(getattr(self, f.name) for f in fields(self))

    def as_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, float]]) -> "ScoreBreakdown":
        data = data or {}
        return cls(**{f.name: float(data.get(f.name, 0.0)) for f in fields(cls)})


@dataclass(frozen=True)
class ScoreResult:
    score: float
    breakdown: ScoreBreakdown
    profile: str


@dataclass(frozen=True)
class ScoredPoolRecord:
    pool_id: str
    platform: str
    chain: str
    token_pair: str
    tvl: float
    volume_24h: float
    health_score: float
    breakdown: ScoreBreakdown
    risk_category: str
    series: PoolTimeSeries
    last_updated: datetime
    fee_meta: Optional[Dict[str, Any]] = None

    def with_last_updated(self, when: datetime) -> "ScoredPoolRecord":
        return replace(self, last_updated=when)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "platform": self.platform,
            "chain": self.chain,
            "token_pair": self.token_pair,
            "tvl": self.tvl,
            "volume_24h": self.volume_24h,
            "fee_meta": self.fee_meta,
            "health_score": self.health_score,
            "breakdown": self.breakdown.as_dict(),
            "risk_category": self.risk_category,
            "historical_data": self.series.to_dict(),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoredPoolRecord":
        last_updated = datetime.fromisoformat(data["last_updated"])
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        return cls(
            pool_id=data["pool_id"],
            platform=data.get("platform", ""),
            chain=data.get("chain", ""),
            token_pair=data.get("token_pair", ""),
            tvl=_to_float(data.get("tvl")),
            volume_24h=_to_float(data.get("volume_24h")),
            health_score=_to_float(data.get("health_score")),
            breakdown=ScoreBreakdown.from_dict(data.get("breakdown")),
            risk_category=data.get("risk_category", "speculative"),
            series=PoolTimeSeries.from_dict(data.get("historical_data")),
            last_updated=last_updated,
            fee_meta=data.get("fee_meta"),
        )


@dataclass
class CycleResult:
    started_at: datetime
    finished_at: Optional[datetime] = None
    catalog_size: int = 0
    cursor_start: int = 0
    cursor_end: int = 0
    attempted: int = 0
    scored: int = 0
    skipped: int = 0
    failed: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
