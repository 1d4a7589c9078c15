"""Read-only filter/sort/paginate layer over a scored-pool snapshot."""
import math
from typing import Any, Dict, Iterable, Optional, Sequence

import pandas as pd

from .classifier import category_keys
from .models import ScoredPoolRecord

SORTABLE_FIELDS = ("health_score", "tvl", "volume_24h", "token_pair", "platform", "chain", "last_updated")
MAX_PAGE_SIZE = 200

FRAME_COLUMNS = [
    "pool_id", "token_pair", "pool_meta", "platform", "chain", "tvl", "volume_24h",
    "health_score", "risk_category", "liquidity", "yield_stability", "il_risk",
    "protocol_trust", "activity", "track_record", "risk_adjusted", "pool_type_bonus",
    "history_days", "last_updated",
]


def records_to_frame(records: Iterable[ScoredPoolRecord]) -> pd.DataFrame:
    rows = []
    for r in records:
        row = {
            "pool_id": r.pool_id,
            "token_pair": r.token_pair,
            "pool_meta": (r.fee_meta or {}).get("poolMeta"),
            "platform": r.platform,
            "chain": r.chain,
            "tvl": r.tvl,
            "volume_24h": r.volume_24h,
            "health_score": r.health_score,
            "risk_category": r.risk_category,
            "history_days": len(r.series),
            "last_updated": r.last_updated,
        }
        row.update(r.breakdown.as_dict())
        rows.append(row)
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


def summary_metrics(records: Sequence[ScoredPoolRecord]) -> Dict[str, Any]:
    by_category = {key: 0 for key in category_keys()}
    for r in records:
        by_category[r.risk_category] = by_category.get(r.risk_category, 0) + 1
    total = len(records)
    return {
        "total_pools": total,
        "average_health_score": round(sum(r.health_score for r in records) / total, 2) if total else 0.0,
        "total_tvl": float(sum(r.tvl for r in records)),
        "total_volume_24h": float(sum(r.volume_24h for r in records)),
        "high_risk_pools": by_category.get("speculative", 0),
        "by_category": by_category,
    }


def get_pool(records: Iterable[ScoredPoolRecord], pool_id: str) -> Optional[ScoredPoolRecord]:
    for r in records:
        if r.pool_id == pool_id:
            return r
    return None


def pool_label(record: ScoredPoolRecord) -> str:
    """Display name for one pool; the short id tells apart pools sharing pair, platform and chain."""
    pair = record.token_pair
    meta = (record.fee_meta or {}).get("poolMeta")
    if meta:
        pair = f"{pair} ({meta})"
    return f"{pair} · {record.platform} · {record.chain} · {record.pool_id[:8]}"


def query_pools(
    records: Sequence[ScoredPoolRecord],
    platform: Optional[str] = None,
    min_tvl: Optional[float] = None,
    search: Optional[str] = None,
    risk: Optional[str] = None,
    sort_by: str = "health_score",
    order: str = "desc",
    page: int = 1,
    limit: int = 50,
) -> Dict[str, Any]:
    """Filter, sort and paginate records.

    Returns {"data": [records...], "pagination": {page, limit, total, pages}}.
    """
    by_id = {r.pool_id: r for r in records}
    df = records_to_frame(records)

    if platform:
        df = df[df["platform"].str.lower() == platform.lower()]
    if min_tvl is not None:
        df = df[df["tvl"] >= float(min_tvl)]
    if risk:
        df = df[df["risk_category"] == risk.lower()]
    if search:
        needle = search.strip().lower()
        mask = (
            df["token_pair"].str.lower().str.contains(needle, regex=False)
            | df["platform"].str.lower().str.contains(needle, regex=False)
            | df["chain"].str.lower().str.contains(needle, regex=False)
            | df["pool_id"].str.lower().str.contains(needle, regex=False)
        )
        df = df[mask]

    if sort_by not in SORTABLE_FIELDS:
        sort_by = "health_score"
    ascending = str(order).lower() == "asc"
    df = df.sort_values([sort_by, "pool_id"], ascending=[ascending, True], kind="mergesort")

    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    total = len(df)
    pages = max(1, math.ceil(total / limit))
    page = max(1, int(page))
    start = (page - 1) * limit
    page_ids = df["pool_id"].iloc[start:start + limit].tolist()

    return {
        "data": [by_id[pid] for pid in page_ids],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": pages},
    }
