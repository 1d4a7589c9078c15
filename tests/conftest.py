from datetime import datetime, timedelta, timezone

import pytest

from pool_health.models import PoolCatalogEntry, PoolTimeSeries, ScoreBreakdown, ScoredPoolRecord

T0 = datetime(2025, 9, 1, tzinfo=timezone.utc)


def make_series(n, apr=10.0, tvl=1_000_000.0, volume=50_000.0):
    dates = tuple((T0 + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(n))
    aprs = tuple(apr(i) if callable(apr) else apr for i in range(n))
    tvls = tuple(tvl(i) if callable(tvl) else tvl for i in range(n))
    return PoolTimeSeries(
        dates=dates,
        tvl=tvls,
        apr=aprs,
        volume=(volume,) * n,
        fees=tuple(t * a / 100 / 365 for t, a in zip(tvls, aprs)),
    )


def make_entry(pool_id, symbol="USDC-WETH", project="uniswap-v3", tvl=5_000_000.0, volume=500_000.0):
    return PoolCatalogEntry(pool_id=pool_id, symbol=symbol, chain="Ethereum", project=project, tvl=tvl, volume_24h=volume)


def make_record(pool_id, score=50.0, platform="uniswap-v3", tvl=1_000_000.0, risk="aggressive",
                symbol="USDC-WETH", chain="Ethereum", when=T0, series=None, fee_meta=None):
    return ScoredPoolRecord(
        pool_id=pool_id,
        platform=platform,
        chain=chain,
        token_pair=symbol,
        tvl=tvl,
        volume_24h=tvl / 10,
        health_score=score,
        breakdown=ScoreBreakdown(liquidity=score),
        risk_category=risk,
        series=series if series is not None else make_series(3),
        last_updated=when,
        fee_meta=fee_meta,
    )


@pytest.fixture
def series_factory():
    return make_series


@pytest.fixture
def entry_factory():
    return make_entry


@pytest.fixture
def record_factory():
    return make_record
