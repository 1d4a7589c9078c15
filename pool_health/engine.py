import math
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from . import config
from .models import ScoreBreakdown, ScoreResult

ProfileLike = Union[str, Dict, None]

_TOKEN_SPLIT = re.compile(r"[-/_+\s]+")
_TICKER = re.compile(r"^[A-Z0-9][A-Z0-9.]{1,11}$")


def _clean(values: Optional[Iterable[float]]) -> np.ndarray:
    if values is None:
        return np.zeros(0)
    arr = np.asarray(list(values), dtype=float)
    return np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)


def _clamp(value: float, lo: float, hi: float) -> float:
    if not math.isfinite(value):
        return lo
    return max(lo, min(hi, value))


def resolve_profile(profile: ProfileLike = None) -> Tuple[str, Dict]:
    if isinstance(profile, dict):
        return profile.get("name", "custom"), profile
    name = profile or config.DEFAULT_PROFILE
    if name not in config.SCORING_PROFILES:
        raise KeyError(f"unknown scoring profile {name!r}")
    return name, config.SCORING_PROFILES[name]


def _budget(profile: Dict, component: str) -> float:
    return float(profile["weights"].get(component, 0))


def _scaled(points: float, profile: Dict, component: str) -> float:
    """Rescale table points written against the reference budget to this profile's budget."""
    ref = config.REFERENCE_BUDGETS.get(component)
    if not ref:
        return points
    return points * _budget(profile, component) / ref


def _bucket(value: float, table: Sequence[Tuple[float, float]]) -> float:
    for upper, points in table:
        if value < upper:
            return points
    return table[-1][1]


def _step(value: float, steps: Sequence[Tuple[float, float]], default: float = 0.0) -> float:
    for threshold, points in steps:
        if value >= threshold:
            return points
    return default


# --- Dispersion measures ---

def coefficient_of_variation(values: Optional[Iterable[float]]) -> float:
    """Population std / mean; 0 for fewer than 2 samples or a zero mean."""
    arr = _clean(values)
    if arr.size < 2:
        return 0.0
    mean = float(arr.mean())
    if mean == 0:
        return 0.0
    return float(arr.std()) / abs(mean)


def robust_volatility(values: Optional[Iterable[float]], max_window: int = 30, min_samples: int = 10) -> float:
    """Median of rolling-window CVs, so a short spike only moves the few windows it touches."""
    arr = _clean(values)
    n = arr.size
    if n < min_samples:
        return 0.0
    window = max(2, min(max_window, n // 4))
    cvs = [coefficient_of_variation(arr[i:i + window]) for i in range(n - window + 1)]
    return float(np.median(cvs))


# --- Token pair classification ---

def split_tokens(symbol: str) -> List[str]:
    if not symbol:
        return []
    parts = [p.strip().upper() for p in _TOKEN_SPLIT.split(symbol)]
    return [p for p in parts if p]


def recognizable_tickers(symbol: str) -> List[str]:
    return [t for t in split_tokens(symbol) if _TICKER.match(t)]


def _correlated_group(token: str) -> Optional[str]:
    for name, members in config.CORRELATED_GROUPS.items():
        if token in members:
            return name
    return None


def is_major_token(token: str) -> bool:
    return token in config.MAJORS or _correlated_group(token) is not None


def pair_composition(symbol: str) -> str:
    tokens = split_tokens(symbol)
    if not tokens:
        return "default"
    stables = [t in config.STABLECOINS for t in tokens]
    if all(stables):
        return "stable_pair"
    groups = {_correlated_group(t) for t in tokens}
    if len(tokens) >= 2 and len(groups) == 1 and None not in groups:
        return "correlated"
    if any(stables):
        return "stable_volatile"
    if any(is_major_token(t) for t in tokens):
        return "major"
    known = config.STABLECOINS | config.RECOGNIZED_TOKENS
    if all(t in known or is_major_token(t) for t in tokens):
        return "recognized"
    return "default"


def pool_type(symbol: str) -> Optional[str]:
    tokens = split_tokens(symbol)
    if not tokens:
        return None
    if all(t in config.STABLECOINS for t in tokens):
        return "stable_pair"
    if all(is_major_token(t) for t in tokens):
        return "major_pair"
    return None


def lookup_priors(platform: str) -> Tuple[float, float]:
    trust = config.PROTOCOL_TRUST.get(platform, config.DEFAULT_TRUST)
    governance = config.GOVERNANCE_PRIOR.get(platform, config.DEFAULT_GOVERNANCE)
    return trust, governance


# --- Sub-scores ---

def score_liquidity(tvl: float, volume_24h: float, tvl_history, profile: Dict) -> float:
    budget = _budget(profile, "liquidity")
    if budget <= 0 or not tvl or tvl <= 0:
        return 0.0
    cv = coefficient_of_variation(tvl_history)
    base = budget * math.exp(-profile["liquidity_decay"] * cv)

    bonus = 0.0
    floor, ceiling = profile["size_bonus_floor"], profile["size_bonus_ceiling"]
    if profile["size_bonus_max"] > 0 and tvl >= floor:
        frac = math.log10(tvl / floor) / math.log10(ceiling / floor)
        bonus = profile["size_bonus_max"] * _clamp(frac, 0.0, 1.0)

    # Large but idle pools read as concentrated holdings.
    penalty = 0.0
    ratio = (volume_24h or 0.0) / tvl
    for min_tvl, min_ratio, tier_penalty in profile["whale_tiers"]:
        if tvl >= min_tvl:
            if ratio < min_ratio:
                penalty = tier_penalty
            break

    return _clamp(base + bonus - penalty, 0.0, budget)


def _apr_volatility(apr: np.ndarray, profile: Dict, min_samples: int) -> Optional[float]:
    if profile["robust_volatility"]:
        return robust_volatility(apr) if apr.size >= 10 else None
    return coefficient_of_variation(apr) if apr.size >= min_samples else None


def score_yield(apr_history, profile: Dict) -> float:
    budget = _budget(profile, "yield_stability")
    if budget <= 0:
        return 0.0
    apr = _clean(apr_history)
    avg = float(apr.mean()) if apr.size else 0.0
    raw = _bucket(avg, profile["apr_buckets"])

    vol = _apr_volatility(apr, profile, 2)
    if vol is None:
        factor = 1.0
    else:
        factor = _clamp(profile["stability_ceiling"] - profile["stability_slope"] * vol,
                        profile["stability_floor"], profile["stability_ceiling"])
    if raw < profile["good_bucket_min"]:
        factor = min(factor, 1.0)

    return _clamp(_scaled(raw, profile, "yield_stability") * factor, 0.0, budget)


def score_il_risk(symbol: str, apr_history, tvl_history, profile: Dict) -> float:
    budget = _budget(profile, "il_risk")
    if budget <= 0:
        return 0.0
    composition = pair_composition(symbol)
    points = profile["il_scores"][composition]
    if composition == "default":
        recent = profile["il_recent_samples"]
        apr_cv = coefficient_of_variation(_clean(apr_history)[-recent:])
        tvl_cv = coefficient_of_variation(_clean(tvl_history)[-recent:])
        if max(apr_cv, tvl_cv) > profile["il_volatility_threshold"]:
            points *= profile["il_volatility_penalty"]
    return _clamp(_scaled(points, profile, "il_risk"), 0.0, budget)


def score_protocol(trust: float, governance: float, profile: Dict) -> float:
    budget = _budget(profile, "protocol_trust")
    if budget <= 0:
        return 0.0
    trust = _clamp(trust, 0.0, 1.0)
    gw = profile["governance_weight"]
    blend = (1 - gw) + gw * _clamp(governance, 0.0, 1.0)
    return _clamp(budget * trust * blend, 0.0, budget)


def score_activity(tvl: float, volume_24h: float, profile: Dict) -> float:
    budget = _budget(profile, "activity")
    if budget <= 0:
        return 0.0
    ratio = (volume_24h or 0.0) / tvl if tvl and tvl > 0 else 0.0
    points = _bucket(ratio, profile["activity_bands"])
    return _clamp(_scaled(points, profile, "activity"), 0.0, budget)


def score_track_record(samples: int, profile: Dict) -> float:
    budget = _budget(profile, "track_record")
    if budget <= 0:
        return 0.0
    points = _step(samples, profile["track_record_steps"])
    return _clamp(_scaled(points, profile, "track_record"), 0.0, budget)


def score_risk_adjusted(apr_history, profile: Dict) -> float:
    budget = _budget(profile, "risk_adjusted")
    apr = _clean(apr_history)
    if budget <= 0 or apr.size <= profile["risk_adjusted_min_samples"]:
        return 0.0
    avg = float(apr.mean())
    if avg <= 0:
        return 0.0
    vol = _apr_volatility(apr, profile, 2) or 0.0
    scaled_vol = vol * profile["sharpe_vol_scale"]
    sharpe = avg / scaled_vol if scaled_vol > 0 else float("inf")
    points = _step(sharpe, profile["sharpe_tiers"])
    return _clamp(_scaled(points, profile, "risk_adjusted"), 0.0, budget)


def pool_type_multiplier(symbol: str, platform: str, profile: Dict) -> float:
    kind = pool_type(symbol)
    if kind is None:
        return 1.0
    mult = profile["pool_type_multipliers"].get(kind, 1.0)
    return max(mult, profile["platform_combos"].get((platform, kind), 1.0))


# --- Composite ---

def calculate_health_score(
    tvl: float,
    volume_24h: float,
    apr_history,
    tvl_history,
    trust: Optional[float] = None,
    governance: Optional[float] = None,
    symbol: str = "",
    platform: str = "",
    profile: ProfileLike = None,
) -> ScoreResult:
    name, prof = resolve_profile(profile)
    if trust is None or governance is None:
        default_trust, default_gov = lookup_priors(platform)
        trust = default_trust if trust is None else trust
        governance = default_gov if governance is None else governance

    tvl = tvl if tvl and math.isfinite(tvl) and tvl > 0 else 0.0
    volume_24h = volume_24h if volume_24h and math.isfinite(volume_24h) and volume_24h > 0 else 0.0
    samples = len(_clean(apr_history))

    parts = {
        "liquidity": score_liquidity(tvl, volume_24h, tvl_history, prof),
        "yield_stability": score_yield(apr_history, prof),
        "il_risk": score_il_risk(symbol, apr_history, tvl_history, prof),
        "protocol_trust": score_protocol(trust, governance, prof),
        "activity": score_activity(tvl, volume_24h, prof),
        "track_record": score_track_record(samples, prof),
        "risk_adjusted": score_risk_adjusted(apr_history, prof),
    }
    parts = {k: max(0.0, v) for k, v in parts.items()}
    subtotal = sum(parts.values())
    total = subtotal * pool_type_multiplier(symbol, platform, prof)
    breakdown = ScoreBreakdown(pool_type_bonus=max(0.0, total - subtotal), **parts)
    return ScoreResult(score=_clamp(breakdown.total(), 0.0, 100.0), breakdown=breakdown, profile=name)


def compare_profiles(
    tvl: float,
    volume_24h: float,
    apr_history,
    tvl_history,
    symbol: str = "",
    platform: str = "",
    profiles: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Score the same inputs under several profiles, one row per profile."""
    records = []
    for name in profiles or list(config.SCORING_PROFILES):
        result = calculate_health_score(
            tvl, volume_24h, apr_history, tvl_history,
            symbol=symbol, platform=platform, profile=name,
        )
        row = {"Profile": name, "Score": round(result.score, 2)}
        row.update({k: round(v, 2) for k, v in result.breakdown.as_dict().items()})
        records.append(row)
    return pd.DataFrame(records)
