import math
from dataclasses import dataclass
from typing import List

from . import config


@dataclass(frozen=True)
class RiskCategory:
    key: str
    label: str
    description: str
    min_score: float


CATEGORIES: List[RiskCategory] = [
    RiskCategory(c["key"], c["label"], c["description"], float(c["min_score"]))
    for c in sorted(config.RISK_CATEGORIES, key=lambda c: c["min_score"], reverse=True)
]
_BY_KEY = {c.key: c for c in CATEGORIES}


def classify_risk(score: float) -> RiskCategory:
    """Map a composite score to its category; lower bounds are inclusive.

    Scores outside [0, 100] are clamped first, and a non-finite score falls
    into the lowest category.
    """
    if score is None or not math.isfinite(score):
        return CATEGORIES[-1]
    score = max(0.0, min(100.0, score))
    for category in CATEGORIES:
        if score >= category.min_score:
            return category
    return CATEGORIES[-1]


def category_by_key(key: str) -> RiskCategory:
    return _BY_KEY[key]


def category_keys() -> List[str]:
    return [c.key for c in CATEGORIES]
