DEFILLAMA_YIELDS_BASE = "https://yields.llama.fi"
REQUEST_TIMEOUT = 25            # seconds, per external call
RATE_LIMIT_BACKOFF = 2.5        # seconds before the single retry on HTTP 429
MAX_ATTEMPTS = 2                # first call + one retry

# --- Catalog ---
CATALOG_TTL = 60 * 60           # one hour
CATALOG_MIN_TVL = 500_000
CATALOG_QUALITY_TVL = 10_000_000
CATALOG_MAX_SIZE = 2000

# --- Rotation / ingestion ---
BATCH_SIZE = 15
FETCH_DELAY = 2.0               # seconds between per-pool chart fetches
MIN_HISTORY_DAYS = 7
SERIES_WINDOW = 365
MAX_RETAINED_POOLS = 1000
CYCLE_INTERVAL = 60 * 60

# --- Persisted keys ---
CURSOR_KEY = "rotation_cursor"
CATALOG_KEY = "catalog_cache"
SCORED_KEY = "scored_pools"
DATA_DIR = "data"

# --- Token universe ---
STABLECOINS = {
    "USDC", "USDT", "DAI", "FRAX", "LUSD", "USDE", "SUSDE", "GHO", "CRVUSD", "PYUSD",
    "TUSD", "USDP", "BUSD", "USDC.E", "USDBC", "USDS", "SDAI", "FDUSD", "DOLA", "MIM",
    "EURC", "USD0", "USDM", "RLUSD", "USDY",
}
MAJORS = {"ETH", "WETH", "BTC", "WBTC", "CBBTC", "TBTC", "SOL", "WSOL", "BNB", "WBNB"}

# Legs inside the same group track one underlying closely.
CORRELATED_GROUPS = {
    "ETH": {"ETH", "WETH", "STETH", "WSTETH", "RETH", "CBETH", "WEETH", "EZETH", "RSETH",
            "FRXETH", "SFRXETH", "METH", "OETH", "ETHX"},
    "BTC": {"BTC", "WBTC", "CBBTC", "TBTC", "BTCB", "LBTC", "SOLVBTC", "FBTC"},
    "SOL": {"SOL", "WSOL", "MSOL", "JITOSOL", "BSOL", "JUPSOL", "INF"},
    "BNB": {"BNB", "WBNB", "SLISBNB", "BNBX"},
}

RECOGNIZED_TOKENS = {
    "LINK", "UNI", "AAVE", "ARB", "OP", "CRV", "CVX", "LDO", "MKR", "SNX", "COMP",
    "BAL", "SUSHI", "PENDLE", "GMX", "MATIC", "POL", "AVAX", "WAVAX", "FTM", "ATOM",
    "DOT", "NEAR", "APT", "SUI", "SEI", "TIA", "INJ", "JUP", "RAY", "ORCA", "BONK",
    "WIF", "PEPE", "SHIB", "DOGE", "AERO", "VELO", "ENA", "EIGEN", "ONDO", "RPL",
    "FXS", "YFI", "1INCH", "GRT", "RNDR", "FET", "TAO", "CAKE", "TRX", "TON",
}

# --- Protocol priors (platform id -> coefficient in (0, 1]) ---
PROTOCOL_TRUST = {
    "uniswap-v3": 0.95,
    "uniswap-v2": 0.90,
    "curve-dex": 0.92,
    "aave-v3": 0.95,
    "compound-v3": 0.92,
    "lido": 0.95,
    "balancer-v2": 0.85,
    "convex-finance": 0.85,
    "aerodrome-slipstream": 0.80,
    "aerodrome-v1": 0.80,
    "velodrome-v2": 0.78,
    "pancakeswap-amm-v3": 0.80,
    "pancakeswap-amm": 0.78,
    "sushiswap": 0.75,
    "orca-dex": 0.80,
    "raydium-amm": 0.75,
    "meteora-dlmm": 0.70,
    "camelot-v3": 0.70,
    "trader-joe-dex": 0.72,
}
DEFAULT_TRUST = 0.6

GOVERNANCE_PRIOR = {
    "uniswap-v3": 0.9,
    "uniswap-v2": 0.9,
    "curve-dex": 0.85,
    "aave-v3": 0.95,
    "compound-v3": 0.9,
    "lido": 0.85,
    "balancer-v2": 0.8,
    "convex-finance": 0.7,
    "sushiswap": 0.6,
}
DEFAULT_GOVERNANCE = 0.6

# --- Scoring profiles ---
# Budgets are point caps per component. Bucket tables are (upper_bound_exclusive, points);
# step tables are (min_value, points) checked from the top down.
_V3 = {
    "weights": {
        "liquidity": 25,
        "yield_stability": 20,
        "il_risk": 20,
        "protocol_trust": 15,
        "activity": 10,
        "track_record": 10,
        "risk_adjusted": 5,
    },
    "robust_volatility": True,
    "liquidity_decay": 2.0,
    "size_bonus_max": 3.0,
    "size_bonus_floor": 1_000_000,      # no bonus below this tvl
    "size_bonus_ceiling": 100_000_000,  # full bonus at or above this tvl
    # (min_tvl, min volume/tvl ratio, penalty); first tier whose tvl floor is met applies
    "whale_tiers": [
        (5_000_000, 0.01, 8.0),
        (1_000_000, 0.005, 5.0),
    ],
    "apr_buckets": [
        (0.5, 2.0),
        (2.0, 7.0),
        (5.0, 13.0),
        (15.0, 20.0),
        (30.0, 15.0),
        (60.0, 8.0),
        (float("inf"), 3.0),
    ],
    "good_bucket_min": 13.0,
    "stability_ceiling": 1.3,
    "stability_floor": 0.5,
    "stability_slope": 2.0,
    "il_scores": {
        "stable_pair": 20.0,
        "correlated": 17.0,
        "stable_volatile": 12.0,
        "major": 9.0,
        "recognized": 6.0,
        "default": 4.0,
    },
    "il_recent_samples": 30,
    "il_volatility_threshold": 0.5,
    "il_volatility_penalty": 0.5,
    "governance_weight": 0.2,
    "activity_bands": [
        (0.01, 2.0),        # too low
        (0.05, 6.0),        # low but healthy
        (0.30, 10.0),       # optimal
        (1.00, 7.0),        # high
        (float("inf"), 3.0),  # excessive
    ],
    "track_record_steps": [
        (730, 10.0),
        (365, 8.5),
        (180, 7.0),
        (90, 5.0),
        (30, 3.0),
        (7, 1.0),
    ],
    "risk_adjusted_min_samples": 30,
    "sharpe_vol_scale": 100.0,
    "sharpe_tiers": [
        (2.0, 5.0),
        (1.0, 3.5),
        (0.5, 2.0),
        (0.0, 0.5),
    ],
    "pool_type_multipliers": {
        "stable_pair": 1.05,
        "major_pair": 1.03,
    },
    # (platform, composition) premiums take precedence when larger
    "platform_combos": {
        ("curve-dex", "stable_pair"): 1.08,
        ("uniswap-v3", "major_pair"): 1.05,
        ("balancer-v2", "stable_pair"): 1.06,
    },
}

_V1_SIMPLE = dict(
    _V3,
    weights={
        "liquidity": 25,
        "yield_stability": 25,
        "il_risk": 25,
        "protocol_trust": 0,
        "activity": 25,
        "track_record": 0,
        "risk_adjusted": 0,
    },
    robust_volatility=False,
    size_bonus_max=0.0,
    whale_tiers=[],
    pool_type_multipliers={},
    platform_combos={},
)

SCORING_PROFILES = {
    "v3": _V3,
    "v1-simple": _V1_SIMPLE,
}
DEFAULT_PROFILE = "v3"

# Reference budgets the bucket tables above are written against.
REFERENCE_BUDGETS = {
    "yield_stability": 20,
    "il_risk": 20,
    "activity": 10,
    "track_record": 10,
    "risk_adjusted": 5,
}

# --- Risk categories (inclusive lower bounds, highest first) ---
RISK_CATEGORIES = [
    {"min_score": 80, "key": "conservative", "label": "Conservative",
     "description": "Stable liquidity, sustainable yield and low impermanent-loss exposure."},
    {"min_score": 60, "key": "moderate", "label": "Moderate",
     "description": "Sound fundamentals with some yield or liquidity variability."},
    {"min_score": 40, "key": "aggressive", "label": "Aggressive",
     "description": "Material volatility, concentration or impermanent-loss risk."},
    {"min_score": 0, "key": "speculative", "label": "Speculative",
     "description": "Thin history, unstable yield or untrusted protocol; size positions accordingly."},
]
