import streamlit as st
import pandas as pd
import plotly.express as px
from pool_health.classifier import CATEGORIES, category_by_key
from pool_health.config import SCORING_PROFILES
from pool_health.engine import compare_profiles
from pool_health.exceptions import CursorPersistError, CycleInProgress
from pool_health.log import setup_logger
from pool_health.pipeline import build_pipeline
from pool_health.query import get_pool, pool_label, query_pools, records_to_frame, summary_metrics

st.set_page_config(page_title="DeFi Pool Health", layout="wide")


@st.cache_resource
def get_pipeline():
    setup_logger(st.secrets.get("POOL_HEALTH_LOG_LEVEL", "INFO"))
    return build_pipeline(st.secrets)


pipeline = get_pipeline()
records = pipeline.cache.snapshot()

st.title("DeFi Pool Health — Scored Liquidity Pools")

# --- Sidebar controls ---
st.sidebar.header("Filters")
platforms = sorted({r.platform for r in records})
platform = st.sidebar.selectbox("Platform", ["All"] + platforms)
min_tvl = st.sidebar.number_input("Minimum TVL ($)", min_value=0, value=0, step=100_000)
search = st.sidebar.text_input("Search pair / platform / chain")
risk_labels = {c.label: c.key for c in CATEGORIES}
risk = st.sidebar.selectbox("Risk category", ["All"] + list(risk_labels))
sort_by = st.sidebar.selectbox("Sort by", ["health_score", "tvl", "volume_24h", "token_pair", "last_updated"])
order = st.sidebar.radio("Order", ["desc", "asc"], horizontal=True)
limit = st.sidebar.slider("Rows per page", 10, 200, 50, step=10)

st.sidebar.write("—")
if st.sidebar.button("Run ingestion cycle"):
    try:
        with st.spinner("Fetching and scoring the next batch..."):
            result = pipeline.run_cycle()
        st.sidebar.success(f"Scored {result.scored} of {result.attempted} pools ({result.failed} failed)")
    except CycleInProgress:
        st.sidebar.warning("A cycle is already running; try again shortly.")
    except CursorPersistError:
        st.sidebar.error("Scores updated but the rotation cursor could not be saved.")
    records = pipeline.cache.snapshot()

# --- Explanatory notes ---
with st.expander("How the score works"):
    st.markdown("""
**Components (v3 profile)**
- *Liquidity* (25): TVL stability, size bonus, penalty for large idle pools
- *Yield* (20): average APR bucket; 5–15% scores best, dead or extreme APRs score worst
- *Impermanent loss* (20): stable/stable best, correlated pairs next, exotic pairs worst
- *Protocol trust* (15), *Activity* (10, volume/TVL), *Track record* (10), *Risk-adjusted* (5)

**Categories**
- **Conservative** ≥ 80, **Moderate** ≥ 60, **Aggressive** ≥ 40, otherwise **Speculative**

**Limitations**
- Pools are refreshed in rotating batches; the table mixes scores of different ages
- Short histories get a low track-record score and no risk-adjusted bonus
""")

# --- Headline metrics ---
stats = summary_metrics(records)
c1, c2, c3, c4 = st.columns(4)
c1.metric("Pools", f"{stats['total_pools']:,}")
c2.metric("Average score", f"{stats['average_health_score']:.1f}")
c3.metric("Total TVL", f"${stats['total_tvl']:,.0f}")
c4.metric("Speculative pools", f"{stats['high_risk_pools']:,}")
if pipeline.cache.updated_at:
    st.caption(f"Last merge: {pipeline.cache.updated_at:%Y-%m-%d %H:%M UTC}")

# --- Results table ---
page = st.number_input("Page", min_value=1, value=1, step=1)
result = query_pools(
    records,
    platform=None if platform == "All" else platform,
    min_tvl=min_tvl or None,
    search=search or None,
    risk=None if risk == "All" else risk_labels[risk],
    sort_by=sort_by,
    order=order,
    page=page,
    limit=limit,
)
df = records_to_frame(result["data"])
df["risk_category"] = [category_by_key(k).label for k in df["risk_category"]]
st.subheader("Pools")
st.caption("Page {page} of {pages} · {total} matching pools".format(**result["pagination"]))
show_cols = ["token_pair", "pool_meta", "platform", "chain", "tvl", "volume_24h", "health_score", "risk_category", "history_days"]
st.dataframe(
    df[show_cols],
    use_container_width=True,
    column_config={
        "token_pair": st.column_config.TextColumn("Pair"),
        "pool_meta": st.column_config.TextColumn("Meta"),
        "platform": st.column_config.TextColumn("Platform"),
        "chain": st.column_config.TextColumn("Chain"),
        "tvl": st.column_config.NumberColumn("TVL", format="$%.0f"),
        "volume_24h": st.column_config.NumberColumn("24h Volume", format="$%.0f"),
        "health_score": st.column_config.ProgressColumn("Score", min_value=0, max_value=100, format="%.1f"),
        "risk_category": st.column_config.TextColumn("Risk"),
        "history_days": st.column_config.NumberColumn("Days", format="%d"),
    }
)

# --- Pool detail ---
st.markdown("---")
st.header("Pool detail")
if df.empty:
    st.info("No pools match the current filters.")
else:
    labels = {r.pool_id: pool_label(r) for r in result["data"]}
    choice = st.selectbox("Pool", list(labels), format_func=labels.get, key="pool_detail")
    pool = get_pool(records, choice)
    category = category_by_key(pool.risk_category)
    st.markdown(f"**{category.label}** — {category.description}")

    bd = pd.DataFrame({"Component": list(pool.breakdown.as_dict()), "Points": list(pool.breakdown.as_dict().values())})
    st.plotly_chart(px.bar(bd, x="Component", y="Points", title=f"Score breakdown ({pool.health_score:.1f})"), use_container_width=True)

    hist = pd.DataFrame(pool.series.to_dict())
    if not hist.empty:
        hist["dates"] = pd.to_datetime(hist["dates"])
        col_a, col_b = st.columns(2)
        col_a.plotly_chart(px.line(hist, x="dates", y="tvl", title="TVL"), use_container_width=True)
        col_b.plotly_chart(px.line(hist, x="dates", y="apr", title="APR %"), use_container_width=True)

    st.subheader("Profile comparison")
    st.dataframe(
        compare_profiles(
            pool.tvl, pool.volume_24h, pool.series.apr, pool.series.tvl,
            symbol=pool.token_pair, platform=pool.platform, profiles=list(SCORING_PROFILES),
        ),
        use_container_width=True,
    )

# --- Downloads ---
st.subheader("Download")
st.download_button(
    "Download scored pools (CSV)",
    records_to_frame(records).to_csv(index=False),
    file_name="scored_pools.csv",
    mime="text/csv"
)
