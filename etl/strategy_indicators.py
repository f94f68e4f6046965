# WORKFLOW: Savings estimates per circularity strategy (refurbishment, recycling).
# Used by: Pipeline orchestrator (strategy step)
# Functions:
# 1. resolve_rate() - Country rate with EU aggregate fallback and provenance
# 2. build_strategy_indicators() - Two rows per (product, geo): refurbishment and recycling
#
# refurbishment rate = configured refurbishment rate
# recycling rate     = collection rate * material recovery rate / 100
# savings            = apparent consumption * rate / 100, missing whenever the rate is missing

"""
Savings estimates per circularity strategy.
"""

import logging

import numpy as np
import pandas as pd

from core.catalog import ProductCatalog
from etl.material_flows import TOTAL_MATERIAL

logger = logging.getLogger(__name__)

STRATEGY_REFURBISHMENT = "refurbishment"
STRATEGY_RECYCLING = "recycling"

RATE_COUNTRY = "country"
RATE_EU_FALLBACK = "eu_fallback"
RATE_MISSING = "missing"

STRATEGY_COLUMNS = [
    "product_key", "product_name", "year", "geo", "level", "strategy",
    "apparent_consumption_tonnes", "apparent_consumption_value_eur",
    "collection_rate_pct", "collection_rate_source",
    "material_recovery_rate_pct", "material_recovery_rate_source",
    "rate_pct", "estimated_savings_tonnes", "estimated_savings_eur",
]


def resolve_rate(base: pd.DataFrame, rates: pd.DataFrame, rate_column: str, eu_geo: str) -> pd.DataFrame:
    """
    Look up a per (product, geo) rate, falling back to the EU aggregate.

    Args:
        base: Rows with product_key and geo
        rates: Rows with product_key, geo and ``rate_column``
        rate_column: Name of the rate column
        eu_geo: Geo code of the EU aggregate

    Returns:
        DataFrame indexed like ``base`` with the resolved rate and a ``<rate_column>_source`` column
    """
    source_column = rate_column.replace("_pct", "_source")
    rates = rates[["product_key", "geo", rate_column]].dropna(subset=[rate_column])

    country = base[["product_key", "geo"]].merge(rates, on=["product_key", "geo"], how="left")
    eu = rates[rates["geo"] == eu_geo][["product_key", rate_column]].rename(columns={rate_column: "eu_rate"})
    resolved = country.merge(eu, on="product_key", how="left")
    resolved.index = base.index

    rate = pd.to_numeric(resolved[rate_column], errors="coerce").fillna(
        pd.to_numeric(resolved["eu_rate"], errors="coerce")
    )
    source = np.select(
        [resolved[rate_column].notna(), resolved["eu_rate"].notna()],
        [RATE_COUNTRY, RATE_EU_FALLBACK],
        default=RATE_MISSING,
    )
    return pd.DataFrame({rate_column: rate, source_column: source}, index=base.index)


def build_strategy_indicators(
    indicators: pd.DataFrame,
    collection_rates: pd.DataFrame,
    recovery_rates: pd.DataFrame,
    catalog: ProductCatalog,
    year: int,
    eu_geo: str = "EU27_2020",
) -> pd.DataFrame:
    """
    Build strategy savings rows for every (product, geo) of the indicator table.

    Args:
        indicators: Main circularity indicator table
        collection_rates: Product collection rates
        recovery_rates: Product material recovery rates (the TOTAL material rows are used)
        catalog: Product catalog holding refurbishment rates
        year: Year being processed
        eu_geo: Geo code of the EU aggregate used as fallback

    Returns:
        DataFrame with STRATEGY_COLUMNS, exactly two rows per (product, geo)
    """
    if indicators.empty:
        logger.warning(f"No circularity indicators for {year}; strategy indicators are empty")
        return pd.DataFrame({column: pd.Series(dtype=object) for column in STRATEGY_COLUMNS})

    # Trade sits on a single code per product, so summing over codes counts it once
    base = (
        indicators.groupby(["product_key", "product_name", "geo", "level"], as_index=False)[
            ["apparent_consumption_tonnes", "apparent_consumption_value_eur"]
        ]
        .sum(min_count=1)
    )
    base["year"] = year

    collection = resolve_rate(
        base,
        collection_rates.reindex(columns=["product_key", "geo", "collection_rate_pct"]),
        "collection_rate_pct",
        eu_geo,
    )
    recovery_totals = recovery_rates[recovery_rates["material"] == TOTAL_MATERIAL] if not recovery_rates.empty else recovery_rates
    recovery = resolve_rate(
        base,
        recovery_totals.reindex(columns=["product_key", "geo", "recovery_rate_pct"])
        .rename(columns={"recovery_rate_pct": "material_recovery_rate_pct"}),
        "material_recovery_rate_pct",
        eu_geo,
    )

    refurbishment_rates = catalog.rate_parameters().set_index("product_key")["refurbishment_rate_pct"]

    refurbishment = base.assign(
        strategy=STRATEGY_REFURBISHMENT,
        rate_pct=base["product_key"].map(refurbishment_rates).astype(float),
        collection_rate_pct=np.nan,
        collection_rate_source=None,
        material_recovery_rate_pct=np.nan,
        material_recovery_rate_source=None,
    )
    recycling = base.join(collection).join(recovery)
    recycling["strategy"] = STRATEGY_RECYCLING
    recycling["rate_pct"] = recycling["collection_rate_pct"] * recycling["material_recovery_rate_pct"] / 100.0

    strategies = pd.concat([refurbishment, recycling], ignore_index=True)
    strategies["estimated_savings_tonnes"] = strategies["apparent_consumption_tonnes"] * strategies["rate_pct"] / 100.0
    strategies["estimated_savings_eur"] = strategies["apparent_consumption_value_eur"] * strategies["rate_pct"] / 100.0

    missing = int(strategies["rate_pct"].isna().sum())
    if missing:
        logger.info(f"{missing} strategy rows for {year} have no rate; their savings are left empty")
    return strategies[STRATEGY_COLUMNS].sort_values(["product_key", "geo", "strategy"]).reset_index(drop=True)
