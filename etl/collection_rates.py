# WORKFLOW: Product collection rates from Eurostat WEEE collection statistics.
# Used by: Pipeline orchestrator (collection rate step), strategy indicators
# Functions:
# 1. category_collection_rates() - Recognized operation/unit rows averaged per (geo, waste category)
# 2. product_collection_rates() - Category rates averaged per (product, geo) over the product's waste codes
#
# Flow: env_waselee_{year} -> filter wst_oper/unit -> coerce values -> mean per category -> mean per product
# An empty or missing input yields a well-formed empty table.

"""
Product collection rates from Eurostat WEEE collection statistics.
"""

import logging
from typing import List, Sequence

import pandas as pd

from core.catalog import ProductCatalog
from etl.coercion import coerce_series
from etl.country_codes import SourceSystem, harmonize_series

logger = logging.getLogger(__name__)

DEFAULT_OPERATION_CODES = ("COL",)
DEFAULT_UNIT_CODES = ("PC", "PC_AVG3Y")
DATA_SOURCE = "eurostat_env_waselee"

CATEGORY_COLLECTION_COLUMNS = ["geo", "waste", "collection_rate_pct", "observations"]
PRODUCT_COLLECTION_COLUMNS = [
    "product_key", "product_name", "year", "geo", "collection_rate_pct", "category_count", "data_source",
]


def _empty(columns: List[str]) -> pd.DataFrame:
    return pd.DataFrame({column: pd.Series(dtype=object) for column in columns})


def category_collection_rates(
    raw: pd.DataFrame,
    operation_codes: Sequence[str] = DEFAULT_OPERATION_CODES,
    unit_codes: Sequence[str] = DEFAULT_UNIT_CODES,
) -> pd.DataFrame:
    """
    Average collection rate per (geo, waste category).

    Args:
        raw: Table with geo, waste, wst_oper, unit, value
        operation_codes: Recognized waste operation codes
        unit_codes: Recognized unit codes

    Returns:
        DataFrame with CATEGORY_COLLECTION_COLUMNS
    """
    if raw.empty:
        return _empty(CATEGORY_COLLECTION_COLUMNS)

    rows = raw[
        raw["wst_oper"].astype(str).str.strip().isin(operation_codes)
        & raw["unit"].astype(str).str.strip().isin(unit_codes)
    ].copy()
    if rows.empty:
        logger.warning(f"No collection rows with operation in {list(operation_codes)} and unit in {list(unit_codes)}")
        return _empty(CATEGORY_COLLECTION_COLUMNS)

    rows["collection_rate_pct"] = coerce_series(rows["value"])["number"]
    rows = rows.dropna(subset=["collection_rate_pct"])
    if rows.empty:
        return _empty(CATEGORY_COLLECTION_COLUMNS)

    rows["geo"] = harmonize_series(rows["geo"], SourceSystem.COMEXT)
    rows["waste"] = rows["waste"].astype(str).str.strip()
    rates = rows.groupby(["geo", "waste"]).agg(
        collection_rate_pct=("collection_rate_pct", "mean"),
        observations=("collection_rate_pct", "size"),
    ).reset_index()
    return rates[CATEGORY_COLLECTION_COLUMNS].sort_values(["geo", "waste"]).reset_index(drop=True)


def product_collection_rates(
    category_rates: pd.DataFrame,
    catalog: ProductCatalog,
    year: int,
) -> pd.DataFrame:
    """
    Average category collection rates per (product, geo).

    Each product's rate is the plain mean over the waste categories it is
    mapped to that have a value for that geo.

    Returns:
        DataFrame with PRODUCT_COLLECTION_COLUMNS
    """
    mapping = pd.DataFrame(
        [
            {"product_key": product.key, "product_name": product.name, "waste": code}
            for product in catalog.sorted_products()
            for code in product.waste_codes
        ],
        columns=["product_key", "product_name", "waste"],
    )
    if category_rates.empty or mapping.empty:
        logger.warning(f"No collection rates available for {year}")
        return _empty(PRODUCT_COLLECTION_COLUMNS)

    expanded = category_rates.merge(mapping, on="waste", how="inner")
    if expanded.empty:
        logger.warning(f"No collection statistics match the product waste codes for {year}")
        return _empty(PRODUCT_COLLECTION_COLUMNS)

    rates = expanded.groupby(["product_key", "product_name", "geo"]).agg(
        collection_rate_pct=("collection_rate_pct", "mean"),
        category_count=("waste", "nunique"),
    ).reset_index()
    rates["year"] = year
    rates["data_source"] = DATA_SOURCE
    return rates[PRODUCT_COLLECTION_COLUMNS].sort_values(["product_key", "geo"]).reset_index(drop=True)
