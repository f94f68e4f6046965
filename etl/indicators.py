# WORKFLOW: Circularity indicators, aggregates and unit values from harmonized production/trade.
# Used by: Pipeline orchestrator (indicator, aggregate and unit value steps), strategy indicators
# Functions:
# 1. build_circularity_indicators() - Apparent consumption, configured rates, savings and quality flags
# 2. build_country_aggregates() - Totals per country across products
# 3. build_product_aggregates() - Totals per product across countries
# 4. build_unit_values() - EUR per tonne for production, imports and exports
#
# Apparent consumption = production + imports - exports
# Savings = apparent consumption * (potential rate - current rate) / 100
# Aggregates only sum country-level rows; EU aggregate rows would be counted twice otherwise.

"""
Circularity indicators, aggregates and unit values.
"""

import logging

import numpy as np
import pandas as pd

from core.catalog import ProductCatalog
from etl.production_trade import KEY_COLUMNS, TRADE_FIELDS
from etl.validators import quality_flags

logger = logging.getLogger(__name__)

VOLUME_VALUE_FIELDS = ["production_volume_tonnes", "production_value_eur"] + TRADE_FIELDS

INDICATOR_COLUMNS = KEY_COLUMNS + ["product_name", "level"] + VOLUME_VALUE_FIELDS + [
    "apparent_consumption_tonnes",
    "apparent_consumption_value_eur",
    "current_circularity_rate_pct",
    "potential_circularity_rate_pct",
    "estimated_material_savings_tonnes",
    "estimated_monetary_savings_eur",
    "flag_negative_consumption",
    "flag_unrealistic_trade",
]

TOTAL_FIELDS = {
    "total_production_tonnes": "production_volume_tonnes",
    "total_production_value_eur": "production_value_eur",
    "total_import_tonnes": "import_volume_tonnes",
    "total_import_value_eur": "import_value_eur",
    "total_export_tonnes": "export_volume_tonnes",
    "total_export_value_eur": "export_value_eur",
    "total_apparent_consumption_tonnes": "apparent_consumption_tonnes",
    "total_apparent_consumption_value_eur": "apparent_consumption_value_eur",
    "total_material_savings_tonnes": "estimated_material_savings_tonnes",
    "total_monetary_savings_eur": "estimated_monetary_savings_eur",
}

COUNTRY_AGGREGATE_COLUMNS = ["year", "geo", "product_count"] + list(TOTAL_FIELDS)
PRODUCT_AGGREGATE_COLUMNS = ["year", "product_key", "product_code", "product_name", "country_count"] + list(TOTAL_FIELDS)

UNIT_VALUE_FIELDS = {
    "production_unit_value_eur_per_tonne": ("production_value_eur", "production_volume_tonnes"),
    "import_unit_value_eur_per_tonne": ("import_value_eur", "import_volume_tonnes"),
    "export_unit_value_eur_per_tonne": ("export_value_eur", "export_volume_tonnes"),
}
UNIT_VALUE_COLUMNS = KEY_COLUMNS + ["product_name", "level"] + list(UNIT_VALUE_FIELDS)


def build_circularity_indicators(
    production_trade: pd.DataFrame,
    catalog: ProductCatalog,
    year: int,
    trade_ratio_threshold: float = 10.0,
) -> pd.DataFrame:
    """
    Build the main circularity indicator table for one year.

    Args:
        production_trade: Output of apply_trade_fallback()
        catalog: Product catalog holding the configured rates
        year: Year being processed
        trade_ratio_threshold: Exports above this multiple of (production + imports) are flagged

    Returns:
        DataFrame with INDICATOR_COLUMNS
    """
    if production_trade.empty:
        logger.warning(f"No production or trade rows for {year}; circularity indicators are empty")
        return pd.DataFrame({column: pd.Series(dtype=object) for column in INDICATOR_COLUMNS})

    indicators = production_trade.copy()
    indicators["apparent_consumption_tonnes"] = (
        indicators["production_volume_tonnes"]
        + indicators["import_volume_tonnes"]
        - indicators["export_volume_tonnes"]
    )
    indicators["apparent_consumption_value_eur"] = (
        indicators["production_value_eur"]
        + indicators["import_value_eur"]
        - indicators["export_value_eur"]
    )

    rates = catalog.rate_parameters()[
        ["product_key", "current_circularity_rate_pct", "potential_circularity_rate_pct"]
    ]
    indicators = indicators.merge(rates, on="product_key", how="left")

    gap = (indicators["potential_circularity_rate_pct"] - indicators["current_circularity_rate_pct"]) / 100.0
    indicators["estimated_material_savings_tonnes"] = indicators["apparent_consumption_tonnes"] * gap
    indicators["estimated_monetary_savings_eur"] = indicators["apparent_consumption_value_eur"] * gap

    flags = quality_flags(indicators, trade_ratio_threshold)
    indicators = indicators.join(flags)

    flagged = int(flags.any(axis=1).sum())
    if flagged:
        logger.warning(f"{flagged} indicator rows for {year} carry data-quality flags")
    logger.info(f"Built {len(indicators)} circularity indicator rows for {year}")
    return indicators[INDICATOR_COLUMNS].sort_values(KEY_COLUMNS).reset_index(drop=True)


def _totals(indicators: pd.DataFrame, keys: list) -> pd.DataFrame:
    return indicators.groupby(keys).agg(
        **{total: (field, "sum") for total, field in TOTAL_FIELDS.items()}
    )


def build_country_aggregates(indicators: pd.DataFrame, year: int) -> pd.DataFrame:
    countries = indicators[indicators["level"] == "country"] if not indicators.empty else indicators
    if countries.empty:
        return pd.DataFrame({column: pd.Series(dtype=object) for column in COUNTRY_AGGREGATE_COLUMNS})

    totals = _totals(countries, ["geo"])
    totals["product_count"] = countries.groupby("geo")["product_key"].nunique()
    totals = totals.reset_index().assign(year=year)
    return totals[COUNTRY_AGGREGATE_COLUMNS].sort_values("geo").reset_index(drop=True)


def build_product_aggregates(indicators: pd.DataFrame, year: int) -> pd.DataFrame:
    countries = indicators[indicators["level"] == "country"] if not indicators.empty else indicators
    if countries.empty:
        return pd.DataFrame({column: pd.Series(dtype=object) for column in PRODUCT_AGGREGATE_COLUMNS})

    keys = ["product_key", "product_code", "product_name"]
    totals = _totals(countries, keys)
    totals["country_count"] = countries.groupby(keys)["geo"].nunique()
    totals = totals.reset_index().assign(year=year)
    return totals[PRODUCT_AGGREGATE_COLUMNS].sort_values(["product_key", "product_code"]).reset_index(drop=True)


def build_unit_values(production_trade: pd.DataFrame) -> pd.DataFrame:
    """
    Unit values in EUR per tonne.

    A unit value is missing when its volume is zero or missing.
    """
    if production_trade.empty:
        return pd.DataFrame({column: pd.Series(dtype=object) for column in UNIT_VALUE_COLUMNS})

    unit_values = production_trade[KEY_COLUMNS + ["product_name", "level"]].copy()
    for target, (value, volume) in UNIT_VALUE_FIELDS.items():
        volumes = production_trade[volume].where(production_trade[volume] > 0, np.nan)
        unit_values[target] = production_trade[value] / volumes
    return unit_values[UNIT_VALUE_COLUMNS].sort_values(KEY_COLUMNS).reset_index(drop=True)
