# WORKFLOW: Harmonization, merge and fallback of production (PRODCOM) and trade (COMEXT) data.
# Used by: Pipeline orchestrator (production, trade and merge steps)
# Functions:
# 1. harmonize_production() - Long PRODCOM rows -> one row per (product code, geo) in tonnes and EUR
# 2. harmonize_trade() - Long COMEXT rows -> import/export totals per (product code, geo)
# 3. merge_production_trade() - Full outer join; additive fields coalesce to zero
# 4. apply_trade_fallback() - Per-field substitution of zero COMEXT values by PRODCOM trade figures
#
# Flow: raw tables -> coerce text values -> pivot indicators -> convert units -> harmonize geo
#       -> map product codes -> merge -> fallback -> production_trade_{year}
# PRODCOM also reports imports and exports; those are carried as prodcom_* columns and only
# used where COMEXT has nothing for the same product and country.

"""
Harmonization, merge and fallback of production and trade data.
"""

import logging
from typing import Dict, List

import numpy as np
import pandas as pd

from core.catalog import ProductCatalog
from etl.coercion import ValueKind, coerce_series
from etl.country_codes import SourceSystem, geo_level, harmonize_series
from etl.product_mapping import active_product_codes, expand_trade_codes, normalize_code
from etl.unit_converter import apply_piece_weights, convert_series

logger = logging.getLogger(__name__)

KEY_COLUMNS = ["product_key", "product_code", "geo", "year"]

TRADE_FIELDS = ["import_volume_tonnes", "import_value_eur", "export_volume_tonnes", "export_value_eur"]
SECONDARY_FIELDS = {field: f"prodcom_{field}" for field in TRADE_FIELDS}

PRODUCTION_COLUMNS = KEY_COLUMNS + [
    "product_name", "unit_code", "quantity_convertible",
    "production_volume_tonnes", "production_value_eur",
] + list(SECONDARY_FIELDS.values())

TRADE_COLUMNS = KEY_COLUMNS + ["product_name"] + TRADE_FIELDS

ADDITIVE_FIELDS = ["production_volume_tonnes", "production_value_eur"] + TRADE_FIELDS + list(SECONDARY_FIELDS.values())

MERGED_COLUMNS = KEY_COLUMNS + ["product_name", "level"] + ADDITIVE_FIELDS

PRODUCTION_TRADE_COLUMNS = KEY_COLUMNS + [
    "product_name", "level",
    "production_volume_tonnes", "production_value_eur",
] + TRADE_FIELDS + [f"{field}_source" for field in TRADE_FIELDS]

# PRODCOM indicator -> harmonized field; *_quantity fields are converted to tonnes afterwards
PRODCOM_INDICATORS: Dict[str, str] = {
    "PRODQNT": "production_quantity",
    "PRODVAL": "production_value_eur",
    "IMPQNT": "import_quantity",
    "IMPVAL": "prodcom_import_value_eur",
    "EXPQNT": "export_quantity",
    "EXPVAL": "prodcom_export_value_eur",
}
UNIT_INDICATOR = "QNTUNIT"

TRADE_FLOWS = {"1": "import", "IMPORT": "import", "2": "export", "EXPORT": "export"}
TRADE_INDICATORS = {"QUANTITY_KG": "volume_kg", "VALUE_EUR": "value_eur"}

SOURCE_PRIMARY = "comext"
SOURCE_SECONDARY = "prodcom"
SOURCE_NONE = "none"


def _empty(columns: List[str]) -> pd.DataFrame:
    return pd.DataFrame({column: pd.Series(dtype=object) for column in columns})


def _active_codes_frame(catalog: ProductCatalog, year: int) -> pd.DataFrame:
    rows = [
        {
            "code_norm": normalize_code(code.prodcom_code),
            "product_key": code.product_key,
            "product_name": code.product_name,
            "product_code": code.prodcom_code,
        }
        for code in active_product_codes(catalog, year)
    ]
    return pd.DataFrame(rows, columns=["code_norm", "product_key", "product_name", "product_code"])


def _log_unparseable(coerced: pd.DataFrame, source: str, year: int) -> None:
    unparseable = int((coerced["kind"] == ValueKind.UNPARSEABLE.value).sum())
    if unparseable:
        logger.warning(f"{unparseable} {source} values for {year} could not be parsed as numbers")


def harmonize_production(raw: pd.DataFrame, catalog: ProductCatalog, year: int) -> pd.DataFrame:
    """
    Harmonize raw PRODCOM rows for one year.

    Only PRODCOM codes of the epoch active in ``year`` are kept, so a year
    covered by one epoch never picks up rows reported under another epoch's codes.

    Args:
        raw: Long table with prccode, decl, indicators, value
        catalog: Product catalog
        year: Year being processed

    Returns:
        DataFrame with PRODUCTION_COLUMNS, one row per (product code, geo)
    """
    if raw.empty:
        logger.warning(f"No production rows for {year}")
        return _empty(PRODUCTION_COLUMNS)

    active = _active_codes_frame(catalog, year)
    rows = raw.copy()
    rows["code_norm"] = rows["prccode"].map(normalize_code)
    rows = rows.merge(active, on="code_norm", how="inner")
    if rows.empty:
        logger.info(f"No production rows match the active product codes for {year}")
        return _empty(PRODUCTION_COLUMNS)

    rows["geo"] = harmonize_series(rows["decl"], SourceSystem.PRODCOM)
    rows["indicators"] = rows["indicators"].astype(str).str.strip().str.upper()
    group_keys = ["product_key", "product_code", "product_name", "geo"]

    duplicated = rows.duplicated(subset=group_keys + ["indicators"], keep=False)
    if duplicated.any():
        logger.warning(
            f"{int(duplicated.sum())} production rows for {year} share a (product, geo, indicator) key; "
            f"their values are summed"
        )

    units = (
        rows[rows["indicators"] == UNIT_INDICATOR]
        .groupby(group_keys, as_index=False)["value"]
        .first()
        .rename(columns={"value": "unit_code"})
    )

    numeric = rows[rows["indicators"].isin(PRODCOM_INDICATORS.keys())].copy()
    coerced = coerce_series(numeric["value"])
    _log_unparseable(coerced, "production", year)
    numeric["number"] = coerced["number"]
    numeric["field"] = numeric["indicators"].map(PRODCOM_INDICATORS)

    wide = rows[group_keys].drop_duplicates()
    if not numeric.empty:
        values = (
            numeric.groupby(group_keys + ["field"])["number"]
            .sum(min_count=1)
            .unstack("field")
            .reset_index()
        )
        wide = wide.merge(values, on=group_keys, how="left")
    wide = wide.merge(units, on=group_keys, how="left")
    wide = wide.reindex(columns=group_keys + list(PRODCOM_INDICATORS.values()) + ["unit_code"])

    weights = catalog.piece_weights_kg()
    converted = {}
    for quantity, target in (
        ("production_quantity", "production_volume_tonnes"),
        ("import_quantity", "prodcom_import_volume_tonnes"),
        ("export_quantity", "prodcom_export_volume_tonnes"),
    ):
        tonnes, _ = convert_series(wide[quantity], wide["unit_code"])
        converted[target] = apply_piece_weights(
            tonnes, wide[quantity], wide["unit_code"], wide["product_key"], weights
        )

    production_quantity = pd.to_numeric(wide["production_quantity"], errors="coerce")
    convertible = ~(production_quantity.notna() & converted["production_volume_tonnes"].isna())
    if (~convertible).any():
        logger.warning(
            f"{int((~convertible).sum())} production quantities for {year} use units without a mass equivalent"
        )

    result = wide.assign(year=year, quantity_convertible=convertible.astype(bool), **converted)
    result = result[PRODUCTION_COLUMNS]
    logger.info(f"Harmonized {len(result)} production rows for {year}")
    return result.sort_values(KEY_COLUMNS).reset_index(drop=True)


def harmonize_trade(raw: pd.DataFrame, mapping: pd.DataFrame, year: int) -> pd.DataFrame:
    """
    Harmonize raw COMEXT rows for one year.

    Args:
        raw: Long table with product (HS/CN code), reporter, flow, indicators, value
        mapping: Product mapping table
        year: Trade year

    Returns:
        DataFrame with TRADE_COLUMNS, one row per (product code, geo)
    """
    if raw.empty:
        logger.warning(f"No trade rows for {year}")
        return _empty(TRADE_COLUMNS)

    rows = raw.copy()
    rows["flow"] = rows["flow"].astype(str).str.strip().str.upper().map(TRADE_FLOWS)
    rows["measure"] = rows["indicators"].astype(str).str.strip().str.upper().map(TRADE_INDICATORS)
    skipped = int((rows["flow"].isna() | rows["measure"].isna()).sum())
    if skipped:
        logger.debug(f"Skipping {skipped} trade rows with unrecognized flow or indicator for {year}")
    rows = rows.dropna(subset=["flow", "measure"])
    if rows.empty:
        return _empty(TRADE_COLUMNS)

    coerced = coerce_series(rows["value"])
    _log_unparseable(coerced, "trade", year)
    rows["number"] = coerced["number"]
    rows["geo"] = harmonize_series(rows["reporter"], SourceSystem.COMEXT)
    rows["hs_code"] = rows["product"].astype(str).str.strip()
    rows["field"] = rows["flow"] + "_" + rows["measure"]

    wide = (
        rows.groupby(["hs_code", "geo", "field"])["number"]
        .sum(min_count=1)
        .unstack("field")
        .reindex(columns=["import_volume_kg", "import_value_eur", "export_volume_kg", "export_value_eur"])
        .reset_index()
    )

    for flow in ("import", "export"):
        tonnes, _ = convert_series(wide[f"{flow}_volume_kg"], pd.Series("kg", index=wide.index))
        wide[f"{flow}_volume_tonnes"] = tonnes

    expanded = expand_trade_codes(wide[["hs_code", "geo"] + TRADE_FIELDS], mapping, year)
    if expanded.empty:
        return _empty(TRADE_COLUMNS)

    trade = (
        expanded.groupby(["product_key", "product_code", "product_name", "geo"], as_index=False)[TRADE_FIELDS]
        .sum(min_count=1)
    )
    trade["year"] = year
    trade = trade[TRADE_COLUMNS]
    logger.info(f"Harmonized {len(trade)} trade rows for {year}")
    return trade.sort_values(KEY_COLUMNS).reset_index(drop=True)


def merge_production_trade(production: pd.DataFrame, trade: pd.DataFrame) -> pd.DataFrame:
    """
    Full outer join of harmonized production and trade.

    Rows present on only one side are kept with the other side's additive
    fields set to zero. Either input may be empty.

    Returns:
        DataFrame with MERGED_COLUMNS
    """
    production_part = production.reindex(
        columns=KEY_COLUMNS + ["product_name", "production_volume_tonnes", "production_value_eur"]
        + list(SECONDARY_FIELDS.values())
    )
    trade_part = trade.reindex(columns=KEY_COLUMNS + ["product_name"] + TRADE_FIELDS)

    for frame in (production_part, trade_part):
        frame["year"] = frame["year"].astype("int64")

    merged = production_part.merge(
        trade_part, on=KEY_COLUMNS, how="outer", suffixes=("", "_trade")
    )
    merged["product_name"] = merged["product_name"].fillna(merged.pop("product_name_trade"))

    for field in ADDITIVE_FIELDS:
        merged[field] = pd.to_numeric(merged[field], errors="coerce").astype(float).fillna(0.0)

    merged["level"] = merged["geo"].map(geo_level)
    merged = merged[MERGED_COLUMNS]
    logger.info(
        f"Merged {len(production)} production and {len(trade)} trade rows into {len(merged)} rows"
    )
    return merged.sort_values(KEY_COLUMNS).reset_index(drop=True)


def apply_trade_fallback(merged: pd.DataFrame) -> pd.DataFrame:
    """
    Substitute zero COMEXT trade fields by positive PRODCOM trade figures.

    Each trade field is handled independently and a non-zero COMEXT value is
    never overwritten. Every field gets a ``<field>_source`` column telling
    where the final value came from ("comext", "prodcom" or "none").

    Args:
        merged: Output of merge_production_trade()

    Returns:
        DataFrame with PRODUCTION_TRADE_COLUMNS
    """
    result = merged.copy()
    for field, secondary in SECONDARY_FIELDS.items():
        primary_values = result[field]
        secondary_values = result[secondary]
        substitute = primary_values.eq(0) & secondary_values.gt(0)

        result[field] = primary_values.where(~substitute, secondary_values)
        result[f"{field}_source"] = np.select(
            [primary_values.ne(0), substitute],
            [SOURCE_PRIMARY, SOURCE_SECONDARY],
            default=SOURCE_NONE,
        )
        if substitute.any():
            logger.info(f"Filled {int(substitute.sum())} {field} values from PRODCOM trade figures")

    return result[PRODUCTION_TRADE_COLUMNS].reset_index(drop=True)
