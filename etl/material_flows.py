# WORKFLOW: Material composition and recovery rates from mass-balance flows.
# Used by: Pipeline orchestrator (material composition and recovery steps), strategy indicators
# Functions:
# 1. select_observed_flows() - Observed scenario rows for a year, prior-year fallback with warning
# 2. category_composition() - Material weight share per waste category
# 3. category_recovery_rates() - recovered / (recovered + lost) per category and material
# 4. product_composition() - Category composition expanded to products via waste codes
# 5. product_recovery_rates() - Mass-weighted product rates, plus one TOTAL row per product
#
# Flow: ump_weee_sankey -> observed scenario -> category level -> product level
# (product -> waste codes -> mass-balance categories, many-to-many)
# Every function returns a frame with its full column set even when it has no rows.
# Product tables carry source_year (the mass-balance year actually used) and data_source.

"""
Material composition and recovery rates from mass-balance flows.
"""

import logging
from typing import List, Sequence

import numpy as np
import pandas as pd

from core.catalog import ProductCatalog
from etl.country_codes import SourceSystem, harmonize_series

logger = logging.getLogger(__name__)

FLOW_COLUMNS = ["year", "location", "category", "material", "flow_id", "value_mg", "scenario"]
CATEGORY_KEYS = ["year", "source_year", "location", "category", "material"]

CATEGORY_COMPOSITION_COLUMNS = CATEGORY_KEYS + ["material_mass_mg", "weight_pct"]
CATEGORY_RECOVERY_COLUMNS = CATEGORY_KEYS + ["recovered_mg", "lost_mg", "recovery_rate_pct"]
PRODUCT_COMPOSITION_COLUMNS = [
    "product_key", "product_name", "year", "geo", "material", "material_mass_mg", "weight_pct",
    "source_year", "data_source",
]
PRODUCT_RECOVERY_COLUMNS = [
    "product_key", "product_name", "year", "geo", "material", "material_mass_mg", "recovery_rate_pct",
    "source_year", "data_source",
]
PRODUCT_KEYS = ["product_key", "product_name", "year", "source_year", "geo"]

TOTAL_MATERIAL = "TOTAL"
DATA_SOURCE = "ump_weee_sankey"

DEFAULT_SCENARIO_MARKER = "hist"
DEFAULT_COMPOSITION_FLOW = "F3_4"
DEFAULT_RECOVERY_FLOWS = ("F4_5", "F4_6")
DEFAULT_LOSS_FLOW = "F4_99"


def _empty(columns: List[str]) -> pd.DataFrame:
    return pd.DataFrame({column: pd.Series(dtype=object) for column in columns})


def _category_mapping(catalog: ProductCatalog) -> pd.DataFrame:
    rows = [
        {"product_key": product.key, "product_name": product.name, "category": category}
        for product in catalog.sorted_products()
        for category in catalog.mass_balance_categories(product)
    ]
    return pd.DataFrame(rows, columns=["product_key", "product_name", "category"])


def _weighted_mean(frame: pd.DataFrame, keys: List[str], value: str, weight: str) -> pd.Series:
    """Weighted mean of ``value`` per group, NaN when no row has both a value and a positive weight."""
    usable = frame[value].notna() & frame[weight].gt(0)
    work = pd.DataFrame({
        "weighted": (frame[value] * frame[weight]).where(usable, 0.0),
        "weight": frame[weight].where(usable, 0.0),
    })
    for key in keys:
        work[key] = frame[key]
    sums = work.groupby(keys)[["weighted", "weight"]].sum()
    return (sums["weighted"] / sums["weight"].replace(0.0, np.nan)).rename(value)


def select_observed_flows(
    flows: pd.DataFrame,
    year: int,
    scenario_marker: str = DEFAULT_SCENARIO_MARKER,
) -> pd.DataFrame:
    """
    Select observed (historical) flows for a year.

    When the year has no observed rows, the most recent earlier year with
    observed rows is used instead and its rows are re-tagged with ``year``.
    ``source_year`` records the year the values actually come from.

    Args:
        flows: Mass-balance flow table
        year: Year being processed
        scenario_marker: Case-insensitive substring identifying observed scenarios

    Returns:
        Observed rows with FLOW_COLUMNS plus source_year
    """
    columns = FLOW_COLUMNS + ["source_year"]
    if flows.empty:
        logger.warning(f"Mass-balance flow table is empty; no material flows for {year}")
        return _empty(columns)

    scenario = flows["scenario"].astype(str).str.lower()
    observed = flows[scenario.str.contains(scenario_marker.lower(), regex=False)].copy()
    observed["year"] = pd.to_numeric(observed["year"], errors="coerce")
    observed["value_mg"] = pd.to_numeric(observed["value_mg"], errors="coerce")

    selected = observed[observed["year"] == year]
    if not selected.empty:
        return selected.assign(year=year, source_year=year)[columns].reset_index(drop=True)

    prior = observed[observed["year"] < year]
    if prior.empty:
        logger.warning(f"No observed mass-balance flows for {year} or any earlier year")
        return _empty(columns)

    source_year = int(prior["year"].max())
    logger.warning(f"No observed mass-balance flows for {year}; using {source_year} instead")
    selected = prior[prior["year"] == source_year]
    return selected.assign(year=year, source_year=source_year)[columns].reset_index(drop=True)


def category_composition(
    flows: pd.DataFrame,
    composition_flow_id: str = DEFAULT_COMPOSITION_FLOW,
) -> pd.DataFrame:
    """
    Material weight share per (year, location, category).

    Returns:
        DataFrame with CATEGORY_COMPOSITION_COLUMNS; weight_pct is NaN when the
        category has no mass
    """
    composition = flows[flows["flow_id"] == composition_flow_id]
    if composition.empty:
        logger.warning(f"No composition flow ({composition_flow_id}) rows in mass-balance data")
        return _empty(CATEGORY_COMPOSITION_COLUMNS)

    masses = (
        composition.groupby(CATEGORY_KEYS, as_index=False)["value_mg"]
        .sum()
        .rename(columns={"value_mg": "material_mass_mg"})
    )
    totals = masses.groupby(["year", "location", "category"])["material_mass_mg"].transform("sum")
    masses["weight_pct"] = masses["material_mass_mg"] / totals.replace(0.0, np.nan) * 100.0
    return masses[CATEGORY_COMPOSITION_COLUMNS].sort_values(CATEGORY_KEYS).reset_index(drop=True)


def category_recovery_rates(
    flows: pd.DataFrame,
    recovery_flow_ids: Sequence[str] = DEFAULT_RECOVERY_FLOWS,
    loss_flow_id: str = DEFAULT_LOSS_FLOW,
) -> pd.DataFrame:
    """
    Recovery rate per (year, location, category, material).

    recovery_rate_pct = recovered / (recovered + lost) * 100, missing when
    nothing was either recovered or lost.

    Returns:
        DataFrame with CATEGORY_RECOVERY_COLUMNS
    """
    relevant = flows[flows["flow_id"].isin(list(recovery_flow_ids) + [loss_flow_id])].copy()
    if relevant.empty:
        logger.warning("No recovery or loss flow rows in mass-balance data")
        return _empty(CATEGORY_RECOVERY_COLUMNS)

    relevant["recovered_mg"] = relevant["value_mg"].where(relevant["flow_id"].isin(recovery_flow_ids), 0.0)
    relevant["lost_mg"] = relevant["value_mg"].where(relevant["flow_id"] == loss_flow_id, 0.0)
    rates = relevant.groupby(CATEGORY_KEYS, as_index=False)[["recovered_mg", "lost_mg"]].sum()

    denominator = rates["recovered_mg"] + rates["lost_mg"]
    rates["recovery_rate_pct"] = rates["recovered_mg"] / denominator.where(denominator != 0) * 100.0
    return rates[CATEGORY_RECOVERY_COLUMNS].sort_values(CATEGORY_KEYS).reset_index(drop=True)


def product_composition(composition: pd.DataFrame, catalog: ProductCatalog) -> pd.DataFrame:
    """
    Expand category composition to products.

    A product mapped to several categories sums each material's mass across
    them; weight_pct is that material's share of the product's total mass.
    source_year is kept from the category rows, so a year filled from an
    earlier year's flows stays distinguishable from observed data.

    Returns:
        DataFrame with PRODUCT_COMPOSITION_COLUMNS
    """
    mapping = _category_mapping(catalog)
    if composition.empty or mapping.empty:
        return _empty(PRODUCT_COMPOSITION_COLUMNS)

    expanded = composition.merge(mapping, on="category", how="inner")
    if expanded.empty:
        logger.warning("No mass-balance category matches the product waste codes")
        return _empty(PRODUCT_COMPOSITION_COLUMNS)

    expanded["geo"] = harmonize_series(expanded["location"], SourceSystem.COMEXT)
    keys = PRODUCT_KEYS + ["material"]
    masses = expanded.groupby(keys, as_index=False)["material_mass_mg"].sum()
    totals = masses.groupby(PRODUCT_KEYS)["material_mass_mg"].transform("sum")
    masses["weight_pct"] = masses["material_mass_mg"] / totals.replace(0.0, np.nan) * 100.0
    masses["data_source"] = DATA_SOURCE
    return masses[PRODUCT_COMPOSITION_COLUMNS].sort_values(keys).reset_index(drop=True)


def product_recovery_rates(
    composition: pd.DataFrame,
    recovery: pd.DataFrame,
    catalog: ProductCatalog,
) -> pd.DataFrame:
    """
    Expand category recovery rates to products.

    Material rates are weighted by the material's composition mass in each
    category (falling back to the mass that was recovered or lost when the
    category has no composition flow). One extra row per (product, geo) with
    material "TOTAL" holds the mass-weighted mean over its materials.

    Args:
        composition: Output of category_composition()
        recovery: Output of category_recovery_rates()
        catalog: Product catalog

    Returns:
        DataFrame with PRODUCT_RECOVERY_COLUMNS
    """
    mapping = _category_mapping(catalog)
    if recovery.empty or mapping.empty:
        return _empty(PRODUCT_RECOVERY_COLUMNS)

    rates = recovery.merge(
        composition[CATEGORY_KEYS + ["material_mass_mg"]], on=CATEGORY_KEYS, how="left"
    )
    rates["material_mass_mg"] = rates["material_mass_mg"].fillna(rates["recovered_mg"] + rates["lost_mg"])

    expanded = rates.merge(mapping, on="category", how="inner")
    if expanded.empty:
        logger.warning("No mass-balance category matches the product waste codes")
        return _empty(PRODUCT_RECOVERY_COLUMNS)

    expanded["geo"] = harmonize_series(expanded["location"], SourceSystem.COMEXT)
    keys = PRODUCT_KEYS + ["material"]

    per_material = expanded.groupby(keys)["material_mass_mg"].sum().to_frame()
    per_material["recovery_rate_pct"] = _weighted_mean(expanded, keys, "recovery_rate_pct", "material_mass_mg")
    per_material = per_material.reset_index()

    totals = per_material.groupby(PRODUCT_KEYS)["material_mass_mg"].sum().to_frame()
    totals["recovery_rate_pct"] = _weighted_mean(per_material, PRODUCT_KEYS, "recovery_rate_pct", "material_mass_mg")
    totals = totals.reset_index().assign(material=TOTAL_MATERIAL)

    result = pd.concat([per_material, totals[per_material.columns]], ignore_index=True)
    result["data_source"] = DATA_SOURCE
    return result[PRODUCT_RECOVERY_COLUMNS].sort_values(keys).reset_index(drop=True)
