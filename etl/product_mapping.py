# WORKFLOW: Product code epoch mapping between PRODCOM and HS/CN trade codes.
# Used by: Production harmonization, trade harmonization, pipeline step 1 (mapping table)
# Functions:
# 1. normalize_code() - Strip punctuation so "8418.69" and "841869" compare equal
# 2. active_product_codes() - PRODCOM codes valid for each product in a given year
# 3. build_mapping_table() - One row per (product, epoch, PRODCOM code) with its HS codes
# 4. expand_trade_codes() - Attach products to trade rows by HS code, respecting epoch ranges
#
# The PRODCOM nomenclature changed at a known cutover year, so the code list that applies
# to a product depends on the year being processed.

"""
Product code epoch mapping between PRODCOM and HS/CN trade codes.
"""

import logging
import re
from typing import List, NamedTuple, Tuple

import pandas as pd

from core.catalog import ProductCatalog

logger = logging.getLogger(__name__)

MAPPING_COLUMNS = [
    "product_id", "product_key", "product_name", "epoch", "start_year", "end_year",
    "prodcom_code", "hs_codes",
]


class ActiveProductCode(NamedTuple):
    product_key: str
    product_name: str
    epoch: str
    prodcom_code: str
    hs_codes: Tuple[str, ...]


def normalize_code(code) -> str:
    """Strip punctuation and whitespace from a classification code."""
    if code is None:
        return ""
    return re.sub(r"[^0-9A-Za-z]", "", str(code)).upper()


def active_product_codes(catalog: ProductCatalog, year: int) -> List[ActiveProductCode]:
    """
    Resolve the PRODCOM codes that apply to each product in ``year``.

    Products without an epoch covering the year contribute nothing.

    Args:
        catalog: Validated product catalog
        year: Year being processed

    Returns:
        List of ActiveProductCode, ordered by product id then code
    """
    active = []
    for product in catalog.sorted_products():
        epoch = catalog.active_epoch(product, year)
        if epoch is None:
            logger.debug(f"Product {product.key} has no nomenclature epoch covering {year}")
            continue
        for code in product.prodcom_codes[epoch.name]:
            active.append(ActiveProductCode(
                product_key=product.key,
                product_name=product.name,
                epoch=epoch.name,
                prodcom_code=code,
                hs_codes=tuple(product.hs_codes),
            ))
    return active


def build_mapping_table(catalog: ProductCatalog) -> pd.DataFrame:
    """
    Flatten the catalog into the product mapping table.

    Returns:
        DataFrame with MAPPING_COLUMNS; ``hs_codes`` is comma separated and
        ``end_year`` is empty for open-ended epochs
    """
    rows = []
    for product in catalog.sorted_products():
        for epoch_name, codes in product.prodcom_codes.items():
            epoch = catalog.epochs[epoch_name]
            for code in codes:
                rows.append({
                    "product_id": product.id,
                    "product_key": product.key,
                    "product_name": product.name,
                    "epoch": epoch.name,
                    "start_year": epoch.start_year,
                    "end_year": epoch.end_year,
                    "prodcom_code": code,
                    "hs_codes": ",".join(product.hs_codes),
                })

    mapping = pd.DataFrame(rows, columns=MAPPING_COLUMNS)
    mapping["end_year"] = mapping["end_year"].astype("Int64")
    return mapping.sort_values(["product_id", "start_year", "prodcom_code"]).reset_index(drop=True)


def _hs_candidates(mapping: pd.DataFrame, year: int) -> pd.DataFrame:
    """Explode mapping rows into one row per HS code, keeping epochs that cover ``year``."""
    in_range = (mapping["start_year"] <= year) & (
        mapping["end_year"].isna() | (mapping["end_year"].fillna(year) >= year)
    )
    candidates = mapping.loc[in_range, ["product_key", "product_name", "prodcom_code", "hs_codes"]].copy()
    candidates["hs_code_mapped"] = candidates["hs_codes"].str.split(",")
    candidates = candidates.explode("hs_code_mapped")
    candidates["hs_norm"] = candidates["hs_code_mapped"].map(normalize_code)
    candidates = candidates[candidates["hs_norm"] != ""]
    return candidates.drop(columns=["hs_codes"]).drop_duplicates()


def expand_trade_codes(trade: pd.DataFrame, mapping: pd.DataFrame, year: int) -> pd.DataFrame:
    """
    Attach products to trade rows by HS code.

    A trade code matches a mapping HS code when the normalized mapping code is
    contained at the start of the normalized trade code (so CN8 "84186900"
    matches HS6 "8418.69"). Only epochs covering ``year`` are considered, so a
    trade row is never joined to a PRODCOM code of another epoch. One trade row
    fans out to every matching product; unmatched rows are excluded with a warning.

    HS codes are declared per product, not per PRODCOM code, so a product with
    several active codes takes each trade row once, on its lowest code. Summing
    over a product's codes then counts its trade exactly once.

    Args:
        trade: Trade rows with an ``hs_code`` column
        mapping: Product mapping table from build_mapping_table()
        year: Trade year

    Returns:
        Trade rows with product_key, product_name and product_code (PRODCOM) columns
    """
    out_columns = ["product_key", "product_name", "product_code"] + [
        c for c in trade.columns if c not in ("product_key", "product_name", "product_code")
    ]
    if trade.empty:
        return pd.DataFrame(columns=out_columns)

    candidates = _hs_candidates(mapping, year)
    trade = trade.copy()
    trade["hs_norm"] = trade["hs_code"].map(normalize_code)

    links = []
    unmatched = []
    for traded in sorted(trade["hs_norm"].unique()):
        matches = candidates[[traded.startswith(mapped) for mapped in candidates["hs_norm"]]] if traded else candidates.iloc[0:0]
        if matches.empty:
            unmatched.append(traded)
            continue
        matches = matches.sort_values(["product_key", "prodcom_code"]).drop_duplicates("product_key")
        for _, match in matches.iterrows():
            links.append({
                "hs_norm": traded,
                "product_key": match["product_key"],
                "product_name": match["product_name"],
                "product_code": match["prodcom_code"],
            })

    for code in unmatched:
        row_count = int((trade["hs_norm"] == code).sum())
        logger.warning(f"No product mapping for HS code {code} in {year}; excluding {row_count} trade rows")

    if not links:
        return pd.DataFrame(columns=out_columns)

    link_df = pd.DataFrame(links).drop_duplicates()
    expanded = trade.merge(link_df, on="hs_norm", how="inner").drop(columns=["hs_norm"])
    logger.info(f"Expanded {len(trade)} trade rows into {len(expanded)} product rows for {year}")
    return expanded[out_columns]
