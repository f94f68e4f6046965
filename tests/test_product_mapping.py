# WORKFLOW: Tests for the product code epoch mapper.
# Test scenarios:
# 1. Exactly one epoch per product and year; none outside every range
# 2. Mapping table has one row per (product, epoch, PRODCOM code)
# 3. HS expansion by normalized prefix, fan-out to several products, epoch filtering
# 4. Unmatched HS code 8418.69 is logged and excluded
# 5. A product with several active codes takes each trade row once

import copy
import logging

import pandas as pd

from core.catalog import parse_product_catalog
from etl.product_mapping import (
    active_product_codes,
    build_mapping_table,
    expand_trade_codes,
    normalize_code,
)

from conftest import CATALOG_CONFIG


def test_normalize_code():
    assert normalize_code("8418.69") == "841869"
    assert normalize_code(" 27.51.11.10 ") == "27511110"
    assert normalize_code(None) == ""


def test_active_codes_follow_epochs(catalog):
    codes_2006 = {(c.product_key, c.prodcom_code) for c in active_product_codes(catalog, 2006)}
    codes_2009 = {(c.product_key, c.prodcom_code) for c in active_product_codes(catalog, 2009)}
    assert codes_2006 == {("fridges", "29.71.11.10")}
    assert codes_2009 == {("fridges", "27.51.11.10"), ("laptops", "26.20.11.00")}
    assert active_product_codes(catalog, 1990) == []


def test_at_most_one_epoch_per_product_and_year(catalog):
    for year in range(1990, 2031):
        active = active_product_codes(catalog, year)
        epochs_per_product = {}
        for code in active:
            epochs_per_product.setdefault(code.product_key, set()).add(code.epoch)
        assert all(len(epochs) == 1 for epochs in epochs_per_product.values())


def test_mapping_table(catalog):
    mapping = build_mapping_table(catalog)
    assert len(mapping) == 3
    fridge_rows = mapping[mapping["product_key"] == "fridges"]
    assert fridge_rows["prodcom_code"].tolist() == ["29.71.11.10", "27.51.11.10"]
    assert fridge_rows["end_year"].isna().tolist() == [False, True]
    assert fridge_rows["hs_codes"].iloc[0] == "8418.10"


def test_expand_trade_codes_by_prefix(catalog):
    mapping = build_mapping_table(catalog)
    trade = pd.DataFrame({"hs_code": ["84181020", "847130"], "geo": ["DE", "FR"], "value": [1.0, 2.0]})
    expanded = expand_trade_codes(trade, mapping, 2009)
    assert set(zip(expanded["product_key"], expanded["product_code"])) == {
        ("fridges", "27.51.11.10"),
        ("laptops", "26.20.11.00"),
    }
    assert expanded["product_code"].notna().all()


def test_expand_trade_codes_respects_epoch_range(catalog):
    mapping = build_mapping_table(catalog)
    trade = pd.DataFrame({"hs_code": ["841810"], "geo": ["DE"], "value": [1.0]})
    expanded = expand_trade_codes(trade, mapping, 2005)
    # Only the code of the epoch covering 2005, never both epochs
    assert expanded["product_code"].tolist() == ["29.71.11.10"]


def test_expand_trade_codes_fans_out_to_shared_hs_codes(catalog):
    mapping = build_mapping_table(catalog)
    extra = mapping[mapping["product_key"] == "laptops"].assign(
        product_key="tablets", product_name="Tablets", prodcom_code="26.20.11.99"
    )
    mapping = pd.concat([mapping, extra], ignore_index=True)
    trade = pd.DataFrame({"hs_code": ["8471.30.00"], "geo": ["DE"], "value": [3.0]})
    expanded = expand_trade_codes(trade, mapping, 2010)
    assert sorted(expanded["product_key"]) == ["laptops", "tablets"]
    assert expanded["value"].tolist() == [3.0, 3.0]


def test_unmatched_hs_code_is_excluded_with_warning(catalog, caplog):
    caplog.set_level(logging.WARNING, logger="etl.product_mapping")
    mapping = build_mapping_table(catalog)
    trade = pd.DataFrame({"hs_code": ["8418.69", "8418.10"], "geo": ["DE", "DE"], "value": [5.0, 1.0]})
    expanded = expand_trade_codes(trade, mapping, 2010)
    assert len(expanded) == 1
    assert expanded["product_key"].tolist() == ["fridges"]
    assert "841869" in caplog.text


def test_expand_empty_trade(catalog):
    mapping = build_mapping_table(catalog)
    expanded = expand_trade_codes(pd.DataFrame({"hs_code": [], "geo": []}), mapping, 2010)
    assert expanded.empty
    assert "product_key" in expanded.columns


def test_expand_trade_codes_once_per_product():
    config = copy.deepcopy(CATALOG_CONFIG)
    config["products"]["fridges"]["prodcom_codes"]["nace_rev2"] = ["27.51.11.20", "27.51.11.10"]
    mapping = build_mapping_table(parse_product_catalog(config))
    trade = pd.DataFrame({"hs_code": ["84181000"], "geo": ["DE"], "value": [20.0]})
    expanded = expand_trade_codes(trade, mapping, 2010)
    assert expanded["product_code"].tolist() == ["27.51.11.10"]
    assert expanded["value"].sum() == 20.0
