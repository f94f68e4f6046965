# WORKFLOW: Tests for production/trade harmonization, merge and fallback.
# Test scenarios:
# 1. PRODCOM long rows pivot into tonnes/EUR with piece weights and harmonized geo codes
# 2. Codes of another epoch are ignored
# 3. COMEXT rows aggregate per flow and convert kg to tonnes
# 4. Merge keeps rows present on only one side with zero-filled fields
# 5. Fallback fills zero COMEXT fields from PRODCOM and never overwrites non-zero values
# 6. Duplicate PRODCOM rows for one key are summed with a warning

import logging

import numpy as np
import pandas as pd
import pytest

from etl.product_mapping import build_mapping_table
from etl.production_trade import (
    ADDITIVE_FIELDS,
    TRADE_FIELDS,
    TRADE_COLUMNS,
    apply_trade_fallback,
    harmonize_production,
    harmonize_trade,
    merge_production_trade,
)

from conftest import comext_rows, prodcom_rows


@pytest.fixture
def raw_production():
    rows = []
    rows += prodcom_rows(
        "27.51.11.10", "004",
        PRODQNT="1000", QNTUNIT="p/st", PRODVAL="500000", IMPQNT="10", IMPVAL="2000", EXPQNT="0", EXPVAL=":C",
    )
    rows += prodcom_rows("27511110", "001", PRODQNT="2000", QNTUNIT="kg", PRODVAL="9000")
    # Code of the previous nomenclature
    rows += prodcom_rows("29.71.11.10", "004", PRODQNT="999", QNTUNIT="p/st", PRODVAL="1")
    return pd.DataFrame(rows)


@pytest.fixture
def raw_trade():
    rows = []
    rows += comext_rows("84181000", "DE", "1", 20000, 30000)
    rows += comext_rows("84181000", "DE", "2", 5000, 8000)
    rows += comext_rows("84181090", "DE", "IMPORT", 1000, 1000)
    rows += comext_rows("84713000", "IT", "2", 300, 90000)
    return pd.DataFrame(rows)


def test_harmonize_production(raw_production, catalog):
    production = harmonize_production(raw_production, catalog, 2009)
    assert len(production) == 2

    de = production[production["geo"] == "DE"].iloc[0]
    assert de["product_key"] == "fridges"
    assert de["product_code"] == "27.51.11.10"
    assert de["production_volume_tonnes"] == pytest.approx(50.0)
    assert de["production_value_eur"] == pytest.approx(500000.0)
    assert de["prodcom_import_volume_tonnes"] == pytest.approx(0.5)
    assert de["prodcom_import_value_eur"] == pytest.approx(2000.0)
    assert np.isnan(de["prodcom_export_value_eur"])
    assert bool(de["quantity_convertible"])

    fr = production[production["geo"] == "FR"].iloc[0]
    assert fr["production_volume_tonnes"] == pytest.approx(2.0)


def test_harmonize_production_uses_epoch_codes(raw_production, catalog):
    production = harmonize_production(raw_production, catalog, 2006)
    assert production["product_code"].tolist() == ["29.71.11.10"]
    assert production["production_volume_tonnes"].iloc[0] == pytest.approx(999 * 50.0 / 1000.0)


def test_harmonize_production_without_active_codes(raw_production, catalog):
    # 2007 belongs to the first epoch; only second-epoch rows survive the filter
    rows = raw_production[raw_production["prccode"] != "29.71.11.10"]
    production = harmonize_production(rows, catalog, 2007)
    assert production.empty


def test_harmonize_trade(raw_trade, catalog):
    trade = harmonize_trade(raw_trade, build_mapping_table(catalog), 2009)
    assert list(trade.columns) == TRADE_COLUMNS

    fridges = trade[trade["product_key"] == "fridges"].iloc[0]
    assert fridges["geo"] == "DE"
    assert fridges["import_volume_tonnes"] == pytest.approx(21.0)
    assert fridges["import_value_eur"] == pytest.approx(31000.0)
    assert fridges["export_volume_tonnes"] == pytest.approx(5.0)
    assert fridges["export_value_eur"] == pytest.approx(8000.0)

    laptops = trade[trade["product_key"] == "laptops"].iloc[0]
    assert laptops["geo"] == "IT"
    assert laptops["export_volume_tonnes"] == pytest.approx(0.3)
    assert np.isnan(laptops["import_volume_tonnes"])


def test_merge_keeps_one_sided_rows(raw_production, raw_trade, catalog):
    production = harmonize_production(raw_production, catalog, 2009)
    trade = harmonize_trade(raw_trade, build_mapping_table(catalog), 2009)
    merged = merge_production_trade(production, trade)

    assert len(merged) == 3
    assert not merged[ADDITIVE_FIELDS].isna().any().any()

    fr = merged[merged["geo"] == "FR"].iloc[0]
    assert fr["import_volume_tonnes"] == 0.0
    assert fr["production_volume_tonnes"] == pytest.approx(2.0)

    it = merged[merged["geo"] == "IT"].iloc[0]
    assert it["product_name"] == "Laptops"
    assert it["production_volume_tonnes"] == 0.0
    assert it["level"] == "country"


def test_merge_with_one_side_absent(raw_production, catalog):
    production = harmonize_production(raw_production, catalog, 2009)
    empty_trade = harmonize_trade(pd.DataFrame(), build_mapping_table(catalog), 2009)

    merged = merge_production_trade(production, empty_trade)
    assert len(merged) == len(production)
    assert (merged[TRADE_FIELDS] == 0.0).all().all()

    merged_reverse = merge_production_trade(production.iloc[0:0], production.iloc[0:0])
    assert merged_reverse.empty


def _merged_row(**fields):
    row = {
        "product_key": "fridges", "product_code": "27.51.11.10", "geo": "DE", "year": 2009,
        "product_name": "Fridges", "level": "country",
    }
    row.update({field: 0.0 for field in ADDITIVE_FIELDS})
    row.update(fields)
    return row


def test_fallback_fills_zero_fields_only():
    merged = pd.DataFrame([
        _merged_row(import_volume_tonnes=0.0, prodcom_import_volume_tonnes=7.0,
                    export_value_eur=100.0, prodcom_export_value_eur=999.0),
    ])
    result = apply_trade_fallback(merged).iloc[0]

    assert result["import_volume_tonnes"] == 7.0
    assert result["import_volume_tonnes_source"] == "prodcom"
    assert result["export_value_eur"] == 100.0
    assert result["export_value_eur_source"] == "comext"
    assert result["import_value_eur"] == 0.0
    assert result["import_value_eur_source"] == "none"


def test_fallback_never_decreases_primary_values():
    rng = np.random.default_rng(7)
    rows = []
    for _ in range(50):
        values = {}
        for field in TRADE_FIELDS:
            values[field] = float(rng.choice([0.0, rng.uniform(1, 100)]))
            values[f"prodcom_{field}"] = float(rng.choice([0.0, rng.uniform(1, 100)]))
        rows.append(_merged_row(**values))
    merged = pd.DataFrame(rows)
    result = apply_trade_fallback(merged)

    for field in TRADE_FIELDS:
        primary = merged[field]
        assert (result.loc[primary > 0, field] == primary[primary > 0]).all()
        substituted = (primary == 0) & (merged[f"prodcom_{field}"] > 0)
        assert (result.loc[substituted, field] == merged.loc[substituted, f"prodcom_{field}"]).all()


def test_duplicate_production_rows_are_summed(catalog, caplog):
    caplog.set_level(logging.WARNING, logger="etl.production_trade")
    rows = prodcom_rows("27.51.11.10", "004", PRODQNT="100", QNTUNIT="kg", IMPQNT="3000")
    rows += prodcom_rows("27.51.11.10", "004", IMPQNT="2000")
    production = harmonize_production(pd.DataFrame(rows), catalog, 2009)

    assert len(production) == 1
    assert production["prodcom_import_volume_tonnes"].iloc[0] == pytest.approx(5.0)
    assert "share a (product, geo, indicator) key" in caplog.text

    result = apply_trade_fallback(merge_production_trade(production, harmonize_trade(
        pd.DataFrame(), build_mapping_table(catalog), 2009
    ))).iloc[0]
    assert result["import_volume_tonnes"] == pytest.approx(5.0)
    assert result["import_volume_tonnes_source"] == "prodcom"
