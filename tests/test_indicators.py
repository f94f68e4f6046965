# WORKFLOW: Tests for circularity indicators, aggregates, unit values and strategy savings.
# Test scenarios:
# 1. Apparent consumption and savings follow the configured rates
# 2. Negative consumption and unrealistic export ratios are flagged, not dropped
# 3. Country and product aggregates ignore EU aggregate rows
# 4. Unit values are missing when the volume is zero
# 5. Strategy rows: two per (product, geo), EU fallback with provenance, missing rates stay missing
# 6. Trade of a product with several active codes is counted once in strategy and country totals

import copy
import math

import pandas as pd
import pytest

from core.catalog import parse_product_catalog
from etl.indicators import (
    INDICATOR_COLUMNS,
    build_circularity_indicators,
    build_country_aggregates,
    build_product_aggregates,
    build_unit_values,
)
from etl.product_mapping import build_mapping_table
from etl.production_trade import (
    TRADE_FIELDS,
    apply_trade_fallback,
    harmonize_production,
    harmonize_trade,
    merge_production_trade,
)
from etl.strategy_indicators import STRATEGY_COLUMNS, build_strategy_indicators, resolve_rate

from conftest import CATALOG_CONFIG, comext_rows, prodcom_rows


def _row(product_key, geo, production=0.0, imports=0.0, exports=0.0, value=0.0, level="country"):
    codes = {"fridges": ("27.51.11.10", "Fridges"), "laptops": ("26.20.11.00", "Laptops")}
    code, name = codes[product_key]
    row = {
        "product_key": product_key, "product_code": code, "geo": geo, "year": 2015,
        "product_name": name, "level": level,
        "production_volume_tonnes": production, "production_value_eur": value,
        "import_volume_tonnes": imports, "import_value_eur": 0.0,
        "export_volume_tonnes": exports, "export_value_eur": 0.0,
    }
    for field in TRADE_FIELDS:
        row[f"{field}_source"] = "comext"
    return row


@pytest.fixture
def production_trade():
    return pd.DataFrame([
        _row("fridges", "DE", production=100.0, imports=20.0, exports=30.0, value=1000.0),
        _row("fridges", "FR", production=10.0, imports=0.0, exports=15.0),
        _row("laptops", "DE", production=1.0, imports=0.0, exports=50.0),
        _row("fridges", "EU27_2020", production=500.0, level="EU"),
    ])


@pytest.fixture
def indicators(production_trade, catalog):
    return build_circularity_indicators(production_trade, catalog, 2015)


def _select(frame, **keys):
    mask = pd.Series(True, index=frame.index)
    for key, value in keys.items():
        mask &= frame[key] == value
    assert mask.sum() == 1
    return frame.loc[mask].iloc[0]


class TestCircularityIndicators:
    def test_apparent_consumption_and_savings(self, indicators):
        assert list(indicators.columns) == INDICATOR_COLUMNS
        de = _select(indicators, product_key="fridges", geo="DE")
        assert de["apparent_consumption_tonnes"] == pytest.approx(90.0)
        assert de["apparent_consumption_value_eur"] == pytest.approx(1000.0)
        assert de["current_circularity_rate_pct"] == 10.0
        assert de["potential_circularity_rate_pct"] == 40.0
        assert de["estimated_material_savings_tonnes"] == pytest.approx(27.0)
        assert de["estimated_monetary_savings_eur"] == pytest.approx(300.0)

    def test_flags_keep_rows(self, indicators):
        assert len(indicators) == 4

        fr = _select(indicators, product_key="fridges", geo="FR")
        assert bool(fr["flag_negative_consumption"])
        assert not bool(fr["flag_unrealistic_trade"])

        laptops = _select(indicators, product_key="laptops", geo="DE")
        assert bool(laptops["flag_negative_consumption"])
        assert bool(laptops["flag_unrealistic_trade"])

        de = _select(indicators, product_key="fridges", geo="DE")
        assert not bool(de["flag_negative_consumption"])

    def test_trade_ratio_threshold_is_configurable(self, production_trade, catalog):
        relaxed = build_circularity_indicators(production_trade, catalog, 2015, trade_ratio_threshold=100.0)
        assert not relaxed["flag_unrealistic_trade"].any()

    def test_empty_input(self, catalog):
        result = build_circularity_indicators(pd.DataFrame(), catalog, 2015)
        assert result.empty
        assert list(result.columns) == INDICATOR_COLUMNS


class TestAggregates:
    def test_country_aggregates_exclude_eu_rows(self, indicators):
        countries = build_country_aggregates(indicators, 2015)
        assert countries["geo"].tolist() == ["DE", "FR"]
        de = _select(countries, geo="DE")
        assert de["product_count"] == 2
        assert de["total_production_tonnes"] == pytest.approx(101.0)
        assert de["total_apparent_consumption_tonnes"] == pytest.approx(90.0 - 49.0)

    def test_product_aggregates_exclude_eu_rows(self, indicators):
        products = build_product_aggregates(indicators, 2015)
        fridges = _select(products, product_key="fridges")
        assert fridges["country_count"] == 2
        assert fridges["total_production_tonnes"] == pytest.approx(110.0)
        assert set(products["year"]) == {2015}

    def test_empty_aggregates(self):
        assert build_country_aggregates(pd.DataFrame(), 2015).empty
        assert build_product_aggregates(pd.DataFrame(), 2015).empty


def test_unit_values(production_trade):
    unit_values = build_unit_values(production_trade)
    de = _select(unit_values, product_key="fridges", geo="DE")
    assert de["production_unit_value_eur_per_tonne"] == pytest.approx(10.0)
    assert de["import_unit_value_eur_per_tonne"] == pytest.approx(0.0)

    fr = _select(unit_values, product_key="fridges", geo="FR")
    assert math.isnan(fr["import_unit_value_eur_per_tonne"])


class TestStrategyIndicators:
    @pytest.fixture
    def collection_rates(self):
        return pd.DataFrame([
            {"product_key": "fridges", "geo": "DE", "collection_rate_pct": 45.0},
            {"product_key": "fridges", "geo": "EU27_2020", "collection_rate_pct": 50.0},
        ])

    @pytest.fixture
    def recovery_rates(self):
        return pd.DataFrame([
            {"product_key": "fridges", "geo": "DE", "material": "TOTAL", "recovery_rate_pct": 75.0},
            {"product_key": "fridges", "geo": "DE", "material": "Fe", "recovery_rate_pct": 99.0},
            {"product_key": "fridges", "geo": "EU27_2020", "material": "TOTAL", "recovery_rate_pct": 60.0},
        ])

    def test_two_rows_per_product_and_geo(self, indicators, collection_rates, recovery_rates, catalog):
        strategies = build_strategy_indicators(indicators, collection_rates, recovery_rates, catalog, 2015)
        assert list(strategies.columns) == STRATEGY_COLUMNS
        assert len(strategies) == 2 * len(indicators)
        counts = strategies.groupby(["product_key", "geo"])["strategy"].apply(sorted)
        assert all(value == ["recycling", "refurbishment"] for value in counts)

    def test_recycling_uses_country_rates(self, indicators, collection_rates, recovery_rates, catalog):
        strategies = build_strategy_indicators(indicators, collection_rates, recovery_rates, catalog, 2015)
        row = _select(strategies, product_key="fridges", geo="DE", strategy="recycling")
        assert row["collection_rate_source"] == "country"
        assert row["material_recovery_rate_source"] == "country"
        assert row["rate_pct"] == pytest.approx(45.0 * 75.0 / 100.0)
        assert row["estimated_savings_tonnes"] == pytest.approx(90.0 * 33.75 / 100.0)

    def test_recycling_falls_back_to_eu(self, indicators, collection_rates, recovery_rates, catalog):
        strategies = build_strategy_indicators(indicators, collection_rates, recovery_rates, catalog, 2015)
        row = _select(strategies, product_key="fridges", geo="FR", strategy="recycling")
        assert row["collection_rate_source"] == "eu_fallback"
        assert row["material_recovery_rate_source"] == "eu_fallback"
        assert row["rate_pct"] == pytest.approx(30.0)

    def test_missing_rates_leave_savings_missing(self, indicators, collection_rates, recovery_rates, catalog):
        strategies = build_strategy_indicators(indicators, collection_rates, recovery_rates, catalog, 2015)
        row = _select(strategies, product_key="laptops", geo="DE", strategy="recycling")
        assert row["collection_rate_source"] == "missing"
        assert math.isnan(row["rate_pct"])
        assert math.isnan(row["estimated_savings_tonnes"])

    def test_refurbishment_rates(self, indicators, collection_rates, recovery_rates, catalog):
        strategies = build_strategy_indicators(indicators, collection_rates, recovery_rates, catalog, 2015)
        fridges = _select(strategies, product_key="fridges", geo="DE", strategy="refurbishment")
        assert fridges["rate_pct"] == 5.0
        assert fridges["estimated_savings_tonnes"] == pytest.approx(4.5)

        laptops = _select(strategies, product_key="laptops", geo="DE", strategy="refurbishment")
        assert laptops["rate_pct"] == 20.0

    def test_empty_rate_tables(self, indicators, catalog):
        empty = pd.DataFrame()
        strategies = build_strategy_indicators(indicators, empty, empty, catalog, 2015)
        recycling = strategies[strategies["strategy"] == "recycling"]
        assert recycling["rate_pct"].isna().all()
        assert (recycling["collection_rate_source"] == "missing").all()

    def test_empty_indicators(self, catalog):
        result = build_strategy_indicators(pd.DataFrame(), pd.DataFrame(), pd.DataFrame(), catalog, 2015)
        assert result.empty
        assert list(result.columns) == STRATEGY_COLUMNS


def test_resolve_rate_prefers_country_value():
    base = pd.DataFrame({"product_key": ["a", "a", "b"], "geo": ["DE", "FR", "DE"]})
    rates = pd.DataFrame({
        "product_key": ["a", "a"],
        "geo": ["DE", "EU27_2020"],
        "collection_rate_pct": [10.0, 20.0],
    })
    resolved = resolve_rate(base, rates, "collection_rate_pct", "EU27_2020")
    assert resolved["collection_rate_pct"].tolist()[:2] == [10.0, 20.0]
    assert math.isnan(resolved["collection_rate_pct"].iloc[2])
    assert resolved["collection_rate_source"].tolist() == ["country", "eu_fallback", "missing"]


class TestSeveralActiveCodes:
    """A product reported under two PRODCOM codes in one epoch counts its trade once."""

    @pytest.fixture
    def two_code_catalog(self):
        config = copy.deepcopy(CATALOG_CONFIG)
        config["products"]["fridges"]["prodcom_codes"]["nace_rev2"] = ["27.51.11.10", "27.51.11.20"]
        return parse_product_catalog(config)

    @pytest.fixture
    def two_code_indicators(self, two_code_catalog):
        raw_production = pd.DataFrame(
            prodcom_rows("27.51.11.10", "004", PRODQNT="1000", QNTUNIT="kg")
            + prodcom_rows("27.51.11.20", "004", PRODQNT="1000", QNTUNIT="kg")
        )
        raw_trade = pd.DataFrame(comext_rows("84181000", "DE", "1", 20000, 0))
        production = harmonize_production(raw_production, two_code_catalog, 2015)
        trade = harmonize_trade(raw_trade, build_mapping_table(two_code_catalog), 2015)
        production_trade = apply_trade_fallback(merge_production_trade(production, trade))
        return build_circularity_indicators(production_trade, two_code_catalog, 2015)

    def test_trade_attached_to_one_code(self, two_code_indicators):
        assert len(two_code_indicators) == 2
        assert two_code_indicators["import_volume_tonnes"].sum() == pytest.approx(20.0)
        assert two_code_indicators["apparent_consumption_tonnes"].sum() == pytest.approx(22.0)

    def test_strategy_consumption(self, two_code_indicators, two_code_catalog):
        empty = pd.DataFrame()
        strategies = build_strategy_indicators(two_code_indicators, empty, empty, two_code_catalog, 2015)
        row = _select(strategies, product_key="fridges", geo="DE", strategy="refurbishment")
        assert row["apparent_consumption_tonnes"] == pytest.approx(22.0)
        assert row["estimated_savings_tonnes"] == pytest.approx(22.0 * 5.0 / 100.0)

    def test_country_totals(self, two_code_indicators):
        de = _select(build_country_aggregates(two_code_indicators, 2015), geo="DE")
        assert de["product_count"] == 1
        assert de["total_import_tonnes"] == pytest.approx(20.0)
        assert de["total_apparent_consumption_tonnes"] == pytest.approx(22.0)
