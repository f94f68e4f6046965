# WORKFLOW: Shared fixtures for the circularity pipeline test suite.
# Used by: All test modules
# Fixtures:
# 1. catalog - Two-product catalog with a nomenclature change in 2008
# 2. source_url / target_url - File-based SQLite databases in a temporary directory
# 3. raw table builders - Long-format PRODCOM, COMEXT, mass-balance and collection rows
#
# Engines are cached per URL, so the cache is cleared after every test.

import pandas as pd
import pytest

from core.catalog import parse_product_catalog
from db.session import dispose_engines, get_engine

CATALOG_CONFIG = {
    "epochs": {
        "nace_rev1": {"start_year": 1995, "end_year": 2007},
        "nace_rev2": {"start_year": 2008},
    },
    "waste_category_map": {
        "EE_TEE": "WEEE_Cat1",
        "EE_SITTE": "WEEE_Cat6",
    },
    "products": {
        "fridges": {
            "id": 1,
            "name": "Fridges",
            "hs_codes": ["8418.10"],
            "waste_codes": ["EE_TEE"],
            "prodcom_codes": {
                "nace_rev1": ["29.71.11.10"],
                "nace_rev2": ["27.51.11.10"],
            },
            "parameters": {
                "weight_kg": 50.0,
                "current_circularity_rate": 10.0,
                "potential_circularity_rate": 40.0,
                "refurbishment_rate": 5.0,
            },
        },
        "laptops": {
            "id": 2,
            "name": "Laptops",
            "hs_codes": ["8471.30"],
            "waste_codes": ["EE_SITTE", "EE_TEE"],
            "prodcom_codes": {
                "nace_rev2": ["26.20.11.00"],
            },
            "parameters": {
                "weight_kg": 2.5,
                "current_circularity_rate": 20.0,
                "potential_circularity_rate": 50.0,
            },
        },
    },
}


@pytest.fixture(autouse=True)
def clear_engine_cache():
    yield
    dispose_engines()


@pytest.fixture
def catalog():
    return parse_product_catalog(CATALOG_CONFIG)


@pytest.fixture
def source_url(tmp_path):
    return f"sqlite:///{tmp_path / 'raw.db'}"


@pytest.fixture
def target_url(tmp_path):
    return f"sqlite:///{tmp_path / 'processed.db'}"


def prodcom_rows(code, decl, **indicators):
    """Long PRODCOM rows for one product code and declarant, values as text."""
    return [
        {"prccode": code, "decl": decl, "indicators": indicator, "value": str(value)}
        for indicator, value in indicators.items()
    ]


def comext_rows(product, reporter, flow, quantity_kg, value_eur):
    return [
        {"product": product, "reporter": reporter, "flow": flow, "indicators": "QUANTITY_KG", "value": str(quantity_kg)},
        {"product": product, "reporter": reporter, "flow": flow, "indicators": "VALUE_EUR", "value": str(value_eur)},
    ]


def sankey_rows(year, location, category, material, scenario="hist", **flows):
    return [
        {
            "year": year,
            "location": location,
            "category": category,
            "material": material,
            "flow_id": flow_id,
            "value_mg": value,
            "scenario": scenario,
        }
        for flow_id, value in flows.items()
    ]


def collection_rows(geo, waste, value, wst_oper="COL", unit="PC"):
    return [{"geo": geo, "waste": waste, "wst_oper": wst_oper, "unit": unit, "value": str(value)}]


def write_table(database_url, name, rows):
    pd.DataFrame(rows).to_sql(name, get_engine(database_url), index=False, if_exists="replace")
