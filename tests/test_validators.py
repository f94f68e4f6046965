# WORKFLOW: Tests for raw input validation and data-quality flags.
# Test scenarios:
# 1. HS code format checks
# 2. Missing columns and suspicious content are reported per table
# 3. Validation report summarizes every table
# 4. Quality flags for negative consumption and unrealistic export ratios

import pandas as pd

from etl.validators import (
    generate_validation_report,
    quality_flags,
    validate_collection_raw,
    validate_hs_code,
    validate_mass_balance,
    validate_production_raw,
    validate_raw_inputs,
    validate_trade_raw,
)

from conftest import collection_rows, comext_rows, prodcom_rows, sankey_rows


def test_hs_code_validation():
    assert validate_hs_code("8418.69")
    assert validate_hs_code("84186900")
    assert not validate_hs_code("84")
    assert not validate_hs_code("ABCD")
    assert not validate_hs_code("")


def test_production_validation():
    valid = pd.DataFrame(prodcom_rows("27.51.11.10", "004", PRODQNT="10", QNTUNIT="kg"))
    assert validate_production_raw(valid) == (True, [])

    is_valid, errors = validate_production_raw(valid.drop(columns=["decl"]))
    assert not is_valid
    assert "decl" in errors[0]

    empty_code = pd.DataFrame(prodcom_rows("", "004", PRODQNT="10"))
    is_valid, errors = validate_production_raw(empty_code)
    assert not is_valid
    assert "Empty product codes" in errors[0]


def test_trade_validation():
    rows = comext_rows("84181000", "DE", "1", 10, 20) + comext_rows("XX", "DE", "9", 10, 20)
    is_valid, errors = validate_trade_raw(pd.DataFrame(rows))
    assert not is_valid
    assert any("Invalid HS codes" in error for error in errors)
    assert any("Invalid trade flows" in error for error in errors)


def test_mass_balance_validation():
    rows = sankey_rows(2015, "DE", "WEEE_Cat1", "Fe", F3_4=10.0, F4_99=-1.0)
    is_valid, errors = validate_mass_balance(pd.DataFrame(rows))
    assert not is_valid
    assert "Negative masses found in 1 rows" in errors


def test_collection_validation():
    rows = collection_rows("DE", "EE_TEE", 40) + collection_rows("", "EE_TEE", 40)
    is_valid, errors = validate_collection_raw(pd.DataFrame(rows))
    assert not is_valid
    assert "Empty geo codes found in 1 rows" in errors


def test_validation_report():
    report = validate_raw_inputs({
        "production": pd.DataFrame(prodcom_rows("27.51.11.10", "004", PRODQNT="10")),
        "collection": pd.DataFrame(collection_rows("", "EE_TEE", 40)),
        "trade": pd.DataFrame(),
    })
    assert report["overall_valid"] is False
    assert report["summary"]["total_datasets"] == 3
    assert report["summary"]["invalid_datasets"] == 1
    assert report["datasets"]["trade"]["valid"] is True
    assert report["datasets"]["collection"]["error_count"] == 1


def test_empty_report():
    report = generate_validation_report({})
    assert report["overall_valid"] is True
    assert report["summary"]["total_errors"] == 0


def test_quality_flags():
    indicators = pd.DataFrame({
        "production_volume_tonnes": [10.0, 1.0, 0.0],
        "import_volume_tonnes": [0.0, 0.0, 0.0],
        "export_volume_tonnes": [5.0, 20.0, 0.0],
        "apparent_consumption_tonnes": [5.0, -19.0, 0.0],
    })
    flags = quality_flags(indicators, trade_ratio_threshold=10.0)
    assert flags["flag_negative_consumption"].tolist() == [False, True, False]
    assert flags["flag_unrealistic_trade"].tolist() == [False, True, False]
