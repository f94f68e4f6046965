# WORKFLOW: Input validation and data-quality flags for the circularity pipeline.
# Used by: Pipeline orchestrator (raw table checks), indicator builder (quality flags)
# Functions:
# 1. validate_production_raw() - PRODCOM long table checks
# 2. validate_trade_raw() - COMEXT long table checks
# 3. validate_mass_balance() - Urban Mine Platform flow table checks
# 4. validate_collection_raw() - Eurostat collection table checks
# 5. generate_validation_report() - Summary of validation results
# 6. validate_raw_inputs() - Validate every loaded raw table and build the report
# 7. quality_flags() - Negative apparent consumption and unrealistic trade ratio flags
#
# Validation flow: Raw tables -> Schema validation -> Content checks -> Report
# Missing columns are errors; suspicious content is only reported. Data-quality anomalies
# in the outputs become boolean flag columns and never fail a year.

"""
Input validation and data-quality flags for the circularity pipeline.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

PRODUCTION_RAW_COLUMNS = ["prccode", "decl", "indicators", "value"]
TRADE_RAW_COLUMNS = ["product", "reporter", "flow", "indicators", "value"]
MASS_BALANCE_COLUMNS = ["year", "location", "category", "material", "flow_id", "value_mg", "scenario"]
COLLECTION_RAW_COLUMNS = ["geo", "waste", "wst_oper", "unit", "value"]


def missing_columns(df: pd.DataFrame, required: List[str]) -> List[str]:
    return [col for col in required if col not in df.columns]


def validate_hs_code(hs_code: str) -> bool:
    """
    Validate HS/CN code format.

    Args:
        hs_code: HS code to validate, with or without dots

    Returns:
        True if valid, False otherwise
    """
    if not hs_code or not isinstance(hs_code, str):
        return False
    # HS codes should be 4-10 digits once punctuation is removed
    return re.match(r'^\d{4,10}$', re.sub(r'[.\s]', '', hs_code)) is not None


def validate_production_raw(df: pd.DataFrame) -> Tuple[bool, List[str]]:
    """
    Validate a raw PRODCOM table.

    Args:
        df: DataFrame with prccode, decl, indicators, value

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []

    missing = missing_columns(df, PRODUCTION_RAW_COLUMNS)
    if missing:
        errors.append(f"Missing required columns: {missing}")
        return False, errors

    empty_codes = df[df['prccode'].isna() | (df['prccode'].astype(str).str.strip() == '')]
    if not empty_codes.empty:
        errors.append(f"Empty product codes found in {len(empty_codes)} rows")

    known = {'PRODQNT', 'PRODVAL', 'QNTUNIT', 'IMPQNT', 'IMPVAL', 'EXPQNT', 'EXPVAL'}
    unknown = sorted(set(df['indicators'].dropna().astype(str).str.upper()) - known)
    if unknown:
        logger.debug(f"Ignoring unknown PRODCOM indicators: {unknown[:10]}")

    logger.info(f"Production validation: {len(errors)} errors found")
    return len(errors) == 0, errors


def validate_trade_raw(df: pd.DataFrame) -> Tuple[bool, List[str]]:
    """
    Validate a raw COMEXT table.

    Args:
        df: DataFrame with product, reporter, flow, indicators, value

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []

    missing = missing_columns(df, TRADE_RAW_COLUMNS)
    if missing:
        errors.append(f"Missing required columns: {missing}")
        return False, errors

    invalid_hs_codes = [code for code in df['product'].dropna().astype(str).unique() if not validate_hs_code(code)]
    if invalid_hs_codes:
        errors.append(f"Invalid HS codes: {invalid_hs_codes[:10]}...")

    valid_flows = {'1', '2', 'IMPORT', 'EXPORT'}
    invalid_flows = df[~df['flow'].astype(str).str.strip().str.upper().isin(valid_flows)]
    if not invalid_flows.empty:
        errors.append(f"Invalid trade flows found in {len(invalid_flows)} rows")

    logger.info(f"Trade validation: {len(errors)} errors found")
    return len(errors) == 0, errors


def validate_mass_balance(df: pd.DataFrame) -> Tuple[bool, List[str]]:
    """
    Validate the mass-balance flow table.

    Args:
        df: DataFrame with year, location, category, material, flow_id, value_mg, scenario

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []

    missing = missing_columns(df, MASS_BALANCE_COLUMNS)
    if missing:
        errors.append(f"Missing required columns: {missing}")
        return False, errors

    masses = pd.to_numeric(df['value_mg'], errors='coerce')
    negative = df[masses < 0]
    if not negative.empty:
        errors.append(f"Negative masses found in {len(negative)} rows")

    logger.info(f"Mass-balance validation: {len(errors)} errors found")
    return len(errors) == 0, errors


def validate_collection_raw(df: pd.DataFrame) -> Tuple[bool, List[str]]:
    """
    Validate a raw collection statistics table.

    Args:
        df: DataFrame with geo, waste, wst_oper, unit, value

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []

    missing = missing_columns(df, COLLECTION_RAW_COLUMNS)
    if missing:
        errors.append(f"Missing required columns: {missing}")
        return False, errors

    empty_geo = df[df['geo'].isna() | (df['geo'].astype(str).str.strip() == '')]
    if not empty_geo.empty:
        errors.append(f"Empty geo codes found in {len(empty_geo)} rows")

    logger.info(f"Collection validation: {len(errors)} errors found")
    return len(errors) == 0, errors


VALIDATORS = {
    'production': validate_production_raw,
    'trade': validate_trade_raw,
    'mass_balance': validate_mass_balance,
    'collection': validate_collection_raw,
}


def generate_validation_report(validation_results: Dict[str, Tuple[bool, List[str]]]) -> Dict[str, Any]:
    """
    Generate validation report.

    Args:
        validation_results: Dictionary of validation results

    Returns:
        Validation report dictionary
    """
    report = {
        'timestamp': datetime.now().isoformat(),
        'overall_valid': True,
        'datasets': {},
        'summary': {
            'total_datasets': len(validation_results),
            'valid_datasets': 0,
            'invalid_datasets': 0,
            'total_errors': 0
        }
    }

    for dataset_name, (is_valid, errors) in validation_results.items():
        report['datasets'][dataset_name] = {
            'valid': is_valid,
            'error_count': len(errors),
            'errors': errors
        }

        if is_valid:
            report['summary']['valid_datasets'] += 1
        else:
            report['summary']['invalid_datasets'] += 1
            report['overall_valid'] = False

        report['summary']['total_errors'] += len(errors)

    logger.info(f"Validation report generated: {report['summary']}")
    return report


def validate_raw_inputs(raw_data: Dict[str, pd.DataFrame]) -> Dict[str, Any]:
    """
    Validate all loaded raw tables.

    Args:
        raw_data: Raw DataFrames keyed by 'production', 'trade', 'mass_balance', 'collection'

    Returns:
        Validation report
    """
    logger.info("Starting validation of raw input tables")

    validation_results = {}
    for key, df in raw_data.items():
        validator = VALIDATORS.get(key)
        if validator is None or df.empty:
            validation_results[key] = (True, [])
            continue
        validation_results[key] = validator(df)

    return generate_validation_report(validation_results)


def quality_flags(indicators: pd.DataFrame, trade_ratio_threshold: float) -> pd.DataFrame:
    """
    Compute data-quality flags for indicator rows.

    Args:
        indicators: Rows with production, import, export and apparent consumption columns
        trade_ratio_threshold: Exports above this multiple of (production + imports) are unrealistic

    Returns:
        DataFrame with flag_negative_consumption and flag_unrealistic_trade, indexed like ``indicators``
    """
    supply = indicators['production_volume_tonnes'] + indicators['import_volume_tonnes']
    return pd.DataFrame({
        'flag_negative_consumption': indicators['apparent_consumption_tonnes'] < 0,
        'flag_unrealistic_trade': indicators['export_volume_tonnes'] > trade_ratio_threshold * supply,
    }, index=indicators.index)
