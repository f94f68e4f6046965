# WORKFLOW: Database models and output table schemas for the circularity pipeline.
# Used by: Pipeline orchestrator (table writes), API endpoints (table summaries), tests
# Models represent:
# 1. product_mapping_codes - PRODCOM codes per product and nomenclature epoch with HS codes
# 2. parameters_circularity_rate - Configured circularity rates per product
# 3. country_code_mapping - PRODCOM numeric declarant codes with their ISO codes and names
# 4. Year tables (production_trade_{year}, circularity_indicators_{year}, ...) - column types
#    declared per table kind and passed to pandas as to_sql dtypes
#
# Data flow: Raw tables -> ETL DataFrames -> typed year tables / run-level models -> API summaries

from typing import Dict, List

from sqlalchemy import Boolean, Column, Float, Integer, String
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeEngine

from etl.collection_rates import PRODUCT_COLLECTION_COLUMNS
from etl.indicators import (
    COUNTRY_AGGREGATE_COLUMNS,
    INDICATOR_COLUMNS,
    PRODUCT_AGGREGATE_COLUMNS,
    UNIT_VALUE_COLUMNS,
)
from etl.material_flows import PRODUCT_COMPOSITION_COLUMNS, PRODUCT_RECOVERY_COLUMNS
from etl.production_trade import PRODUCTION_COLUMNS, PRODUCTION_TRADE_COLUMNS, TRADE_COLUMNS
from etl.strategy_indicators import STRATEGY_COLUMNS

Base = declarative_base()


class ProductMappingCode(Base):
    __tablename__ = "product_mapping_codes"

    product_key = Column(String(100), primary_key=True)
    epoch = Column(String(50), primary_key=True)
    prodcom_code = Column(String(20), primary_key=True)
    product_id = Column(Integer, nullable=False)
    product_name = Column(String(255), nullable=False)
    start_year = Column(Integer, nullable=False)
    end_year = Column(Integer, nullable=True)
    hs_codes = Column(String(500), nullable=False, default="")


class CircularityParameter(Base):
    __tablename__ = "parameters_circularity_rate"

    product_key = Column(String(100), primary_key=True)
    product_name = Column(String(255), nullable=False)
    current_circularity_rate_pct = Column(Float, nullable=False)
    potential_circularity_rate_pct = Column(Float, nullable=False)
    refurbishment_rate_pct = Column(Float, nullable=False)
    weight_kg = Column(Float, nullable=True)


class CountryCodeMapping(Base):
    __tablename__ = "country_code_mapping"

    prodcom_code = Column(String(10), primary_key=True)
    iso_code = Column(String(20), nullable=False)
    country_name = Column(String(255), nullable=False, default="")


# Year table kind -> column order; physical name is "<kind>_<year>"
OUTPUT_TABLES: Dict[str, List[str]] = {
    "production_trade": PRODUCTION_TRADE_COLUMNS,
    "circularity_indicators": INDICATOR_COLUMNS,
    "country_aggregates": COUNTRY_AGGREGATE_COLUMNS,
    "product_aggregates": PRODUCT_AGGREGATE_COLUMNS,
    "product_material_composition": PRODUCT_COMPOSITION_COLUMNS,
    "product_material_recovery_rates": PRODUCT_RECOVERY_COLUMNS,
    "product_collection_rates": PRODUCT_COLLECTION_COLUMNS,
    "product_unit_values": UNIT_VALUE_COLUMNS,
    "circularity_strategy_indicators": STRATEGY_COLUMNS,
}

INTERMEDIATE_TABLES: Dict[str, List[str]] = {
    "production_temp": PRODUCTION_COLUMNS,
    "trade_temp": TRADE_COLUMNS,
}

_FLOAT_SUFFIXES = ("_tonnes", "_eur", "_pct", "_mg", "_per_tonne", "_kg")
_INTEGER_COLUMNS = {"year", "source_year", "product_id", "start_year", "end_year",
                    "product_count", "country_count", "category_count"}


def table_name(kind: str, year: int) -> str:
    if kind not in OUTPUT_TABLES and kind not in INTERMEDIATE_TABLES:
        raise ValueError(f"Unknown table kind: {kind}")
    return f"{kind}_{year}"


def column_type(column: str) -> TypeEngine:
    """SQL type of an output column, derived from its naming convention."""
    if column in _INTEGER_COLUMNS:
        return Integer()
    if column.startswith("flag_") or column == "quantity_convertible":
        return Boolean()
    if column.endswith(_FLOAT_SUFFIXES):
        return Float()
    return String()


def table_dtypes(kind: str) -> Dict[str, TypeEngine]:
    """to_sql dtype mapping for a year table kind."""
    columns = OUTPUT_TABLES.get(kind) or INTERMEDIATE_TABLES.get(kind)
    if columns is None:
        raise ValueError(f"Unknown table kind: {kind}")
    return {column: column_type(column) for column in columns}
