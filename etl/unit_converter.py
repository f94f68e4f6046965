# WORKFLOW: Conversion of PRODCOM physical unit codes to tonnes.
# Used by: Production harmonization (quantities), trade harmonization (kg -> t)
# Functions:
# 1. convert_to_tonnes() - Convert one value, NOT_CONVERTIBLE for count-based/unknown units
# 2. convert_series() - Vectorized conversion returning tonnes and a convertible mask
# 3. apply_piece_weights() - Product-specific average weights for counted pieces
# 4. is_convertible_to_tonnes() / get_unit_name() - Lookups on the unit table
# 5. get_convertible_units() / get_non_convertible_units() - Unit table as DataFrames
#
# Conversion flow: unit label -> alias resolution -> factor lookup -> value * factor
# Zero, missing and malformed values pass through unchanged so aggregations keep their totals.

"""
Conversion of PRODCOM physical unit codes to tonnes.
"""

import logging
import math
from typing import Any, Dict, NamedTuple, Optional, Tuple, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class UnitDefinition(NamedTuple):
    factor: Optional[float]
    short_name: str
    description: str


class _NotConvertible:
    """Marker returned when a unit has no mass equivalent."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_CONVERTIBLE"

    def __bool__(self) -> bool:
        return False


NOT_CONVERTIBLE = _NotConvertible()

UNIT_CONVERSION_FACTORS: Dict[str, UnitDefinition] = {
    # Mass units
    "1000": UnitDefinition(1.0, "GT", "Gross tonnage"),
    "1050": UnitDefinition(1.0, "CGT", "Compensated gross tonne"),
    "1100": UnitDefinition(2.0e-7, "c/k", "Carats (1 metric carat = 2x10^-4 kg)"),
    "1400": UnitDefinition(1.0e-6, "g", "Gram"),
    "1500": UnitDefinition(1.0e-3, "kg", "Kilogram"),

    # Chemical compound units, all reported in kg
    "1510": UnitDefinition(1.0e-3, "kg Al2O3", "Kilogram of dialuminium trioxide"),
    "1511": UnitDefinition(1.0e-3, "kg B2O3", "Kilogram of diboron trioxide"),
    "1512": UnitDefinition(1.0e-3, "kg BaCO3", "Kilogram of barium carbonate"),
    "1513": UnitDefinition(1.0e-3, "kg Cl", "Kilogram of chlorine"),
    "1514": UnitDefinition(1.0e-3, "kg F", "Kilogram of fluorine"),
    "1515": UnitDefinition(1.0e-3, "kg HCl", "Kilogram of hydrogen chloride"),
    "1516": UnitDefinition(1.0e-3, "kg H2O2", "Kilogram of hydrogen peroxide"),
    "1517": UnitDefinition(1.0e-3, "kg KOH", "Kilogram of potassium hydroxide"),
    "1518": UnitDefinition(1.0e-3, "kg K2O", "Kilogram of potassium oxide"),
    "1519": UnitDefinition(1.0e-3, "kg K2CO3", "Kilogram of potassium carbonate"),
    "1520": UnitDefinition(1.0e-3, "kg N", "Kilogram of nitrogen"),
    "1521": UnitDefinition(1.0e-3, "kg NaOH", "Kilogram of sodium hydroxide"),
    "1522": UnitDefinition(1.0e-3, "kg Na2CO3", "Kilogram of sodium carbonate"),
    "1523": UnitDefinition(1.0e-3, "kg Na2S2O5", "Kilogram of sodium pyrosulphite"),
    "1524": UnitDefinition(1.0e-3, "kg PbO", "Kilogram of lead oxide"),
    "1525": UnitDefinition(1.0e-3, "kg P2O5", "Kilogram of phosphorus pentoxide"),
    "1526": UnitDefinition(1.0e-3, "kg S", "Kilogram of sulphur"),
    "1527": UnitDefinition(1.0e-3, "kg SO2", "Kilogram of sulphur dioxide"),
    "1528": UnitDefinition(1.0e-3, "kg SiO2", "Kilogram of silicon dioxide"),
    "1529": UnitDefinition(1.0e-3, "kg TiO2", "Kilogram of titanium dioxide"),
    "1530": UnitDefinition(1.0e-3, "kg act. subst.", "Kilogram of active substance"),
    "1531": UnitDefinition(1.0e-3, "kg 90 % sdt", "Kilogram of substance 90% dry"),
    "1532": UnitDefinition(1.0e-3, "kg HF", "Kilogram of hydrogen fluoride"),
    "1534": UnitDefinition(1.0e-3, "kg H2SO4", "Kilogram of sulphuric acid"),

    # Volume units, water-like density assumed
    "2000": UnitDefinition(1.0e-3, "l", "Litre (density ~1 kg/l)"),
    "2100": UnitDefinition(0.789e-3, "l alc 100%", "Litre of pure alcohol (density ~0.789 kg/l)"),
    "2400": UnitDefinition(1.0, "m3", "Cubic metre (density ~1000 kg/m3)"),

    # No mass equivalent
    "1200": UnitDefinition(None, "ce/el", "Number of elements"),
    "1300": UnitDefinition(None, "ct/l", "Carrying capacity in tonnes"),
    "1700": UnitDefinition(None, "km", "Kilometre"),
    "1800": UnitDefinition(None, "kW", "Kilowatt"),
    "1900": UnitDefinition(None, "1 000 kWh", "1 000 kilowatt hours"),
    "2200": UnitDefinition(None, "m", "Metre"),
    "2300": UnitDefinition(None, "m2", "Square metre"),
    "2500": UnitDefinition(None, "pa", "Number of pairs"),
    "2600": UnitDefinition(None, "p/st", "Number of items"),
    "2900": UnitDefinition(None, "TJ", "Terajoule (gross calorific value)"),
}

UNIT_ALIASES: Dict[str, str] = {
    "t": "1000",
    "GT": "1000",
    "CGT": "1050",
    "g": "1400",
    "kg": "1500",
    "l": "2000",
    "m3": "2400",
    "p/st": "2600",
    "pa": "2500",
    "m": "2200",
    "m2": "2300",
    "kW": "1800",
    "TJ": "2900",
}

# Count-based units that a product's average weight can turn into mass
PIECE_UNIT_CODES = frozenset({"2600"})


def canonical_unit_code(unit_code: Any) -> Optional[str]:
    """Resolve aliases and return the canonical unit code, or None for empty input."""
    if unit_code is None:
        return None
    if isinstance(unit_code, float) and math.isnan(unit_code):
        return None
    code = str(unit_code).strip()
    if not code:
        return None
    if code.endswith(".0") and code[:-2].isdigit():
        code = code[:-2]
    return UNIT_ALIASES.get(code, code)


def _is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool)


def convert_to_tonnes(value: Any, unit_code: Any) -> Union[float, Any]:
    """
    Convert a value expressed in a PRODCOM unit to tonnes.

    Args:
        value: Numeric value in the original unit
        unit_code: PRODCOM unit code (e.g. "1500") or abbreviation (e.g. "kg")

    Returns:
        Value in tonnes, NOT_CONVERTIBLE when the unit has no mass equivalent,
        or ``value`` unchanged when it is zero, missing or malformed
    """
    if value is None or not _is_numeric(value):
        return value
    if math.isnan(value) or value == 0:
        return value

    code = canonical_unit_code(unit_code)
    definition = UNIT_CONVERSION_FACTORS.get(code) if code else None
    if definition is None or definition.factor is None:
        return NOT_CONVERTIBLE
    return value * definition.factor


def is_convertible_to_tonnes(unit_code: Any) -> bool:
    code = canonical_unit_code(unit_code)
    definition = UNIT_CONVERSION_FACTORS.get(code) if code else None
    return definition is not None and definition.factor is not None


def get_unit_name(unit_code: Any) -> Tuple[str, str]:
    """Return (short_name, description) for a unit code, ("Unknown", "Unknown unit") otherwise."""
    code = canonical_unit_code(unit_code)
    definition = UNIT_CONVERSION_FACTORS.get(code) if code else None
    if definition is None:
        return ("Unknown", "Unknown unit")
    return (definition.short_name, definition.description)


def convert_series(values: pd.Series, units: pd.Series) -> Tuple[pd.Series, pd.Series]:
    """
    Vectorized conversion of values to tonnes.

    Args:
        values: Numeric values (NaN for missing)
        units: Unit codes or abbreviations, aligned with ``values``

    Returns:
        Tuple of (tonnes, convertible) where tonnes is NaN for rows whose unit
        cannot be converted and convertible is a boolean mask
    """
    codes = units.map(canonical_unit_code)
    factors = codes.map(
        lambda code: UNIT_CONVERSION_FACTORS[code].factor
        if code in UNIT_CONVERSION_FACTORS and UNIT_CONVERSION_FACTORS[code].factor is not None
        else np.nan
    ).astype(float)
    convertible = factors.notna()
    numeric = pd.to_numeric(values, errors="coerce").astype(float)

    tonnes = numeric * factors
    # Zero and missing quantities pass through unchanged whatever the unit
    passthrough = numeric.isna() | (numeric == 0)
    tonnes = tonnes.where(~passthrough, numeric)
    return tonnes, convertible


def apply_piece_weights(
    tonnes: pd.Series,
    quantities: pd.Series,
    units: pd.Series,
    product_keys: pd.Series,
    weights_kg: Dict[str, float],
) -> pd.Series:
    """
    Fill tonnes for counted pieces using product average weights.

    Only rows whose unit is a piece count and whose product has a configured
    weight are filled; every other row is returned unchanged.
    """
    codes = units.map(canonical_unit_code)
    weights = product_keys.map(weights_kg).astype(float)
    is_piece = codes.isin(PIECE_UNIT_CODES) & weights.notna()
    numeric = pd.to_numeric(quantities, errors="coerce").astype(float)
    from_pieces = numeric * weights / 1000.0
    filled = tonnes.where(~(is_piece & tonnes.isna()), from_pieces)

    converted = int((is_piece & tonnes.isna() & numeric.notna()).sum())
    if converted:
        logger.info(f"Converted {converted} piece-count quantities to tonnes using product weights")
    return filled


def get_convertible_units() -> pd.DataFrame:
    rows = [
        {"unit_code": code, "unit_name": d.short_name, "description": d.description, "conversion_factor": d.factor}
        for code, d in sorted(UNIT_CONVERSION_FACTORS.items())
        if d.factor is not None
    ]
    return pd.DataFrame(rows, columns=["unit_code", "unit_name", "description", "conversion_factor"])


def get_non_convertible_units() -> pd.DataFrame:
    rows = [
        {"unit_code": code, "unit_name": d.short_name, "description": d.description}
        for code, d in sorted(UNIT_CONVERSION_FACTORS.items())
        if d.factor is None
    ]
    return pd.DataFrame(rows, columns=["unit_code", "unit_name", "description"])
