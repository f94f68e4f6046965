# WORKFLOW: Harmonization of country codes between PRODCOM and COMEXT.
# Used by: Production harmonization, trade harmonization, indicator builders
# Functions:
# 1. harmonize_country_code() - Map one code from a source system to the canonical ISO code
# 2. harmonize_series() - Vectorized harmonization with one warning per unresolved code
# 3. geo_level() - Classify a harmonized code as "country" or "EU" aggregate
# 4. get_country_code_mapping() - Mapping table as a DataFrame
#
# PRODCOM declares countries with numeric codes ("004" = Germany), COMEXT already uses
# ISO codes. Unresolved codes are passed through unchanged, never dropped.

"""
Harmonization of country codes between PRODCOM and COMEXT.
"""

import logging
from enum import Enum
from typing import Dict

import pandas as pd

logger = logging.getLogger(__name__)


class SourceSystem(str, Enum):
    PRODCOM = "prodcom"
    COMEXT = "comext"


PRODCOM_TO_ISO_MAP: Dict[str, str] = {
    "001": "FR",
    "003": "NL",
    "004": "DE",
    "005": "IT",
    "006": "UK",
    "007": "IE",
    "008": "DK",
    "009": "GR",
    "010": "PT",
    "011": "ES",
    "017": "BE",
    "018": "LU",
    "024": "IS",
    "028": "NO",
    "030": "SE",
    "032": "FI",
    "038": "AT",
    "046": "MT",
    "053": "EE",
    "054": "LV",
    "055": "LT",
    "060": "PL",
    "061": "CZ",
    "063": "SK",
    "064": "HU",
    "066": "RO",
    "068": "BG",
    "091": "SI",
    "092": "HR",
    "093": "BA",
    "096": "MK",
    "097": "ME",
    "098": "RS",
    "600": "CY",
    "1110": "EU15",
    "2027": "EU27_2020",
}

ISO_TO_PRODCOM_MAP: Dict[str, str] = {iso: code for code, iso in PRODCOM_TO_ISO_MAP.items()}

SPECIAL_MAPPINGS: Dict[str, str] = {
    "EU27TOTALS": "EU27_2020",
    "EU15TOTALS": "EU15",
    "EU27": "EU27_2020",
}

EU_AGGREGATE_CODES = frozenset({"EU15", "EU27_2020", "EU28"})

COUNTRY_NAMES: Dict[str, str] = {
    "FR": "France",
    "NL": "Netherlands",
    "DE": "Germany",
    "IT": "Italy",
    "UK": "United Kingdom",
    "IE": "Ireland",
    "DK": "Denmark",
    "GR": "Greece",
    "PT": "Portugal",
    "ES": "Spain",
    "BE": "Belgium",
    "LU": "Luxembourg",
    "IS": "Iceland",
    "NO": "Norway",
    "SE": "Sweden",
    "FI": "Finland",
    "AT": "Austria",
    "MT": "Malta",
    "EE": "Estonia",
    "LV": "Latvia",
    "LT": "Lithuania",
    "PL": "Poland",
    "CZ": "Czechia",
    "SK": "Slovakia",
    "HU": "Hungary",
    "RO": "Romania",
    "BG": "Bulgaria",
    "SI": "Slovenia",
    "HR": "Croatia",
    "BA": "Bosnia and Herzegovina",
    "MK": "North Macedonia",
    "ME": "Montenegro",
    "RS": "Serbia",
    "CY": "Cyprus",
    "EU15": "EU15 Total",
    "EU27_2020": "EU27 Total (2020)",
}


def harmonize_country_code(code: str, source: SourceSystem) -> str:
    """
    Harmonize a country code to the canonical ISO code space.

    Args:
        code: Country code as reported by the source
        source: Source system the code comes from

    Returns:
        Harmonized code, or the stripped input when no mapping exists

    Examples:
        harmonize_country_code("001", SourceSystem.PRODCOM)  # "FR"
        harmonize_country_code("FR", SourceSystem.COMEXT)     # "FR"
        harmonize_country_code("2027", SourceSystem.PRODCOM)  # "EU27_2020"
    """
    source = SourceSystem(source)
    code = str(code).strip()

    if source is SourceSystem.COMEXT:
        return SPECIAL_MAPPINGS.get(code, code)

    # Declarant codes read back as integers lose their leading zeros
    if code.isdigit() and len(code) < 3:
        code = code.zfill(3)

    if code in PRODCOM_TO_ISO_MAP:
        return PRODCOM_TO_ISO_MAP[code]
    if code in SPECIAL_MAPPINGS:
        return SPECIAL_MAPPINGS[code]

    logger.warning(f"No mapping found for country code: {code} (source: {source.value})")
    return code


def harmonize_series(codes: pd.Series, source: SourceSystem) -> pd.Series:
    """Harmonize a Series of codes, mapping each distinct code once."""
    distinct = codes.dropna().astype(str).unique()
    lookup = {code: harmonize_country_code(code, source) for code in distinct}
    return codes.astype(str).map(lookup)


def geo_level(geo: str) -> str:
    """Return "EU" for aggregate pseudo-codes and "country" otherwise."""
    return "EU" if geo in EU_AGGREGATE_CODES or str(geo).startswith("EU") else "country"


def get_country_code_mapping() -> pd.DataFrame:
    """PRODCOM declarant codes with ISO codes and names, written as the country_code_mapping table."""
    rows = [
        {"prodcom_code": code, "iso_code": iso, "country_name": COUNTRY_NAMES.get(iso, "")}
        for code, iso in sorted(PRODCOM_TO_ISO_MAP.items())
    ]
    return pd.DataFrame(rows, columns=["prodcom_code", "iso_code", "country_name"])
