# WORKFLOW: Coercion of raw text values into tagged numeric values.
# Used by: Production harmonization, trade harmonization, collection rate builder
# Functions:
# 1. coerce_value() - Coerce one raw value into a CoercedValue (NUMBER | UNPARSEABLE | MISSING)
# 2. coerce_series() - Vectorized coercion of a pandas Series into number + kind columns
#
# Raw statistical extracts store numbers as text with flags such as ":C" (confidential)
# or footnote letters. Every raw value goes through this module exactly once.

"""
Coercion of raw text values into tagged numeric values.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import numpy as np
import pandas as pd

_MISSING_TOKENS = {"", ":", "nan", "none", "null", "na", "n/a"}


class ValueKind(str, Enum):
    NUMBER = "number"
    UNPARSEABLE = "unparseable"
    MISSING = "missing"


@dataclass(frozen=True)
class CoercedValue:
    kind: ValueKind
    number: Optional[float] = None
    raw: Any = None

    @property
    def is_number(self) -> bool:
        return self.kind is ValueKind.NUMBER


def _is_missing(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, float) and math.isnan(raw):
        return True
    if raw is pd.NA or raw is pd.NaT:
        return True
    return isinstance(raw, str) and raw.strip().lower() in _MISSING_TOKENS


def coerce_value(raw: Any) -> CoercedValue:
    """
    Coerce a raw value into a tagged value.

    Args:
        raw: Value as read from the raw table (usually text)

    Returns:
        CoercedValue tagged NUMBER, UNPARSEABLE or MISSING
    """
    if _is_missing(raw):
        return CoercedValue(ValueKind.MISSING, None, raw)

    if isinstance(raw, bool):
        return CoercedValue(ValueKind.UNPARSEABLE, None, raw)

    if isinstance(raw, (int, float, np.integer, np.floating)):
        number = float(raw)
        if math.isinf(number):
            return CoercedValue(ValueKind.UNPARSEABLE, None, raw)
        return CoercedValue(ValueKind.NUMBER, number, raw)

    text = str(raw).strip().replace(" ", "")
    try:
        number = float(text)
    except ValueError:
        return CoercedValue(ValueKind.UNPARSEABLE, None, raw)

    if math.isnan(number) or math.isinf(number):
        return CoercedValue(ValueKind.UNPARSEABLE, None, raw)
    return CoercedValue(ValueKind.NUMBER, number, raw)


def coerce_series(values: pd.Series) -> pd.DataFrame:
    """
    Coerce a Series of raw values.

    Args:
        values: Raw values

    Returns:
        DataFrame indexed like ``values`` with columns ``number`` (float, NaN unless
        NUMBER) and ``kind`` (ValueKind value as string)
    """
    coerced = [coerce_value(raw) for raw in values.tolist()]
    return pd.DataFrame(
        {
            "number": [c.number if c.number is not None else np.nan for c in coerced],
            "kind": [c.kind.value for c in coerced],
        },
        index=values.index,
    )
