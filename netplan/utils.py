"""
Utility Functions Module

Numeric helpers shared by the planner, optimizer and reporting layers.

Key Functions:
    - Guarded division and bounding
    - Coercion of spreadsheet cells to numbers and labels
    - Money, count and percentage formatting for console and workbook output
"""

import math
import numpy as np
from typing import Optional, Any

from .config import (
    OptimizationConstants,
)


# ============================================================================
# ARITHMETIC
# ============================================================================

def safe_divide(
        numerator: float,
        denominator: float,
        default: float = 0.0,
        epsilon: Optional[float] = None
) -> float:
    """
    Divide, falling back to ``default`` when the denominator is near zero.

    Args:
        numerator: Dividend
        denominator: Divisor
        default: Returned when |denominator| is below epsilon
        epsilon: Near-zero threshold; OptimizationConstants.EPSILON when omitted

    Returns:
        Quotient, or default

    Example:
        >>> safe_divide(30000, 1000)
        30.0
        >>> safe_divide(30000, 0, default=float("inf"))
        inf
    """
    threshold = OptimizationConstants.EPSILON if epsilon is None else epsilon
    if abs(denominator) < threshold:
        return default
    return numerator / denominator


def clamp(value: float, lower: float, upper: float) -> float:
    """Bound value to [lower, upper]."""
    return min(upper, max(lower, value))


def round_up_to(value: float, step: int) -> float:
    """Round value up to the next multiple of step (value 0 stays 0)."""
    if value <= 0:
        return 0.0
    return float(math.ceil(value / step) * step)


# ============================================================================
# CELL COERCION
# ============================================================================

def to_number(value: Any) -> Optional[float]:
    """
    Coerce a spreadsheet cell to a finite float.

    Strings are stripped of currency symbols, thousands separators and
    percent signs before parsing.

    Returns:
        Finite float, or None when the cell is empty or not numeric
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, np.integer, np.floating)):
        number = float(value)
        return number if math.isfinite(number) else None

    text = str(value).strip().replace(",", "").replace("$", "").replace("%", "")
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def to_text(value: Any) -> str:
    """Coerce a cell to a trimmed string ('' for empty cells)."""
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def finite_or_none(value: float) -> Optional[float]:
    """JSON-safe float: inf and NaN become None."""
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


# ============================================================================
# DISPLAY
# ============================================================================

def format_currency(value: float, decimals: int = 0) -> str:
    """
    Dollar amount with thousands separators.

    Example:
        >>> format_currency(2520000)
        '$2,520,000'
    """
    return "${:,.{}f}".format(value, decimals)


def format_percentage(value: float, decimals: int = 1) -> str:
    """Fraction rendered as a percent, e.g. 0.85 -> '85.0%'."""
    return "{:.{}f}%".format(value * 100, decimals)


def format_number(value: float, decimals: int = 0) -> str:
    return "{:,.{}f}".format(value, decimals)
