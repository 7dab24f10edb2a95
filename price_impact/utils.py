# price_impact/utils.py
from __future__ import annotations

from datetime import date
from enum import Enum


class Confidence(str, Enum):
    HIGH = "High"
    MED = "Med"
    LOW = "Low"


def clamp(value: float, lo: float, hi: float) -> float:
    """
    max(lo, min(hi, value)).
    An inverted range (lo > hi) collapses to lo.
    """
    return max(lo, min(hi, value))


def smoothstep(x: float) -> float:
    """0 at x<=0, 1 at x>=1, t^2 * (3 - 2t) in between."""
    t = clamp(x, 0.0, 1.0)
    return t * t * (3 - 2 * t)


def confidence_from_count(count: int, high: int, med: int) -> Confidence:
    if count >= high:
        return Confidence.HIGH
    if count >= med:
        return Confidence.MED
    return Confidence.LOW


# -----------------------
# Display formatting
# -----------------------
def format_currency(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.0f}"


def format_currency_with_cents(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_percent(value: float, decimals: int = 1) -> str:
    return f"{value * 100:.{decimals}f}%"


def format_percent_change(value: float, decimals: int = 1) -> str:
    sign = "+" if value >= 0 else ""
    return f"{sign}{value * 100:.{decimals}f}%"


def format_number(value: float) -> str:
    return f"{value:,}"


def format_date(value: date) -> str:
    # e.g. "Mar 5, 2024"
    return f"{value.strftime('%b')} {value.day}, {value.year}"
