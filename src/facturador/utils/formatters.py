from __future__ import annotations

from datetime import date
from decimal import Decimal


def format_amount(value: Decimal) -> str:
    """Wire format for amounts: fixed two decimals, dot separator."""
    return f"{value:.2f}"


def format_wire_date(value: date) -> str:
    """Wire format for dates: YYYYMMDD."""
    return value.strftime("%Y%m%d")
