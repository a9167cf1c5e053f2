from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

_CUIT_WEIGHTS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)


def parse_decimal(value: object) -> Decimal:
    """Parse a numeric value into a finite Decimal.

    Raises ValueError for empty, non-numeric or non-finite input.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError("Importe vacio")
    try:
        d = Decimal(str(value).strip())
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"Importe invalido: '{value}'") from None
    return d


def validate_monetary(value: object) -> str:
    """Validate and normalize a monetary value to a two-decimal string.

    Raises ValueError for invalid or non-positive values.
    """
    d = parse_decimal(value)
    if d <= 0:
        raise ValueError(f"El importe debe ser positivo: '{value}'")
    return f"{d:.2f}"


def validate_date(value: object) -> date:
    """Validate an ISO date (YYYY-MM-DD) or a date/datetime instance."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        raise ValueError("Fecha vacia")
    text = str(value)
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValueError(f"Fecha invalida: '{value}'. Use YYYY-MM-DD.") from None


def normalize_document_number(value: str) -> str:
    """Strip separators from a CUIT/DNI ("20-12345678-6" -> "20123456786")."""
    return re.sub(r"[-.\s]", "", value or "")


def is_valid_cuit(value: str) -> bool:
    """Check CUIT/CUIL length and check digit."""
    cuit = normalize_document_number(value)
    if not re.fullmatch(r"\d{11}", cuit):
        return False
    total = sum(int(cuit[i]) * w for i, w in enumerate(_CUIT_WEIGHTS))
    check = 11 - (total % 11)
    if check == 11:
        check = 0
    elif check == 10:
        return False
    return check == int(cuit[10])


def validate_cuit(value: str) -> str:
    """Validate a CUIT and return it without separators."""
    if not is_valid_cuit(value):
        raise ValueError(f"CUIT invalido: '{value}'")
    return normalize_document_number(value)
