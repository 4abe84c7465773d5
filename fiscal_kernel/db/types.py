"""
Module: fiscal_kernel.db.types
Responsibility: Annotated type aliases and rounding utilities for quantity,
    SC-equivalent and value columns.  Centralizes precision and rounding so
    that every model, engine and service quantizes identically.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    engines, services and selectors.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for stored quantities or amounts.  All use Decimal with
      LEDGER_DECIMAL_PLACES of scale.
    - round_ledger() is the ONLY sanctioned rounding function for ledger
      state; the fold quantizes after every step so a replay and the persisted
      checkpoint agree digit for digit.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from sqlalchemy import BigInteger, Numeric, String

# Quantities, SC-equivalents and values: 38 digits total, 9 decimal places
Amount = Annotated[Decimal, Numeric(38, 9)]

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# CFOP code (four digits, kept as text to preserve leading characters)
CfopCode = Annotated[str, String(4)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for descriptions
LongText = Annotated[str, String(4000)]


LEDGER_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def round_ledger(
    value: Decimal,
    decimal_places: int = LEDGER_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a ledger quantity or value to the stored scale.

    Preconditions: value is a finite Decimal.
    Postconditions: Returns value quantized to decimal_places.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """
    Coerce an int/str/float/Decimal into a Decimal.

    None and unparseable text return ``default``.  Floats go through ``str``
    so that 0.1 becomes Decimal("0.1"), not its binary expansion.
    """
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
