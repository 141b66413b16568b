"""
Module: notes_kernel.db.types
Responsibility: Annotated column type aliases and the single sanctioned rounding
    function for monetary values.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - round_money() is the ONLY rounding function for financial values.  It
      rounds half away from zero (ROUND_HALF_UP in the decimal module rounds
      the magnitude, so -0.005 -> -0.01).
    - No floats anywhere.  Values arriving as float are converted through
      str() so that 7.5 becomes Decimal("7.5"), not its binary expansion.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Percentage input such as 7.5 or 33.3333
Percentage = Annotated[Decimal, Numeric(9, 4)]

# SHA-256 hash as hex string (64 characters)
ContentHash = Annotated[str, String(64)]

# External registry identifiers (clients, policies, insurers, bank accounts)
PartyRef = Annotated[str, String(64)]

MONEY_DECIMAL_PLACES = 2

# Must match the scale of the Percentage column
PERCENTAGE_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTUM = {places: Decimal(1).scaleb(-places) for places in range(0, 10)}


def to_decimal(value: object) -> Decimal:
    """
    Convert an int, str, float or Decimal to Decimal without binary noise.

    Raises:
        InvalidOperation: If the value is not numeric (including NaN/Infinity).
    """
    if isinstance(value, bool):
        raise InvalidOperation(f"Boolean is not a numeric amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        result = Decimal(str(value).strip())
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        raise InvalidOperation(f"Unsupported numeric type: {type(value).__name__}")
    if not result.is_finite():
        raise InvalidOperation(f"Non-finite amount: {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Postconditions: Returns value quantized with half-away-from-zero rounding
        by default.

    Example:
        round_money(Decimal("2.675")) -> Decimal("2.68")
        round_money(Decimal("-0.005")) -> Decimal("-0.01")
    """
    return value.quantize(_QUANTUM[decimal_places], rounding=rounding)


def fits_percentage_scale(value: Decimal) -> bool:
    """True if ``value`` is stored by the Percentage column without rounding."""
    quantum = _QUANTUM[PERCENTAGE_DECIMAL_PLACES]
    return value.is_finite() and value == value.quantize(quantum)
