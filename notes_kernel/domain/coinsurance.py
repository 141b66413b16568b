"""
Co-Insurance Splitter -- per-insurer shares of a co-insured premium.

Pure function, zero I/O.

Each share amount is ``round2(gross * percentage / 100)`` on its own.  The
rounded amounts are NOT forced to add up to ``round2(gross)``; the residue
is at most half a cent per share, i.e. ``len(shares) * 0.005`` in total.
Inputs whose percentages do not total 100 (within the tolerance) are
rejected, never normalized.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from notes_kernel.db.types import round_money
from notes_kernel.exceptions import InvalidCoInsuranceSplit

DEFAULT_TOLERANCE = Decimal("0.01")

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ShareInput:
    insurer_id: str
    percentage: Decimal


@dataclass(frozen=True)
class ShareAmount:
    insurer_id: str
    percentage: Decimal
    amount: Decimal


def check_reconciles(
    shares: Sequence[ShareInput],
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Decimal:
    """
    Return the percentage total, or raise if it is not 100 within tolerance.

    Raises:
        InvalidCoInsuranceSplit: Empty list, or total outside 100 +- tolerance.
    """
    if not shares:
        raise InvalidCoInsuranceSplit(
            None, tolerance, reason="Co-insurance requires at least one share",
        )
    total = sum((share.percentage for share in shares), Decimal("0"))
    if abs(total - _HUNDRED) > tolerance:
        raise InvalidCoInsuranceSplit(total, tolerance)
    return total


def split_shares(
    gross: Decimal,
    shares: Sequence[ShareInput],
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> list[ShareAmount]:
    """
    Split ``gross`` across insurers by percentage, preserving input order.

    Raises:
        InvalidCoInsuranceSplit: If the percentages do not reconcile to 100.
    """
    check_reconciles(shares, tolerance)
    return [
        ShareAmount(
            insurer_id=share.insurer_id,
            percentage=share.percentage,
            amount=round_money(gross * share.percentage / _HUNDRED),
        )
        for share in shares
    ]


def residue(gross: Decimal, amounts: Sequence[ShareAmount]) -> Decimal:
    """Difference between round2(gross) and the sum of the rounded shares."""
    return round_money(gross) - sum((a.amount for a in amounts), Decimal("0"))
