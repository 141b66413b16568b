"""
Note Calculator -- monetary breakdown of a Credit or Debit Note.

Responsibility:
    Turn gross premium, percentage inputs and statutory levies into the
    derived amounts printed on a note.

Architecture position:
    Kernel > Domain -- pure function, zero I/O.

Invariants enforced:
    - Staged rounding.  Each derived amount is rounded to two places
      (half away from zero) at the moment it is computed and the rounded
      value feeds every later step:

          brokerage_amount        = r2(gross * brokerage_pct / 100)
          vat_on_brokerage        = r2(brokerage_amount * vat_pct / 100)
          agent_commission_amount = r2(gross * agent_commission_pct / 100)
          net_brokerage           = r2(brokerage_amount - agent_commission_amount)
          total_levies            = r2(niacom + ncrib + ed_tax)
          net_amount_due          = r2(gross - brokerage_amount
                                          - vat_on_brokerage - total_levies)

      The figures must match a manually prepared note line by line, so
      this is not collapsed into a single expression.

Failure modes:
    - None.  Range checks (percentages in [0, 100], levies >= 0) belong to
      the caller; see domain/requests.py.
"""

from dataclasses import dataclass
from decimal import Decimal

from notes_kernel.db.types import round_money

_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


@dataclass(frozen=True)
class Levies:
    """Statutory and association charges deducted from the amount due."""

    niacom: Decimal = _ZERO
    ncrib: Decimal = _ZERO
    ed_tax: Decimal = _ZERO


@dataclass(frozen=True)
class Breakdown:
    """Every derived monetary figure of a note, each rounded to 2 places."""

    gross_premium: Decimal
    brokerage_amount: Decimal
    vat_on_brokerage: Decimal
    agent_commission_amount: Decimal
    net_brokerage: Decimal
    total_levies: Decimal
    net_amount_due: Decimal


def compute_breakdown(
    gross: Decimal,
    brokerage_pct: Decimal,
    vat_pct: Decimal,
    agent_commission_pct: Decimal,
    levies: Levies | None = None,
) -> Breakdown:
    """
    Compute the breakdown with staged two-decimal rounding.

    Example:
        compute_breakdown(Decimal("100000"), Decimal("10"), Decimal("7.5"),
                          Decimal("2"), Levies(Decimal("50"), Decimal("25"),
                          Decimal("10")))
        -> brokerage 10000.00, VAT 750.00, commission 2000.00,
           net brokerage 8000.00, levies 85.00, net due 89165.00
    """
    levies = levies or Levies()

    brokerage_amount = round_money(gross * brokerage_pct / _HUNDRED)
    vat_on_brokerage = round_money(brokerage_amount * vat_pct / _HUNDRED)
    agent_commission_amount = round_money(gross * agent_commission_pct / _HUNDRED)
    net_brokerage = round_money(brokerage_amount - agent_commission_amount)
    total_levies = round_money(levies.niacom + levies.ncrib + levies.ed_tax)
    net_amount_due = round_money(
        gross - brokerage_amount - vat_on_brokerage - total_levies
    )

    return Breakdown(
        gross_premium=round_money(gross),
        brokerage_amount=brokerage_amount,
        vat_on_brokerage=vat_on_brokerage,
        agent_commission_amount=agent_commission_amount,
        net_brokerage=net_brokerage,
        total_levies=total_levies,
        net_amount_due=net_amount_due,
    )
