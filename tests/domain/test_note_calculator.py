"""
Note Calculator tests.

Staged rounding: every derived amount is rounded to two places when it is
computed, and the rounded value feeds the next step.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from notes_kernel.domain.calculator import Levies, compute_breakdown

D = Decimal

money = st.decimals(
    min_value=D("0"), max_value=D("1000000000"), places=2,
    allow_nan=False, allow_infinity=False,
)
percent = st.decimals(
    min_value=D("0"), max_value=D("100"), places=4,
    allow_nan=False, allow_infinity=False,
)
levy = st.decimals(
    min_value=D("0"), max_value=D("100000"), places=2,
    allow_nan=False, allow_infinity=False,
)


class TestWorkedExamples:
    def test_full_breakdown(self):
        result = compute_breakdown(
            D("100000"), D("10"), D("7.5"), D("2"),
            Levies(niacom=D("50"), ncrib=D("25"), ed_tax=D("10")),
        )

        assert result.brokerage_amount == D("10000.00")
        assert result.vat_on_brokerage == D("750.00")
        assert result.agent_commission_amount == D("2000.00")
        assert result.net_brokerage == D("8000.00")
        assert result.total_levies == D("85.00")
        assert result.net_amount_due == D("89165.00")

    def test_zero_brokerage_leaves_gross_due(self):
        result = compute_breakdown(D("50000"), D("0"), D("7.5"), D("0"))

        assert result.brokerage_amount == D("0.00")
        assert result.vat_on_brokerage == D("0.00")
        assert result.agent_commission_amount == D("0.00")
        assert result.net_brokerage == D("0.00")
        assert result.net_amount_due == D("50000.00")

    def test_zero_gross_yields_zero_breakdown(self):
        result = compute_breakdown(D("0"), D("10"), D("7.5"), D("2"))

        assert result.gross_premium == D("0.00")
        assert result.brokerage_amount == D("0.00")
        assert result.vat_on_brokerage == D("0.00")
        assert result.net_amount_due == D("0.00")

    def test_vat_is_computed_on_rounded_brokerage(self):
        # brokerage 12.345 -> 12.35, then VAT 12.35 * 7.5% = 0.92625 -> 0.93
        result = compute_breakdown(D("123.45"), D("10"), D("7.5"), D("0"))

        assert result.brokerage_amount == D("12.35")
        assert result.vat_on_brokerage == D("0.93")
        assert result.net_amount_due == D("110.17")

    def test_half_cent_rounds_away_from_zero(self):
        # 0.05 * 10% = 0.005 -> 0.01
        result = compute_breakdown(D("0.05"), D("10"), D("0"), D("0"))

        assert result.brokerage_amount == D("0.01")

    def test_negative_net_brokerage_when_commission_exceeds_brokerage(self):
        result = compute_breakdown(D("1000"), D("5"), D("0"), D("8"))

        assert result.net_brokerage == D("-30.00")

    def test_levies_default_to_zero(self):
        result = compute_breakdown(D("1000"), D("10"), D("7.5"), D("0"))

        assert result.total_levies == D("0.00")
        assert result.net_amount_due == D("892.50")


class TestBreakdownProperties:
    @given(gross=money, brokerage=percent, vat=percent, commission=percent,
           niacom=levy, ncrib=levy, ed_tax=levy)
    @settings(max_examples=200, deadline=None)
    def test_every_amount_has_two_places(self, gross, brokerage, vat, commission,
                                         niacom, ncrib, ed_tax):
        result = compute_breakdown(
            gross, brokerage, vat, commission, Levies(niacom, ncrib, ed_tax),
        )
        for value in (
            result.gross_premium,
            result.brokerage_amount,
            result.vat_on_brokerage,
            result.agent_commission_amount,
            result.net_brokerage,
            result.total_levies,
            result.net_amount_due,
        ):
            assert value == value.quantize(D("0.01"))

    @given(gross=money, brokerage=percent, vat=percent, commission=percent,
           niacom=levy, ncrib=levy, ed_tax=levy)
    @settings(max_examples=200, deadline=None)
    def test_net_due_reconciles_with_rounded_parts(self, gross, brokerage, vat,
                                                   commission, niacom, ncrib, ed_tax):
        result = compute_breakdown(
            gross, brokerage, vat, commission, Levies(niacom, ncrib, ed_tax),
        )
        assert result.net_amount_due == (
            result.gross_premium
            - result.brokerage_amount
            - result.vat_on_brokerage
            - result.total_levies
        )
        assert result.net_brokerage == (
            result.brokerage_amount - result.agent_commission_amount
        )

    @given(gross=money, brokerage=percent)
    @settings(max_examples=100, deadline=None)
    def test_brokerage_never_exceeds_gross(self, gross, brokerage):
        result = compute_breakdown(gross, brokerage, D("0"), D("0"))

        assert D("0") <= result.brokerage_amount <= result.gross_premium

    @given(gross=money, brokerage=percent, vat=percent, commission=percent)
    @settings(max_examples=100, deadline=None)
    def test_deterministic(self, gross, brokerage, vat, commission):
        assert compute_breakdown(gross, brokerage, vat, commission) == compute_breakdown(
            gross, brokerage, vat, commission,
        )


@pytest.mark.parametrize(
    "gross,pct,expected",
    [
        (D("333.33"), D("33.3333"), D("111.11")),
        (D("1000.01"), D("15"), D("150.00")),
        (D("999.99"), D("12.5"), D("125.00")),
    ],
)
def test_brokerage_rounding_cases(gross, pct, expected):
    assert compute_breakdown(gross, pct, D("0"), D("0")).brokerage_amount == expected
