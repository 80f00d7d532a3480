"""Tests for the fixed-point monetary model."""

import pytest

from stanks.core.exceptions import InvalidSymbolError, MonetaryOverflowError, ValidationError
from stanks.core.money import (
    INT64_MAX,
    MAX_DEBT_MICROS,
    MICROS_PER_UNIT,
    MIN_DEBT_MICROS,
    UNITS_PER_SHARE,
    apply_bps,
    average_cost,
    buy_cost,
    debt_ceiling,
    from_micros,
    max_affordable_buy,
    normalize_symbol,
    notional,
    portfolio_value,
    round_div,
    shares_to_units,
    to_micros,
    trading_fee,
    trunc_div,
    validate_symbol,
)


# =============================================================================
# Integer helpers
# =============================================================================


class TestRounding:
    def test_round_div_half_away_from_zero(self):
        assert round_div(5, 2) == 3
        assert round_div(-5, 2) == -3
        assert round_div(4, 3) == 1
        assert round_div(-4, 3) == -1

    def test_round_div_by_zero(self):
        with pytest.raises(ZeroDivisionError):
            round_div(1, 0)

    def test_trunc_div_toward_zero(self):
        assert trunc_div(7, 2) == 3
        assert trunc_div(-7, 2) == -3

    def test_apply_bps(self):
        assert apply_bps(10_000, 15) == 15
        assert apply_bps(-10_000, 15) == -15


# =============================================================================
# Pricing
# =============================================================================


class TestNotional:
    def test_two_and_a_half_shares(self):
        """150 per share times 2.5 shares is 375."""
        price = 150 * MICROS_PER_UNIT
        qty = 25 * UNITS_PER_SHARE // 10
        assert notional(price, qty) == 375 * MICROS_PER_UNIT

    def test_matches_exact_integer_product(self):
        for price, qty in [(1, 1), (999_999, 3), (840 * MICROS_PER_UNIT, 12_345), (7, 9_999)]:
            assert notional(price, qty) == price * qty // UNITS_PER_SHARE

    def test_overflow_raises_instead_of_wrapping(self):
        with pytest.raises(MonetaryOverflowError):
            notional(INT64_MAX, 2 * UNITS_PER_SHARE)

    def test_portfolio_value(self):
        holdings = [(UNITS_PER_SHARE, 5 * MICROS_PER_UNIT), (UNITS_PER_SHARE // 2, 2 * MICROS_PER_UNIT)]
        assert portfolio_value(holdings) == 6 * MICROS_PER_UNIT


class TestFees:
    def test_fifteen_bps(self):
        assert trading_fee(MICROS_PER_UNIT) == 1_500

    def test_rounds_half_away_from_zero(self):
        assert trading_fee(333) == 0
        assert trading_fee(334) == 1
        assert trading_fee(100, fee_bps=50) == 1

    def test_average_cost_requires_quantity(self):
        with pytest.raises(ValidationError):
            average_cost(100, 0)

    def test_average_cost_weighted(self):
        # 1 share at 100 plus 1 share at 200
        total = 300 * MICROS_PER_UNIT
        assert average_cost(total, 2 * UNITS_PER_SHARE) == 150 * MICROS_PER_UNIT


class TestDebtCeiling:
    def test_floor_and_cap(self):
        assert debt_ceiling(0) == MIN_DEBT_MICROS
        assert debt_ceiling(10_000 * MICROS_PER_UNIT) == MIN_DEBT_MICROS
        assert debt_ceiling(1_000_000 * MICROS_PER_UNIT) == MAX_DEBT_MICROS

    def test_thirty_five_percent_of_peak(self):
        assert debt_ceiling(25_000 * MICROS_PER_UNIT) == 8_750 * MICROS_PER_UNIT

    def test_monotonic_in_peak(self):
        previous = debt_ceiling(-MICROS_PER_UNIT)
        for peak in range(0, 400_000 * MICROS_PER_UNIT, 7_919 * MICROS_PER_UNIT):
            current = debt_ceiling(peak)
            assert MIN_DEBT_MICROS <= current <= MAX_DEBT_MICROS
            assert current >= previous
            previous = current


class TestMaxAffordableBuy:
    def _assert_boundary(self, price, balance, ceiling):
        best = max_affordable_buy(price, balance, ceiling)
        budget = balance + ceiling
        assert best.notional_micros + best.fee_micros <= budget
        assert buy_cost(price, best.quantity_units + 1) > budget
        assert best.notional_micros == notional(price, best.quantity_units)
        assert best.fee_micros == trading_fee(best.notional_micros)
        return best

    def test_boundary_at_840(self):
        """Largest affordable lot at 840 fits the budget and one more unit does not."""
        best = self._assert_boundary(
            840 * MICROS_PER_UNIT,
            19_025 * MICROS_PER_UNIT,
            debt_ceiling(25_000 * MICROS_PER_UNIT),
        )
        assert best.quantity_units > 0

    def test_boundary_for_starter_wallet(self):
        self._assert_boundary(
            840 * MICROS_PER_UNIT,
            25_000 * MICROS_PER_UNIT,
            debt_ceiling(25_000 * MICROS_PER_UNIT),
        )

    @pytest.mark.parametrize("price", [1, 3, 999, 1_234_567, 77 * MICROS_PER_UNIT])
    def test_boundary_across_prices(self, price):
        self._assert_boundary(price, 1_000 * MICROS_PER_UNIT, MIN_DEBT_MICROS)

    def test_nothing_affordable(self):
        best = max_affordable_buy(100 * MICROS_PER_UNIT, -MIN_DEBT_MICROS, MIN_DEBT_MICROS)
        assert best.quantity_units == 0
        assert best.notional_micros == 0


# =============================================================================
# Conversions & symbols
# =============================================================================


class TestConversions:
    def test_to_micros(self):
        assert to_micros("1.5") == 1_500_000
        assert to_micros(0.0000005) == 1
        assert to_micros(-0.0000005) == -1

    def test_from_micros(self):
        assert from_micros(1_500_000) == 1.5
        assert from_micros(-250_000) == -0.25

    @pytest.mark.parametrize("bad", ["abc", "nan", "inf"])
    def test_to_micros_rejects_garbage(self, bad):
        with pytest.raises(ValidationError):
            to_micros(bad)

    def test_shares_to_units(self):
        assert shares_to_units(1.25) == 12_500

    def test_shares_to_units_rejects_non_positive(self):
        with pytest.raises(ValidationError):
            shares_to_units("0")


class TestSymbols:
    @pytest.mark.parametrize("symbol", ["ABCDEF", "NIMBUS", "COBOLT"])
    def test_valid(self, symbol):
        assert validate_symbol(symbol) == symbol

    @pytest.mark.parametrize("symbol", ["abc123", "ABC12", "TOOLONG7", "A_BCD1", "", None])
    def test_invalid(self, symbol):
        with pytest.raises(InvalidSymbolError):
            validate_symbol(symbol)

    def test_normalize_uppercases(self):
        assert normalize_symbol(" nimbus ") == "NIMBUS"
