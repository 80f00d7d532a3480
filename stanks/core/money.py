"""Fixed-point monetary model.

Currency is an integer count of micros (1 display unit = 1,000,000 micros) and
share quantities are an integer count of units (1 display share = 10,000
units). Intermediate products use Python integers, so nothing wraps; results
that leave the signed 64-bit column range raise ``MonetaryOverflowError``.

Usage:
    from stanks.core.money import notional, trading_fee, max_affordable_buy

    cost = notional(price_micros, quantity_units)
    fee = trading_fee(cost)
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import NamedTuple

from .exceptions import InvalidSymbolError, MonetaryOverflowError, ValidationError


MICROS_PER_UNIT = 1_000_000
UNITS_PER_SHARE = 10_000
BPS_DENOMINATOR = 10_000

INT64_MAX = 2**63 - 1
INT64_MIN = -(2**63)

STARTER_BALANCE_MICROS = 25_000 * MICROS_PER_UNIT
BUSINESS_UNLOCK_MICROS = 250_000 * MICROS_PER_UNIT
MIN_DEBT_MICROS = 5_000 * MICROS_PER_UNIT
MAX_DEBT_MICROS = 100_000 * MICROS_PER_UNIT
DEBT_LIMIT_BPS = 3_500

TRADING_FEE_BPS = 15

SYMBOL_PATTERN = re.compile(r"^[A-Z]{6}$")


class AffordableBuy(NamedTuple):
    """Largest buy that fits a budget, with its notional and fee."""

    quantity_units: int
    notional_micros: int
    fee_micros: int


# =============================================================================
# INTEGER HELPERS
# =============================================================================


def checked_int64(value: int, what: str = "value") -> int:
    """Return ``value`` if it fits a signed 64-bit column, else raise."""
    if value > INT64_MAX or value < INT64_MIN:
        raise MonetaryOverflowError(
            f"{what} out of range",
            details={"field": what, "value": str(value)},
        )
    return value


def round_div(numerator: int, denominator: int) -> int:
    """Integer division rounded half away from zero."""
    if denominator == 0:
        raise ZeroDivisionError("round_div by zero")
    sign = -1 if (numerator < 0) != (denominator < 0) else 1
    q, r = divmod(abs(numerator), abs(denominator))
    if 2 * r >= abs(denominator):
        q += 1
    return sign * q


def trunc_div(numerator: int, denominator: int) -> int:
    """Integer division truncated toward zero."""
    q = abs(numerator) // abs(denominator)
    return q if (numerator < 0) == (denominator < 0) else -q


def apply_bps(amount: int, bps: int) -> int:
    """``amount * bps / 10000`` rounded half away from zero."""
    return round_div(amount * bps, BPS_DENOMINATOR)


# =============================================================================
# PRICING
# =============================================================================


def notional(price_micros: int, quantity_units: int) -> int:
    """Value in micros of ``quantity_units`` at ``price_micros`` per share."""
    return checked_int64(
        trunc_div(price_micros * quantity_units, UNITS_PER_SHARE), "notional"
    )


def trading_fee(notional_micros: int, fee_bps: int = TRADING_FEE_BPS) -> int:
    """Trading fee on a notional, rounded half away from zero."""
    return apply_bps(notional_micros, fee_bps)


def average_cost(total_cost_micros: int, quantity_units: int) -> int:
    """Per-share cost basis of ``total_cost_micros`` spread over ``quantity_units``."""
    if quantity_units <= 0:
        raise ValidationError("Quantity must be positive to average cost")
    return checked_int64(
        trunc_div(total_cost_micros * UNITS_PER_SHARE, quantity_units), "avg_price"
    )


def debt_ceiling(peak_net_worth_micros: int) -> int:
    """How far below zero a wallet may go, sized from its peak net worth."""
    raw = round_div(peak_net_worth_micros * DEBT_LIMIT_BPS, BPS_DENOMINATOR)
    return max(MIN_DEBT_MICROS, min(MAX_DEBT_MICROS, raw))


def buy_cost(price_micros: int, quantity_units: int) -> int:
    """Notional plus trading fee, unchecked, for affordability searches."""
    gross = trunc_div(price_micros * quantity_units, UNITS_PER_SHARE)
    return gross + trading_fee(gross)


def max_affordable_buy(
    price_micros: int, balance_micros: int, ceiling_micros: int
) -> AffordableBuy:
    """Largest quantity whose notional plus fee fits ``balance + ceiling``.

    The fee is rounded per order, so cost is only piecewise linear in quantity
    and the bound is found by binary search instead of inverting the formula.
    """
    budget = balance_micros + ceiling_micros
    if price_micros <= 0 or budget <= 0:
        return AffordableBuy(0, 0, 0)

    # First quantity whose notional alone exceeds the budget
    lo = 0
    hi = ((budget + 1) * UNITS_PER_SHARE + price_micros - 1) // price_micros
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if buy_cost(price_micros, mid) <= budget:
            lo = mid
        else:
            hi = mid - 1

    gross = notional(price_micros, lo)
    return AffordableBuy(lo, gross, trading_fee(gross))


def portfolio_value(holdings: list[tuple[int, int]]) -> int:
    """Mark-to-market value of ``(quantity_units, price_micros)`` pairs."""
    return checked_int64(
        sum(trunc_div(qty * price, UNITS_PER_SHARE) for qty, price in holdings),
        "portfolio_value",
    )


# =============================================================================
# CONVERSIONS
# =============================================================================


def _to_decimal(value: float | int | str | Decimal, what: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid {what}", details={what: str(value)}) from exc
    if not result.is_finite():
        raise ValidationError(f"Invalid {what}", details={what: str(value)})
    return result


def to_micros(amount: float | int | str | Decimal) -> int:
    """Display currency to micros, rounded half away from zero."""
    scaled = _to_decimal(amount, "amount") * MICROS_PER_UNIT
    return checked_int64(int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP)), "amount")


def from_micros(micros: int) -> float:
    return micros / MICROS_PER_UNIT


def shares_to_units(shares: float | int | str | Decimal) -> int:
    """Display shares to units; rejects non-positive quantities."""
    scaled = _to_decimal(shares, "quantity") * UNITS_PER_SHARE
    units = int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    if units <= 0:
        raise ValidationError("Quantity must be positive", details={"quantity": str(shares)})
    return checked_int64(units, "quantity")


def units_to_shares(units: int) -> float:
    return units / UNITS_PER_SHARE


# =============================================================================
# SYMBOLS
# =============================================================================


def validate_symbol(symbol: str) -> str:
    """Return the trimmed symbol if it is exactly six uppercase letters."""
    candidate = (symbol or "").strip()
    if not SYMBOL_PATTERN.fullmatch(candidate):
        raise InvalidSymbolError(details={"symbol": symbol})
    return candidate


def normalize_symbol(symbol: str) -> str:
    """Uppercase user input, then validate it."""
    return validate_symbol((symbol or "").strip().upper())
