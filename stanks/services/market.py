"""Market engine: regime state machine and per-stock price evolution.

Each tick draws, per season, an optional regime switch and then, per stock,
a slow anchor move and a price move made of regime drift, noise, mean
reversion toward the anchor and occasional shocks. Downside is clamped per
tick; upside is not.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.logging import get_logger
from stanks.domain.types import MarketRegime, VolatilityProfile
from stanks.repositories import seasons_orm, stocks_orm
from stanks.services.random_source import RandomSource

logger = get_logger("services.market")

MIN_PRICE_MICROS = 10_000  # 0.01 currency
MAX_PRICE_MICROS = 2_000_000_000_000_000  # 2 billion currency

ANCHOR_DRIFT_SHARE = 0.30
ANCHOR_SHOCK_PROB_SHARE = 0.20
ANCHOR_SHOCK_SCALE_SHARE = 0.40


@dataclass
class MarketStep:
    regime: MarketRegime
    regime_changed: bool
    stocks_updated: int


# =============================================================================
# PURE MATH
# =============================================================================


def random_regime(seed: float) -> MarketRegime:
    if seed < 0.33:
        return MarketRegime.BEAR
    if seed < 0.66:
        return MarketRegime.NEUTRAL
    return MarketRegime.BULL


def next_regime(
    current: MarketRegime, profile: VolatilityProfile, rng: RandomSource
) -> MarketRegime:
    """Keep ``current`` unless the switch roll fires, then draw a fresh regime."""
    if rng.random() < profile.regime_switch_prob:
        return random_regime(rng.random())
    return current


def normalish(seed: float) -> float:
    """Map a uniform [0, 1) draw to [-1, 1)."""
    return seed + seed - 1


def signed_shock(mag_seed: float, sign_seed: float, base: float) -> float:
    magnitude = base * (0.35 + 2.8 * mag_seed * mag_seed)
    return -magnitude if sign_seed < 0.5 else magnitude


def mean_reversion(price: int, anchor: int, strength: float) -> float:
    if anchor <= 0:
        return 0.0
    return strength * ((anchor - price) / anchor)


def evolve_price(price_micros: int, log_return: float, max_drop_per_tick: float) -> int:
    """Apply a log-return with the downside clamped; never returns below 1."""
    if price_micros <= 0:
        return 1
    ret = max(log_return, -max_drop_per_tick)
    raw = price_micros * math.exp(ret)
    # Half away from zero, matching the fee rounding
    return max(1, int(math.floor(raw + 0.5)))


def clamp_price(price_micros: int) -> int:
    return max(MIN_PRICE_MICROS, min(MAX_PRICE_MICROS, price_micros))


def anchor_return(regime: MarketRegime, profile: VolatilityProfile, rng: RandomSource) -> float:
    ret = ANCHOR_DRIFT_SHARE * regime.drift + profile.anchor_noise_scale * normalish(rng.random())
    if rng.random() < profile.shock_prob * ANCHOR_SHOCK_PROB_SHARE:
        ret += signed_shock(rng.random(), rng.random(), profile.shock_scale * ANCHOR_SHOCK_SCALE_SHARE)
    return ret


def price_return(
    price: int,
    anchor: int,
    regime: MarketRegime,
    profile: VolatilityProfile,
    rng: RandomSource,
) -> float:
    ret = (
        regime.drift
        + profile.noise_scale * normalish(rng.random())
        + mean_reversion(price, anchor, profile.mean_reversion)
    )
    if rng.random() < profile.shock_prob:
        ret += signed_shock(rng.random(), rng.random(), profile.shock_scale)
    if rng.random() < profile.extreme_shock_prob:
        ret += signed_shock(rng.random(), rng.random(), profile.extreme_shock_scale)
    return ret


def step_stock(
    price: int,
    anchor: int,
    regime: MarketRegime,
    profile: VolatilityProfile,
    rng: RandomSource,
) -> tuple[int, int]:
    """Next ``(price, anchor)`` for one stock.

    The price reverts toward the anchor as it stood before this tick.
    """
    next_anchor = clamp_price(
        evolve_price(anchor, anchor_return(regime, profile, rng), profile.max_drop_per_tick)
    )
    ret = price_return(price, anchor, regime, profile, rng)
    next_price = clamp_price(evolve_price(price, ret, profile.max_drop_per_tick))
    return next_price, next_anchor


# =============================================================================
# TICK STEP
# =============================================================================


async def advance_market(
    session: AsyncSession,
    season_id: int,
    profile: VolatilityProfile,
    rng: RandomSource,
    tick_at: datetime,
) -> MarketStep:
    """Move the regime and every stock of the season one tick forward."""
    state = await seasons_orm.get_regime(session, season_id, for_update=True)
    current = MarketRegime(state.regime)
    regime = next_regime(current, profile, rng)
    await seasons_orm.set_regime(session, state, regime)
    if regime is not current:
        logger.info(f"Season {season_id} regime {current.value} -> {regime.value}")

    stocks = await stocks_orm.lock_season_stocks(session, season_id)
    for stock in stocks:
        price, anchor = step_stock(
            stock.current_price_micros, stock.anchor_price_micros, regime, profile, rng
        )
        stock.current_price_micros = price
        stock.anchor_price_micros = anchor
        await stocks_orm.append_price(session, stock.id, price, tick_at)

    return MarketStep(regime=regime, regime_changed=regime is not current, stocks_updated=len(stocks))
