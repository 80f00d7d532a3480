"""Tests for the market engine."""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest

from stanks.core.money import MICROS_PER_UNIT
from stanks.database.transactions import run_in_transaction
from stanks.domain.types import (
    VOLATILITY_PROFILES,
    MarketRegime,
    resolve_volatility_profile,
)
from stanks.repositories import seasons_orm, stocks_orm
from stanks.services.market import (
    MAX_PRICE_MICROS,
    MIN_PRICE_MICROS,
    advance_market,
    clamp_price,
    evolve_price,
    next_regime,
    random_regime,
    signed_shock,
    step_stock,
)
from stanks.services.random_source import SharedRandom

MODERATE = VOLATILITY_PROFILES["moderate"]


class TestProfiles:
    def test_aliases_and_fallback(self):
        assert resolve_volatility_profile("mor").name == "moderate"
        assert resolve_volatility_profile(" WILD ").name == "wild"
        assert resolve_volatility_profile("nonsense").name == "moderate"
        assert resolve_volatility_profile(None).name == "moderate"

    def test_regime_drift(self):
        assert MarketRegime.BULL.drift == pytest.approx(0.0085)
        assert MarketRegime.BEAR.drift == pytest.approx(-0.0085)
        assert MarketRegime.NEUTRAL.drift == 0.0


class TestRegime:
    def test_random_regime_bands(self):
        assert random_regime(0.1) is MarketRegime.BEAR
        assert random_regime(0.5) is MarketRegime.NEUTRAL
        assert random_regime(0.9) is MarketRegime.BULL

    def test_switch_fires_below_probability(self, make_random):
        rng = make_random([0.01, 0.9])
        assert next_regime(MarketRegime.NEUTRAL, MODERATE, rng) is MarketRegime.BULL

    def test_no_switch_keeps_regime(self, make_random):
        rng = make_random([0.5])
        assert next_regime(MarketRegime.BEAR, MODERATE, rng) is MarketRegime.BEAR
        assert rng.calls == 1


class TestEvolvePrice:
    def test_downside_is_clamped(self):
        price = 1_000_000
        expected = int(math.floor(price * math.exp(-2.0) + 0.5))
        assert evolve_price(price, -10.0, 2.0) == expected

    def test_upside_is_not_clamped(self):
        price = 1_000_000
        expected = int(math.floor(price * math.exp(3.0) + 0.5))
        assert evolve_price(price, 3.0, 2.0) == expected

    def test_never_below_one_micro(self):
        assert evolve_price(1, -2.0, 2.0) == 1
        assert evolve_price(0, 0.5, 2.0) == 1
        assert evolve_price(-50, 0.5, 2.0) == 1

    def test_clamp_bounds(self):
        assert clamp_price(5) == MIN_PRICE_MICROS
        assert clamp_price(MAX_PRICE_MICROS * 3) == MAX_PRICE_MICROS

    def test_signed_shock(self):
        assert signed_shock(0.0, 0.1, 1.0) == pytest.approx(-0.35)
        assert signed_shock(1.0, 0.9, 1.0) == pytest.approx(3.15)


class TestStepStock:
    def test_quiet_tick_at_anchor_is_flat(self, make_random):
        rng = make_random(default=0.5)
        price = 100 * MICROS_PER_UNIT
        assert step_stock(price, price, MarketRegime.NEUTRAL, MODERATE, rng) == (price, price)
        # anchor noise, anchor shock roll, price noise, shock roll, extreme roll
        assert rng.calls == 5

    def test_reverts_toward_previous_anchor(self, make_random):
        rng = make_random(default=0.5)
        price, anchor = 80 * MICROS_PER_UNIT, 100 * MICROS_PER_UNIT
        next_price, next_anchor = step_stock(price, anchor, MarketRegime.NEUTRAL, MODERATE, rng)
        ret = MODERATE.mean_reversion * 0.2
        assert next_price == int(math.floor(price * math.exp(ret) + 0.5))
        assert next_anchor == anchor

    @pytest.mark.parametrize("profile_name", ["calm", "moderate", "wild"])
    def test_drop_per_tick_is_bounded(self, profile_name):
        profile = VOLATILITY_PROFILES[profile_name]
        rng = SharedRandom(seed=7)
        price, anchor = 50 * MICROS_PER_UNIT, 50 * MICROS_PER_UNIT
        for regime in [MarketRegime.BEAR] * 300 + [MarketRegime.BULL] * 300:
            floor = clamp_price(evolve_price(price, -profile.max_drop_per_tick, profile.max_drop_per_tick))
            price, anchor = step_stock(price, anchor, regime, profile, rng)
            assert price >= floor
            assert MIN_PRICE_MICROS <= price <= MAX_PRICE_MICROS
            assert MIN_PRICE_MICROS <= anchor <= MAX_PRICE_MICROS

    def test_seeded_runs_are_reproducible(self):
        def run(seed):
            rng = SharedRandom(seed=seed)
            price = anchor = 100 * MICROS_PER_UNIT
            path = []
            for _ in range(50):
                price, anchor = step_stock(price, anchor, MarketRegime.NEUTRAL, MODERATE, rng)
                path.append(price)
            return path

        assert run(11) == run(11)


class TestAdvanceMarket:
    async def test_moves_every_stock_and_records_history(self, seeded_season, make_random):
        rng = make_random([0.01, 0.9], default=0.5)
        tick_at = datetime.now(timezone.utc)

        async def _tick(session):
            return await advance_market(session, seeded_season, MODERATE, rng, tick_at)

        step = await run_in_transaction(_tick)
        assert step.regime is MarketRegime.BULL
        assert step.regime_changed
        assert step.stocks_updated == len(stocks_orm.DEFAULT_STOCKS)

        async def _read(session):
            state = await seasons_orm.get_regime(session, seeded_season)
            stock = await stocks_orm.require_stock(session, seeded_season, "NIMBUS", for_update=False)
            history = await stocks_orm.price_history(session, stock.id, 64)
            return state.regime, stock.current_price_micros, history

        regime, price, history = await run_in_transaction(_read)
        assert regime == "bull"
        # Seed sample plus one tick sample, newest first
        assert len(history) == 2
        assert history[0]["price_micros"] == price
        # Bull drift with quiet draws nudges the price up
        assert price > 95 * MICROS_PER_UNIT
