"""Tests for tick orchestration."""

from __future__ import annotations

from datetime import timedelta

import pytest

from stanks.core.money import MICROS_PER_UNIT
from stanks.database.transactions import run_in_transaction
from stanks.repositories import stocks_orm, wallets_orm
from stanks.services import economy, reads
from stanks.services.business import create_business
from stanks.services.economy import debt_interest
from stanks.services.tick import run_active_season_tick, run_market_tick

TICK = timedelta(seconds=60)


async def _drain(season_id: int, user_id: str, amount: int) -> None:
    async def _execute(session):
        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        await wallets_orm.record_unbalanced(session, wallet, -amount, "business_loss")

    await run_in_transaction(_execute)


class TestRunMarketTick:
    async def test_quiet_tick_report(self, seeded_season, alice, make_random):
        report = await run_market_tick(seeded_season, TICK, 0.2, "mor", rng=make_random(default=0.5))

        assert report.season_id == seeded_season
        assert report.volatility == "moderate"
        assert report.regime == "neutral"
        assert not report.regime_changed
        assert report.stocks_updated == len(stocks_orm.DEFAULT_STOCKS)
        assert report.businesses_processed == 0
        assert report.debt_interest_micros == 0
        assert report.peaks_raised == 0

        # Neutral regime at the anchor with mid draws leaves prices flat
        detail = await reads.stock_detail(seeded_season, "NIMBUS")
        assert [p.price_micros for p in detail.history] == [95 * MICROS_PER_UNIT] * 2

    async def test_charges_debt_interest(self, seeded_season, alice, make_random, wallet_state):
        await _drain(seeded_season, alice, 35_000 * MICROS_PER_UNIT)

        report = await run_market_tick(seeded_season, TICK, 0.2, "moderate", rng=make_random())

        expected = debt_interest(-10_000 * MICROS_PER_UNIT, 60, 0.2)
        assert expected > 0
        assert report.debt_interest_micros == expected
        balance, total, _ = await wallet_state(seeded_season, alice)
        assert balance == total == -10_000 * MICROS_PER_UNIT - expected

    async def test_failure_rolls_back_whole_tick(self, seeded_season, make_random, monkeypatch):
        async def _boom(*args, **kwargs):
            raise RuntimeError("interest step failed")

        monkeypatch.setattr(economy, "charge_debt_interest", _boom)

        with pytest.raises(RuntimeError):
            await run_market_tick(seeded_season, TICK, 0.2, "wild", rng=make_random([0.0, 0.9]))

        detail = await reads.stock_detail(seeded_season, "NIMBUS")
        assert len(detail.history) == 1

    async def test_locks_stocks_before_businesses(self, seeded_season, alice, fund, make_random, sql_log):
        await fund(seeded_season, alice, 250_000 * MICROS_PER_UNIT)
        await create_business(seeded_season, alice, "Acme Labs", "private", "acme")
        sql_log.clear()

        report = await run_market_tick(seeded_season, TICK, 0.2, "moderate", rng=make_random())

        assert report.businesses_processed == 1
        assert sql_log.first_read("stocks") < sql_log.first_read("businesses")


class TestActiveSeasonTick:
    async def test_creates_season_on_first_tick(self, db, scripted_random):
        report = await run_active_season_tick()
        assert report.season_id > 0
        assert report.stocks_updated == 0
        assert scripted_random.calls >= 1
