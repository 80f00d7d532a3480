"""Tests for player-facing business operations."""

from __future__ import annotations

import pytest

from stanks.core.exceptions import (
    BusinessLockedError,
    ConflictError,
    DuplicateIdempotencyError,
    InsufficientFundsError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from stanks.core.money import MICROS_PER_UNIT
from stanks.database.transactions import run_in_transaction
from stanks.repositories import businesses_orm, stocks_orm
from stanks.services import business as biz
from stanks.services import reads
from stanks.services.business import (
    business_display_name,
    loan_interest_bps,
    machinery_cost,
    sale_valuation,
    training_cost,
    upgrade_cost,
    validate_entity_name,
)
from stanks.services.economy import round_half_away

UNIT = MICROS_PER_UNIT


@pytest.fixture
async def rich_alice(alice, season_id, fund) -> str:
    await fund(season_id, alice, 300_000 * UNIT)
    return alice


@pytest.fixture
async def acme(rich_alice, season_id) -> int:
    view = await biz.create_business(season_id, rich_alice, "Acme Labs", "private", "acme-create")
    return view.id


async def _candidates(season_id: int):
    async def _execute(session):
        return await businesses_orm.list_candidates(session, season_id)

    return await run_in_transaction(_execute)


# =============================================================================
# Pure helpers
# =============================================================================


class TestHelpers:
    def test_entity_names(self):
        assert validate_entity_name("  Acme Labs ") == "Acme Labs"
        for bad in ["", "   ", "admin empire", "x" * 65]:
            with pytest.raises(ValidationError):
                validate_entity_name(bad)

    def test_display_name(self):
        assert business_display_name("") == "Player Business"
        assert len(business_display_name("y" * 60)) == 48

    def test_costs(self):
        assert training_cost(28 * UNIT) == 50_400_000
        assert machinery_cost(6_500 * UNIT, 1) == 6_500 * UNIT
        assert machinery_cost(6_500 * UNIT, 2) == 8_125 * UNIT
        assert upgrade_cost(0) == 900 * UNIT
        assert upgrade_cost(1) == 1_400 * UNIT

    def test_loan_rate_range(self):
        assert loan_interest_bps(0.0) == 65
        assert loan_interest_bps(0.5) == 113
        assert loan_interest_bps(0.999) == 160

    def test_sale_valuation(self):
        assert sale_valuation(18 * UNIT, 0, 0, 0, 0, 1.0) == 252 * UNIT
        # Three employees add one to the multiple
        assert sale_valuation(10 * UNIT, 20 * UNIT, 3, 0, 0, 1.0) == 450 * UNIT
        assert sale_valuation(0, 0, 0, 0, 5 * UNIT, 1.0) == 0


# =============================================================================
# Creation & settings
# =============================================================================


class TestCreateBusiness:
    async def test_locked_below_unlock_threshold(self, alice, season_id):
        with pytest.raises(BusinessLockedError):
            await biz.create_business(season_id, alice, "Acme Labs", "private", "k")

    async def test_validates_before_transaction(self, rich_alice, season_id):
        with pytest.raises(ValidationError):
            await biz.create_business(season_id, rich_alice, "Mod Squad", "private", "k")
        with pytest.raises(ValidationError):
            await biz.create_business(season_id, rich_alice, "Acme Labs", "secret", "k")

    async def test_creates_with_defaults(self, rich_alice, season_id):
        view = await biz.create_business(season_id, rich_alice, " Acme Labs ", "PUBLIC", "k")
        assert view.name == "Acme Labs"
        assert view.visibility == "public"
        assert view.strategy == "balanced"
        assert view.brand_bps == 10_000
        assert view.base_revenue_micros == 18 * UNIT

    async def test_replay_creates_once(self, rich_alice, season_id):
        await biz.create_business(season_id, rich_alice, "Acme Labs", "private", "same")
        with pytest.raises(DuplicateIdempotencyError):
            await biz.create_business(season_id, rich_alice, "Acme Labs", "private", "same")

        async def _count(session):
            return len(await businesses_orm.list_businesses(session, season_id, rich_alice))

        assert await run_in_transaction(_count) == 1


class TestSettings:
    async def test_visibility_and_strategy(self, acme, rich_alice, season_id):
        view = await biz.set_business_visibility(season_id, rich_alice, acme, "public", "vis")
        assert view.visibility == "public"
        view = await biz.set_strategy(season_id, rich_alice, acme, "aggressive", "strat")
        assert view.strategy == "aggressive"

    async def test_other_players_are_rejected(self, acme, bob, season_id):
        with pytest.raises(UnauthorizedError):
            await biz.set_strategy(season_id, bob, acme, "defensive", "steal")

    async def test_missing_business(self, rich_alice, season_id):
        with pytest.raises(NotFoundError):
            await biz.set_strategy(season_id, rich_alice, 9_999, "defensive", "nope")


# =============================================================================
# Staff, machinery & upgrades
# =============================================================================


class TestStaff:
    async def test_hire_and_train(self, seeded_season, acme, rich_alice, wallet_state):
        candidate = (await _candidates(seeded_season))[0]
        before, _, _ = await wallet_state(seeded_season, rich_alice)

        hired = await biz.hire_employee(seeded_season, rich_alice, acme, candidate.id, "hire")
        assert hired.cost_micros == candidate.hire_cost_micros
        assert hired.balance_micros == before - candidate.hire_cost_micros

        with pytest.raises(ConflictError):
            await biz.hire_employee(seeded_season, rich_alice, acme, candidate.id, "hire-again")

        trained = await biz.train_employee(seeded_season, rich_alice, acme, hired.employee.id, "train")
        assert trained.cost_micros == training_cost(candidate.revenue_per_tick_micros)
        assert trained.employee.revenue_per_tick_micros == round_half_away(candidate.revenue_per_tick_micros * 1.15)
        assert trained.employee.risk_bps == candidate.risk_bps + 120

        balance, total, _ = await wallet_state(seeded_season, rich_alice)
        assert balance == total

    async def test_unknown_candidate(self, seeded_season, acme, rich_alice):
        with pytest.raises(NotFoundError):
            await biz.hire_employee(seeded_season, rich_alice, acme, 123_456, "ghost")


class TestMachineryAndUpgrades:
    async def test_machine_upgrades_in_place(self, acme, rich_alice, season_id):
        first = await biz.buy_machinery(season_id, rich_alice, acme, "assembly_line", "m1")
        assert first.cost_micros == 6_500 * UNIT
        assert first.machine.level == 1

        second = await biz.buy_machinery(season_id, rich_alice, acme, "Assembly_Line", "m2")
        assert second.cost_micros == 8_125 * UNIT
        assert second.machine.id == first.machine.id
        assert second.machine.level == 2
        assert second.machine.output_bonus_micros == 85_400_000
        assert second.machine.upkeep_micros == 14_160_000
        assert second.machine.reliability_bps == 9_410

    async def test_unknown_machine(self, acme, rich_alice, season_id):
        with pytest.raises(ValidationError):
            await biz.buy_machinery(season_id, rich_alice, acme, "time_machine", "m")

    async def test_upgrade_levels(self, acme, rich_alice, season_id):
        first = await biz.buy_upgrade(season_id, rich_alice, acme, "marketing", "u1")
        second = await biz.buy_upgrade(season_id, rich_alice, acme, "marketing", "u2")
        assert (first.level, first.cost_micros) == (1, 900 * UNIT)
        assert (second.level, second.cost_micros) == (2, 1_400 * UNIT)

        with pytest.raises(ValidationError):
            await biz.buy_upgrade(season_id, rich_alice, acme, "teleport", "u3")

    async def test_spending_respects_debt_ceiling(self, alice, season_id, fund):
        # Peak 250,000 allows 87,500 of debt; cash is parked in the reserve first
        await fund(season_id, alice, 225_000 * UNIT)
        view = await biz.create_business(season_id, alice, "Acme Labs", "private", "c")
        await biz.deposit_reserve(season_id, alice, view.id, 250_000 * UNIT, "r")

        first = await biz.buy_machinery(season_id, alice, view.id, "quantum_rig", "rig-1")
        assert first.balance_micros == -40_000 * UNIT
        with pytest.raises(InsufficientFundsError):
            await biz.buy_machinery(season_id, alice, view.id, "quantum_rig", "rig-2")


# =============================================================================
# Reserve, loans & exit
# =============================================================================


class TestReserve:
    async def test_deposit_and_withdraw(self, acme, rich_alice, season_id, wallet_state):
        before, _, _ = await wallet_state(season_id, rich_alice)
        deposited = await biz.deposit_reserve(season_id, rich_alice, acme, 1_000 * UNIT, "d")
        assert deposited.cash_reserve_micros == 1_000 * UNIT
        withdrawn = await biz.withdraw_reserve(season_id, rich_alice, acme, 400 * UNIT, "w")
        assert withdrawn.cash_reserve_micros == 600 * UNIT
        assert withdrawn.balance_micros == before - 600 * UNIT

        with pytest.raises(InsufficientFundsError):
            await biz.withdraw_reserve(season_id, rich_alice, acme, 601 * UNIT, "w2")

        balance, total, _ = await wallet_state(season_id, rich_alice)
        assert balance == total

    async def test_withdraw_raises_peak(self, acme, rich_alice, season_id, fund, wallet_state):
        await biz.deposit_reserve(season_id, rich_alice, acme, 100_000 * UNIT, "d")
        await fund(season_id, rich_alice, 100_000 * UNIT)
        _, _, peak_before = await wallet_state(season_id, rich_alice)

        withdrawn = await biz.withdraw_reserve(season_id, rich_alice, acme, 100_000 * UNIT, "w")

        assert withdrawn.balance_micros == peak_before + 100_000 * UNIT
        _, _, peak = await wallet_state(season_id, rich_alice)
        assert peak == withdrawn.balance_micros

    async def test_deposit_needs_cash_on_hand(self, acme, rich_alice, season_id):
        with pytest.raises(InsufficientFundsError):
            await biz.deposit_reserve(season_id, rich_alice, acme, 10_000_000 * UNIT, "big")

    @pytest.mark.parametrize("amount", [0, -1, True])
    async def test_amount_must_be_positive(self, acme, rich_alice, season_id, amount):
        with pytest.raises(ValidationError):
            await biz.deposit_reserve(season_id, rich_alice, acme, amount, "zero")


class TestLoans:
    async def test_take_and_repay(self, acme, rich_alice, season_id, scripted_random, wallet_state):
        before, _, _ = await wallet_state(season_id, rich_alice)
        taken = await biz.take_loan(season_id, rich_alice, acme, 100_000 * UNIT, "loan")
        assert taken.loan.interest_bps == 113
        assert taken.loan.outstanding_micros == 100_000 * UNIT
        assert taken.balance_micros == before + 100_000 * UNIT

        partial = await biz.repay_loan(season_id, rich_alice, acme, 30_000 * UNIT, "repay-1")
        assert partial.paid_micros == 30_000 * UNIT
        assert partial.outstanding_micros == 70_000 * UNIT

        rest = await biz.repay_loan(season_id, rich_alice, acme, 100_000 * UNIT, "repay-2")
        assert rest.paid_micros == 70_000 * UNIT
        assert rest.outstanding_micros == 0

        with pytest.raises(NotFoundError):
            await biz.repay_loan(season_id, rich_alice, acme, UNIT, "repay-3")

        balance, total, _ = await wallet_state(season_id, rich_alice)
        assert balance == total == before

    async def test_capacity_is_share_of_net_worth(self, acme, rich_alice, season_id):
        # 325,000 net worth allows 146,250 of open loans
        with pytest.raises(ValidationError):
            await biz.take_loan(season_id, rich_alice, acme, 150_000 * UNIT, "greedy")


class TestSale:
    async def test_sale_pays_valuation(self, acme, rich_alice, season_id, scripted_random, wallet_state):
        before, _, _ = await wallet_state(season_id, rich_alice)
        sale = await biz.sell_business(season_id, rich_alice, acme, "sell")

        assert sale.adjustment_factor == pytest.approx(1.02)
        assert abs(sale.gross_valuation_micros - 257_040_000) <= 1
        assert sale.payout_micros == sale.gross_valuation_micros
        assert sale.balance_micros == before + sale.payout_micros

        async def _after(session):
            return await businesses_orm.get_business(session, season_id, acme)

        assert await run_in_transaction(_after) is None
        sales = await reads.list_sales(season_id, rich_alice)
        assert [(s.business_id, s.reason, s.payout_micros) for s in sales] == [(acme, "sold", sale.payout_micros)]
        assert sales[0].business_name == "Acme Labs"

    async def test_loans_are_paid_from_proceeds(self, acme, rich_alice, season_id, scripted_random, wallet_state):
        await biz.take_loan(season_id, rich_alice, acme, 1_000 * UNIT, "loan")
        before, _, _ = await wallet_state(season_id, rich_alice)

        sale = await biz.sell_business(season_id, rich_alice, acme, "sell")

        assert sale.loan_payoff_micros == 1_000 * UNIT
        assert sale.payout_micros == 0
        assert sale.balance_micros == before

    async def test_locks_stocks_before_business(self, acme, rich_alice, season_id, scripted_random, sql_log):
        await biz.create_stock(season_id, rich_alice, acme, "ACMELB", "Acme Labs", "stock")
        sql_log.clear()

        await biz.sell_business(season_id, rich_alice, acme, "sell")

        # Stock rows lock before the business row, as in the market tick
        assert sql_log.first_read("stocks") < sql_log.first_read("businesses")

        async def _stock(session):
            return await stocks_orm.require_stock(session, season_id, "ACMELB", for_update=False)

        assert (await run_in_transaction(_stock)).business_id is None

    async def test_other_players_sales_are_hidden(self, acme, rich_alice, bob, season_id, scripted_random):
        await biz.sell_business(season_id, rich_alice, acme, "sell")
        assert await reads.list_sales(season_id, bob) == []


# =============================================================================
# Stocks & IPO
# =============================================================================


class TestStocks:
    async def test_create_then_ipo(self, acme, rich_alice, bob, season_id):
        created = await biz.create_stock(season_id, rich_alice, acme, "acmelb", "Acme Labs", "stock")
        assert created.symbol == "ACMELB"
        assert not created.listed_public
        assert created.current_price_micros == 100 * UNIT

        with pytest.raises(UnauthorizedError):
            await biz.ipo_stock(season_id, bob, "ACMELB", 12 * UNIT, "bob-ipo")

        listed = await biz.ipo_stock(season_id, rich_alice, "ACMELB", 12 * UNIT, "ipo")
        assert listed.listed_public
        assert listed.current_price_micros == listed.anchor_price_micros == 12 * UNIT

        with pytest.raises(ConflictError):
            await biz.ipo_stock(season_id, rich_alice, "ACMELB", 12 * UNIT, "ipo-again")

        async def _business(session):
            return await businesses_orm.get_business(session, season_id, acme)

        business = await run_in_transaction(_business)
        assert business.is_listed
        assert business.stock_symbol == "ACMELB"

    async def test_duplicate_symbol(self, seeded_season, acme, rich_alice):
        with pytest.raises(ConflictError):
            await biz.create_stock(seeded_season, rich_alice, acme, "NIMBUS", "Copycat", "dup")

    async def test_business_ipo_requires_public(self, acme, rich_alice, season_id):
        with pytest.raises(ValidationError):
            await biz.business_ipo(season_id, rich_alice, acme, "ACMEIP", 20 * UNIT, "ipo-1")

        await biz.set_business_visibility(season_id, rich_alice, acme, "public", "vis")
        stock = await biz.business_ipo(season_id, rich_alice, acme, "ACMEIP", 20 * UNIT, "ipo-2")
        assert stock.listed_public
        assert stock.display_name == "Acme Labs"
        assert stock.business_id == acme

        async def _history(session):
            row = await stocks_orm.require_stock(session, season_id, "ACMEIP", for_update=False)
            return await stocks_orm.price_history(session, row.id, 10)

        assert [p["price_micros"] for p in await run_in_transaction(_history)] == [20 * UNIT]

    async def test_bad_ipo_price(self, acme, rich_alice, season_id):
        with pytest.raises(ValidationError):
            await biz.business_ipo(season_id, rich_alice, acme, "ACMEIP", 0, "ipo")
