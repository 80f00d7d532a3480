"""Tests for player registration, friends and read models."""

from __future__ import annotations

import pytest

from stanks.core.exceptions import (
    NotFoundError,
    StockNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from stanks.core.money import MICROS_PER_UNIT, STARTER_BALANCE_MICROS, UNITS_PER_SHARE, debt_ceiling
from stanks.repositories import stocks_orm
from stanks.services import reads
from stanks.services.business import create_business
from stanks.services.players import (
    add_friend,
    ensure_player,
    remove_friend,
    resolve_username,
    sanitize_username,
)
from stanks.services.trading import place_order

UNIT = MICROS_PER_UNIT


# =============================================================================
# Players
# =============================================================================


class TestUsernames:
    def test_sanitize(self):
        assert sanitize_username("  Bob.Smith ") == "bob_smith"
        assert sanitize_username("Al") == "player_al"
        assert sanitize_username("") == "player"
        assert len(sanitize_username("x" * 40)) == 24

    def test_resolve_prefers_valid_username(self):
        assert resolve_username("x@example.com", "Good_Name") == "Good_Name"
        assert resolve_username("jane.doe@example.com", "no spaces!") == "jane_doe"
        assert resolve_username("jane.doe@example.com", None) == "jane_doe"


class TestEnsurePlayer:
    async def test_repeat_call_changes_nothing(self, alice, season_id):
        again = await ensure_player(season_id, alice, "alice@example.com")
        assert not again.created
        assert again.username == "alice"
        assert again.balance_micros == STARTER_BALANCE_MICROS

    async def test_taken_username_gets_suffix(self, alice, season_id):
        other = await ensure_player(season_id, "user-alice-2", "alice@elsewhere.org")
        assert other.created
        assert other.username == "alice_2"

    async def test_requires_user_id(self, season_id):
        with pytest.raises(ValidationError):
            await ensure_player(season_id, "   ", "ghost@example.com")


class TestFriends:
    async def test_follow_lifecycle(self, alice, bob, season_id):
        bob_code = (await ensure_player(season_id, bob)).invite_code

        assert await add_friend(alice, bob_code.lower()) is True
        assert await add_friend(alice, bob_code) is False

        alice_view = await reads.friends_leaderboard(season_id, alice)
        assert {row.username for row in alice_view} == {"alice", "bob"}
        # Follows are one-way
        bob_view = await reads.friends_leaderboard(season_id, bob)
        assert [row.username for row in bob_view] == ["bob"]

        await remove_friend(alice, bob_code)
        assert [row.username for row in await reads.friends_leaderboard(season_id, alice)] == ["alice"]

    async def test_invalid_invites(self, alice, season_id):
        own_code = (await ensure_player(season_id, alice)).invite_code
        with pytest.raises(ValidationError):
            await add_friend(alice, own_code)
        with pytest.raises(NotFoundError):
            await add_friend(alice, "NOPE1234")
        with pytest.raises(ValidationError):
            await add_friend(alice, "  ")


# =============================================================================
# Reads
# =============================================================================


class TestLeaderboards:
    async def test_ranked_by_net_worth_then_username(self, alice, bob, season_id, fund):
        rows = await reads.global_leaderboard(season_id)
        assert [(r.rank, r.username) for r in rows] == [(1, "alice"), (2, "bob")]

        await fund(season_id, bob, 1_000 * UNIT)
        rows = await reads.global_leaderboard(season_id)
        assert [r.username for r in rows] == ["bob", "alice"]
        assert rows[0].net_worth_micros == STARTER_BALANCE_MICROS + 1_000 * UNIT

    async def test_limit(self, alice, bob, season_id):
        rows = await reads.global_leaderboard(season_id, limit=1)
        assert len(rows) == 1

    async def test_holdings_count_toward_rank(self, seeded_season, alice, bob):
        order = await place_order(seeded_season, alice, "NIMBUS", "buy", 10 * UNITS_PER_SHARE, "buy-1")

        rows = await reads.global_leaderboard(seeded_season)
        # Alice is down only the trading fee
        assert [(r.rank, r.username) for r in rows] == [(1, "bob"), (2, "alice")]
        assert rows[1].net_worth_micros == order.balance_micros + 950 * UNIT

        top = await reads.global_leaderboard(seeded_season, limit=1)
        assert [(r.rank, r.username) for r in top] == [(1, "bob")]


class TestStocks:
    async def test_listed_stocks_sorted(self, seeded_season):
        stocks = await reads.list_stocks(seeded_season)
        symbols = [s.symbol for s in stocks]
        assert len(symbols) == len(stocks_orm.DEFAULT_STOCKS)
        assert symbols == sorted(symbols)

    async def test_detail_has_history(self, seeded_season):
        detail = await reads.stock_detail(seeded_season, " nimbus ")
        assert detail.symbol == "NIMBUS"
        assert detail.current_price_micros == 95 * UNIT
        assert [p.price_micros for p in detail.history] == [95 * UNIT]

    async def test_unknown_symbol(self, seeded_season):
        with pytest.raises(StockNotFoundError):
            await reads.stock_detail(seeded_season, "ZZZZZZ")


class TestDashboard:
    async def test_positions_and_net_worth(self, seeded_season, alice):
        order = await place_order(seeded_season, alice, "NIMBUS", "buy", 10 * UNITS_PER_SHARE, "buy-1")

        dash = await reads.dashboard(seeded_season, alice)
        assert dash.balance_micros == order.balance_micros
        assert dash.peak_net_worth_micros == STARTER_BALANCE_MICROS
        assert dash.debt_ceiling_micros == debt_ceiling(STARTER_BALANCE_MICROS)
        assert len(dash.positions) == 1

        position = dash.positions[0]
        assert position.market_value_micros == 950 * UNIT
        assert position.unrealized_pnl_micros == 0
        assert dash.net_worth_micros == order.balance_micros + 950 * UNIT
        assert dash.businesses == []

    async def test_business_summary(self, alice, season_id, fund):
        await fund(season_id, alice, 250_000 * UNIT)
        created = await create_business(season_id, alice, "Acme Labs", "private", "c")

        dash = await reads.dashboard(season_id, alice)
        assert [b.id for b in dash.businesses] == [created.id]
        summary = dash.businesses[0]
        assert summary.employee_count == 0
        assert summary.open_loans_micros == 0

    async def test_business_lists_are_owner_only(self, alice, bob, season_id, fund):
        await fund(season_id, alice, 250_000 * UNIT)
        created = await create_business(season_id, alice, "Acme Labs", "private", "c")

        assert await reads.list_employees(season_id, alice, created.id) == []
        assert await reads.list_machinery(season_id, alice, created.id) == []
        assert await reads.list_loans(season_id, alice, created.id) == []
        with pytest.raises(UnauthorizedError):
            await reads.list_employees(season_id, bob, created.id)


class TestCandidates:
    async def test_pool_is_seeded(self, seeded_season):
        candidates = await reads.list_candidates(seeded_season)
        assert len(candidates) == 24
        assert all(c.hire_cost_micros > 0 for c in candidates)


class TestLedgerHistory:
    async def test_newest_first(self, seeded_season, alice):
        await place_order(seeded_season, alice, "NIMBUS", "buy", 10 * UNITS_PER_SHARE, "buy-1")

        entries = await reads.ledger_history(seeded_season, alice)
        # Starter grant pair, then the buy pair and its fee leg
        assert len(entries) == 5
        ids = [e.id for e in entries]
        assert ids == sorted(ids, reverse=True)
        assert entries[0].account == "fees"
        assert {e.metadata["action"] for e in entries[-2:]} == {"starter_grant"}

        assert len(await reads.ledger_history(seeded_season, alice, limit=2)) == 2
