"""Pytest configuration and fixtures.

Database tests run against an in-memory SQLite database shared through a
``StaticPool`` so every session in a test sees the same data.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.pool import StaticPool

from stanks.database import connection as db_conn
from stanks.database.orm import Base
from stanks.database.transactions import run_in_transaction
from stanks.repositories import ledger_orm, seasons_orm, wallets_orm
from stanks.services import random_source
from stanks.services.players import ensure_player
from stanks.services.seasons import seed_defaults


class StatementLog(list):
    """SQL statements seen by the test engine, in execution order."""

    def first_read(self, table: str) -> int:
        """Index of the first statement selecting from ``table``."""
        pattern = re.compile(rf"\bFROM {table}\b")
        return next(i for i, statement in enumerate(self) if pattern.search(statement))


class ScriptedRandom:
    """Random source that replays fixed draws, then a default."""

    def __init__(self, values: Iterable[float] = (), default: float = 0.5):
        self.values = list(values)
        self.default = default
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        if self.values:
            return self.values.pop(0)
        return self.default


@pytest.fixture(autouse=True)
def reset_random_source() -> Generator[None, None, None]:
    """Every test starts and ends with a fresh shared source."""
    random_source.set_random_source(None)
    yield
    random_source.set_random_source(None)


@pytest.fixture
def make_random():
    """Factory for local scripted sources."""
    return ScriptedRandom


@pytest.fixture
def scripted_random() -> ScriptedRandom:
    """Install a scripted source as the shared random source."""
    source = ScriptedRandom()
    random_source.set_random_source(source)
    return source


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory schema per test; yields the engine."""
    await db_conn.close_engine()
    engine = await db_conn.init_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await db_conn.close_engine()


@pytest.fixture
def sql_log(db: AsyncEngine) -> Generator[StatementLog, None, None]:
    """Record statements on the test engine; clear it before the call under test."""
    statements = StatementLog()

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(db.sync_engine, "before_cursor_execute", _record)
    yield statements
    event.remove(db.sync_engine, "before_cursor_execute", _record)


@pytest_asyncio.fixture
async def season_id(db) -> int:
    """Active season with no seed data."""

    async def _create(session) -> int:
        season = await seasons_orm.create_season(session, "Test Season")
        return season.id

    return await run_in_transaction(_create)


@pytest_asyncio.fixture
async def seeded_season(season_id: int) -> int:
    """Active season with default stocks and the hiring pool."""
    await seed_defaults(season_id)
    return season_id


@pytest.fixture
def fund():
    """Credit a player's wallet through the ledger and raise the peak."""

    async def _fund(season_id: int, user_id: str, amount_micros: int) -> int:
        async def _execute(session) -> int:
            wallet = await wallets_orm.require_wallet(session, user_id, season_id)
            await wallets_orm.record_movement(session, wallet, "starter_grant", amount_micros)
            await wallets_orm.refresh_peak(session, wallet)
            return wallet.balance_micros

        return await run_in_transaction(_execute)

    return _fund


@pytest.fixture
def wallet_state():
    """Read ``(balance, ledger_sum, peak)`` for a player."""

    async def _state(season_id: int, user_id: str) -> tuple[int, int, int]:
        async def _execute(session) -> tuple[int, int, int]:
            wallet = await wallets_orm.require_wallet(session, user_id, season_id, for_update=False)
            total = await ledger_orm.wallet_ledger_sum(session, user_id, season_id)
            return wallet.balance_micros, total, wallet.peak_net_worth_micros

        return await run_in_transaction(_execute)

    return _state


@pytest_asyncio.fixture
async def alice(season_id: int) -> str:
    await ensure_player(season_id, "user-alice", "alice@example.com")
    return "user-alice"


@pytest_asyncio.fixture
async def bob(season_id: int) -> str:
    await ensure_player(season_id, "user-bob", "bob@example.com")
    return "user-bob"
