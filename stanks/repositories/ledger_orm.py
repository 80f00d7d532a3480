"""Double-entry ledger - SQLAlchemy ORM async.

Each economic event writes a ``wallet`` leg and an opposite ``counterparty``
leg under one group id, plus an optional ``fees`` debit. The wallet's cached
balance equals the sum of its ``wallet`` and ``fees`` legs.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stanks.database.orm import LedgerEntry
from stanks.domain.types import LedgerAccount


# Actions that move money into the player's wallet
INFLOW_ACTIONS = frozenset(
    {
        "sell",
        "starter_grant",
        "business_revenue",
        "business_loan_draw",
        "business_sale",
        "business_reserve_withdraw",
    }
)

BALANCE_ACCOUNTS = (LedgerAccount.WALLET.value, LedgerAccount.FEES.value)


def wallet_leg(action: str, amount_micros: int) -> int:
    """Signed wallet delta for ``action``; outflows are negative."""
    return amount_micros if action in INFLOW_ACTIONS else -amount_micros


def _entry_to_dict(e: LedgerEntry) -> dict[str, Any]:
    return {
        "id": e.id,
        "tx_group_id": str(e.tx_group_id),
        "account": e.account,
        "delta_micros": e.delta_micros,
        "metadata": e.entry_metadata or {},
        "created_at": e.created_at,
    }


async def append_entries(
    session: AsyncSession,
    user_id: str,
    season_id: int,
    action: str,
    amount_micros: int,
    *,
    fee_micros: int = 0,
    metadata: dict[str, Any] | None = None,
) -> int:
    """Append a balanced pair (plus optional fee leg); return the balance change."""
    group_id = uuid.uuid4()
    meta = {"action": action, **(metadata or {})}
    delta = wallet_leg(action, amount_micros)

    session.add_all(
        [
            LedgerEntry(
                tx_group_id=group_id,
                season_id=season_id,
                user_id=user_id,
                account=LedgerAccount.WALLET.value,
                delta_micros=delta,
                entry_metadata=meta,
            ),
            LedgerEntry(
                tx_group_id=group_id,
                season_id=season_id,
                user_id=user_id,
                account=LedgerAccount.COUNTERPARTY.value,
                delta_micros=-delta,
                entry_metadata=meta,
            ),
        ]
    )
    if fee_micros > 0:
        session.add(
            LedgerEntry(
                tx_group_id=group_id,
                season_id=season_id,
                user_id=user_id,
                account=LedgerAccount.FEES.value,
                delta_micros=-fee_micros,
                entry_metadata={**meta, "action": "fee", "fee_for": action},
            )
        )
        return delta - fee_micros
    return delta


async def append_wallet_delta(
    session: AsyncSession,
    user_id: str,
    season_id: int,
    delta_micros: int,
    action: str,
    metadata: dict[str, Any] | None = None,
) -> int:
    """Standalone wallet entry with no counterparty (e.g. business losses)."""
    session.add(
        LedgerEntry(
            tx_group_id=uuid.uuid4(),
            season_id=season_id,
            user_id=user_id,
            account=LedgerAccount.WALLET.value,
            delta_micros=delta_micros,
            entry_metadata={"action": action, **(metadata or {})},
        )
    )
    return delta_micros


async def wallet_ledger_sum(session: AsyncSession, user_id: str, season_id: int) -> int:
    """Sum of the wallet and fee legs; must equal the cached balance."""
    await session.flush()
    result = await session.execute(
        select(func.coalesce(func.sum(LedgerEntry.delta_micros), 0)).where(
            LedgerEntry.season_id == season_id,
            LedgerEntry.user_id == user_id,
            LedgerEntry.account.in_(BALANCE_ACCOUNTS),
        )
    )
    return int(result.scalar_one())


async def list_entries(
    session: AsyncSession, user_id: str, season_id: int, limit: int = 50
) -> list[dict[str, Any]]:
    """Newest-first ledger entries for one player."""
    result = await session.execute(
        select(LedgerEntry)
        .where(LedgerEntry.season_id == season_id, LedgerEntry.user_id == user_id)
        .order_by(desc(LedgerEntry.id))
        .limit(limit)
    )
    return [_entry_to_dict(e) for e in result.scalars().all()]
