"""Player profiles, friend follows and leaderboards - SQLAlchemy ORM async."""

from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.money import UNITS_PER_SHARE
from stanks.database.orm import FriendFollow, PlayerProfile, Position, Stock, Wallet


def _profile_to_dict(p: PlayerProfile) -> dict[str, Any]:
    return {
        "user_id": p.user_id,
        "email": p.email,
        "username": p.username,
        "invite_code": p.invite_code,
    }


async def get_profile(session: AsyncSession, user_id: str) -> PlayerProfile | None:
    return await session.get(PlayerProfile, user_id)


async def get_profile_by_invite(session: AsyncSession, invite_code: str) -> PlayerProfile | None:
    result = await session.execute(
        select(PlayerProfile).where(PlayerProfile.invite_code == invite_code)
    )
    return result.scalar_one_or_none()


async def username_taken(session: AsyncSession, username: str) -> bool:
    result = await session.execute(
        select(PlayerProfile.user_id).where(PlayerProfile.username == username)
    )
    return result.first() is not None


async def invite_code_taken(session: AsyncSession, invite_code: str) -> bool:
    return await get_profile_by_invite(session, invite_code) is not None


async def create_profile(
    session: AsyncSession, user_id: str, email: str, username: str, invite_code: str
) -> dict[str, Any]:
    profile = PlayerProfile(
        user_id=user_id, email=email, username=username, invite_code=invite_code
    )
    session.add(profile)
    await session.flush()
    return _profile_to_dict(profile)


async def follow(session: AsyncSession, follower_user_id: str, followee_user_id: str) -> bool:
    """Add a follow; returns False if it already existed."""
    existing = await session.get(FriendFollow, (follower_user_id, followee_user_id))
    if existing is not None:
        return False
    session.add(
        FriendFollow(follower_user_id=follower_user_id, followee_user_id=followee_user_id)
    )
    await session.flush()
    return True


async def unfollow(session: AsyncSession, follower_user_id: str, followee_user_id: str) -> None:
    await session.execute(
        delete(FriendFollow).where(
            FriendFollow.follower_user_id == follower_user_id,
            FriendFollow.followee_user_id == followee_user_id,
        )
    )


async def list_followees(session: AsyncSession, follower_user_id: str) -> list[str]:
    result = await session.execute(
        select(FriendFollow.followee_user_id).where(
            FriendFollow.follower_user_id == follower_user_id
        )
    )
    return list(result.scalars().all())


async def leaderboard(
    session: AsyncSession,
    season_id: int,
    limit: int,
    *,
    user_ids: list[str] | None = None,
) -> list[dict[str, Any]]:
    """Players ranked by net worth, optionally restricted to ``user_ids``."""
    await session.flush()
    holdings = (
        select(
            Position.user_id.label("user_id"),
            func.sum((Position.quantity_units * Stock.current_price_micros) // UNITS_PER_SHARE).label(
                "holdings_micros"
            ),
        )
        .join(Stock, Stock.id == Position.stock_id)
        .where(Position.season_id == season_id)
        .group_by(Position.user_id)
        .subquery()
    )
    net_worth = (Wallet.balance_micros + func.coalesce(holdings.c.holdings_micros, 0)).label("net_worth_micros")
    stmt = (
        select(PlayerProfile.username, PlayerProfile.invite_code, net_worth)
        .select_from(Wallet)
        .join(PlayerProfile, PlayerProfile.user_id == Wallet.user_id)
        .outerjoin(holdings, holdings.c.user_id == Wallet.user_id)
        .where(Wallet.season_id == season_id)
    )
    if user_ids is not None:
        stmt = stmt.where(Wallet.user_id.in_(user_ids))
    result = await session.execute(
        stmt.order_by(net_worth.desc(), PlayerProfile.username).limit(limit)
    )

    return [
        {
            "rank": rank,
            "username": username,
            "invite_code": invite_code,
            "net_worth_micros": int(worth),
        }
        for rank, (username, invite_code, worth) in enumerate(result.all(), start=1)
    ]
