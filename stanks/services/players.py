"""Player registration and friend follows."""

from __future__ import annotations

import re
import secrets
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.exceptions import NotFoundError, ValidationError
from stanks.core.logging import get_logger, log_fields
from stanks.database.transactions import run_serializable
from stanks.repositories import profiles_orm, wallets_orm
from stanks.schemas.game import PlayerResult

logger = get_logger("services.players")

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]{3,24}$")
INVITE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_LENGTH = 8
MAX_USERNAME_LENGTH = 24


def generate_invite_code() -> str:
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def sanitize_username(raw: str) -> str:
    """Lowercase, replace anything outside ``[a-z0-9_]`` and pad short names."""
    s = (raw or "").strip().lower()
    if not s:
        return "player"
    cleaned = "".join(ch if (ch.isascii() and (ch.isalnum() or ch == "_")) else "_" for ch in s)
    cleaned = cleaned.strip("_")
    if len(cleaned) < 3:
        cleaned = f"player_{cleaned}"
    return cleaned[:MAX_USERNAME_LENGTH]


def username_from_email(email: str) -> str:
    local = (email or "").strip().lower().split("@")[0]
    return sanitize_username(local) if local else "player"


def resolve_username(email: str, username: Optional[str]) -> str:
    candidate = (username or "").strip()
    if not candidate:
        candidate = username_from_email(email)
    if not USERNAME_PATTERN.match(candidate):
        candidate = sanitize_username(username_from_email(email))
    return candidate


async def _unique_username(session: AsyncSession, base: str) -> str:
    if not await profiles_orm.username_taken(session, base):
        return base
    suffix = 2
    while True:
        tail = f"_{suffix}"
        candidate = f"{base[: MAX_USERNAME_LENGTH - len(tail)]}{tail}"
        if not await profiles_orm.username_taken(session, candidate):
            return candidate
        suffix += 1


async def _unique_invite_code(session: AsyncSession) -> str:
    while True:
        code = generate_invite_code()
        if not await profiles_orm.invite_code_taken(session, code):
            return code


async def ensure_player(
    season_id: int, user_id: str, email: str = "", username: Optional[str] = None
) -> PlayerResult:
    """Create the profile and season wallet if missing; safe to call repeatedly."""
    user_id = (user_id or "").strip()
    if not user_id:
        raise ValidationError("user_id is required")
    wanted = resolve_username(email, username)

    async def _execute(session: AsyncSession) -> PlayerResult:
        created = False
        profile = await profiles_orm.get_profile(session, user_id)
        if profile is None:
            await profiles_orm.create_profile(
                session,
                user_id,
                (email or "").strip(),
                await _unique_username(session, wanted),
                await _unique_invite_code(session),
            )
            profile = await profiles_orm.get_profile(session, user_id)
            created = True

        wallet = await wallets_orm.get_wallet(session, user_id, season_id, for_update=True)
        if wallet is None:
            wallet = await wallets_orm.create_wallet(session, user_id, season_id)
            created = True

        return PlayerResult(
            user_id=user_id,
            username=profile.username,
            invite_code=profile.invite_code,
            season_id=season_id,
            balance_micros=wallet.balance_micros,
            created=created,
        )

    result = await run_serializable(_execute, name="ensure_player")
    if result.created:
        logger.info(
            f"Player registered: {result.username}",
            extra=log_fields(user_id=user_id, season_id=season_id),
        )
    return result


def _normalize_invite(invite_code: str) -> str:
    code = (invite_code or "").strip().upper()
    if not code:
        raise ValidationError("Invite code is required")
    return code


async def add_friend(user_id: str, invite_code: str) -> bool:
    """Follow the player owning ``invite_code``; False if already followed."""
    code = _normalize_invite(invite_code)

    async def _execute(session: AsyncSession) -> bool:
        followee = await profiles_orm.get_profile_by_invite(session, code)
        if followee is None:
            raise NotFoundError("Invite code not found", details={"invite_code": code})
        if followee.user_id == user_id:
            raise ValidationError("Cannot follow yourself")
        return await profiles_orm.follow(session, user_id, followee.user_id)

    return await run_serializable(_execute, name="add_friend")


async def remove_friend(user_id: str, invite_code: str) -> None:
    code = _normalize_invite(invite_code)

    async def _execute(session: AsyncSession) -> None:
        followee = await profiles_orm.get_profile_by_invite(session, code)
        if followee is None:
            raise NotFoundError("Invite code not found", details={"invite_code": code})
        await profiles_orm.unfollow(session, user_id, followee.user_id)

    await run_serializable(_execute, name="remove_friend")
