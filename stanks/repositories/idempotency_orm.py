"""Idempotency key claims - SQLAlchemy ORM async."""

from __future__ import annotations

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.exceptions import DuplicateIdempotencyError, ValidationError
from stanks.database.orm import IdempotencyKey


MAX_KEY_LENGTH = 128


def require_idempotency_key(key: str | None) -> str:
    """Trim and validate a caller-supplied key before any transaction opens."""
    cleaned = (key or "").strip()
    if not cleaned:
        raise ValidationError("Idempotency key is required")
    if len(cleaned) > MAX_KEY_LENGTH:
        raise ValidationError(
            "Idempotency key is too long", details={"max_length": MAX_KEY_LENGTH}
        )
    return cleaned


def _insert(session: AsyncSession):
    if session.bind.dialect.name == "sqlite":
        return sqlite.insert(IdempotencyKey)
    return postgresql.insert(IdempotencyKey)


async def claim_idempotency(
    session: AsyncSession, user_id: str, key: str, action: str
) -> None:
    """Claim ``(user_id, key)`` as the first write of the current transaction.

    Rolling the transaction back releases the claim.

    Raises:
        DuplicateIdempotencyError: If the key was already claimed
    """
    cleaned = require_idempotency_key(key)
    stmt = (
        _insert(session)
        .values(user_id=user_id, key=cleaned, action=action)
        .on_conflict_do_nothing(index_elements=["user_id", "key"])
        .returning(IdempotencyKey.key)
    )
    result = await session.execute(stmt)
    if result.scalar_one_or_none() is None:
        raise DuplicateIdempotencyError(details={"key": cleaned, "action": action})
