"""Read-only user directory lookups."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from warden.db.models_user import UserEntity


async def get_user_by_id(session: AsyncSession, user_id: str) -> UserEntity | None:
    """Look up a user by primary key."""
    stmt = select(UserEntity).where(UserEntity.id == user_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def lock_user(session: AsyncSession, user_id: str) -> UserEntity | None:
    """Load a user with a row lock held until the transaction ends.

    Serialises session creation per user on databases with row locks.
    Dialects without ``FOR UPDATE`` (SQLite) render a plain select.
    """
    stmt = select(UserEntity).where(UserEntity.id == user_id).with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
