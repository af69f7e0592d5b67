"""Database operations for session records."""

import hashlib
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from warden.db.models_session import SessionEntity, SessionStatus


def hash_token(token: str) -> str:
    """SHA-256 hash a token for database storage."""
    return hashlib.sha256(token.encode()).hexdigest()


async def store_session(session: AsyncSession, entity: SessionEntity) -> SessionEntity:
    """Persist a new session row."""
    session.add(entity)
    await session.flush()
    return entity


async def get_session_by_id(
    session: AsyncSession, session_id: str
) -> SessionEntity | None:
    """Look up a session by primary key."""
    stmt = select(SessionEntity).where(SessionEntity.id == session_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_session_by_access_token(
    session: AsyncSession, access_token: str
) -> SessionEntity | None:
    """Find the session whose current access token is ``access_token``."""
    stmt = select(SessionEntity).where(
        SessionEntity.access_token_hash == hash_token(access_token)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_session_by_refresh_token(
    session: AsyncSession, refresh_token: str
) -> SessionEntity | None:
    """Find the session whose current refresh token is ``refresh_token``."""
    stmt = select(SessionEntity).where(
        SessionEntity.refresh_token_hash == hash_token(refresh_token)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def count_active_sessions(session: AsyncSession, user_id: str) -> int:
    stmt = (
        select(func.count())
        .select_from(SessionEntity)
        .where(
            SessionEntity.user_id == user_id,
            SessionEntity.status == SessionStatus.ACTIVE.value,
        )
    )
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def get_oldest_active_session(
    session: AsyncSession, user_id: str
) -> SessionEntity | None:
    stmt = (
        select(SessionEntity)
        .where(
            SessionEntity.user_id == user_id,
            SessionEntity.status == SessionStatus.ACTIVE.value,
        )
        .order_by(SessionEntity.created_at.asc(), SessionEntity.id.asc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def set_session_status(
    session: AsyncSession,
    session_id: str,
    status: SessionStatus,
    *,
    only_if_active: bool = False,
) -> bool:
    """Move a session to ``status``. Returns False when no row changed."""
    stmt = update(SessionEntity).where(SessionEntity.id == session_id)
    if only_if_active:
        stmt = stmt.where(SessionEntity.status == SessionStatus.ACTIVE.value)
    stmt = stmt.values(status=status.value).execution_options(
        synchronize_session="evaluate"
    )
    result = await session.execute(stmt)
    await session.flush()
    return result.rowcount == 1


async def revoke_active_sessions_for_user(
    session: AsyncSession, user_id: str
) -> int:
    """Revoke every active session of a user; returns how many changed."""
    stmt = (
        update(SessionEntity)
        .where(
            SessionEntity.user_id == user_id,
            SessionEntity.status == SessionStatus.ACTIVE.value,
        )
        .values(status=SessionStatus.REVOKED.value)
        .execution_options(synchronize_session="evaluate")
    )
    result = await session.execute(stmt)
    await session.flush()
    return result.rowcount


async def rotate_session_tokens(
    session: AsyncSession,
    *,
    session_id: str,
    expected_refresh_hash: str,
    access_token: str,
    refresh_token: str,
    expires_at: datetime,
    refreshed_at: datetime,
) -> bool:
    """Swap in a new token pair if the stored refresh digest is unchanged.

    The compare-and-swap guard makes concurrent renewals of one session
    serialisable: only the first writer matches ``expected_refresh_hash``.
    """
    stmt = (
        update(SessionEntity)
        .where(
            SessionEntity.id == session_id,
            SessionEntity.refresh_token_hash == expected_refresh_hash,
            SessionEntity.status == SessionStatus.ACTIVE.value,
        )
        .values(
            access_token_hash=hash_token(access_token),
            refresh_token_hash=hash_token(refresh_token),
            expires_at=expires_at,
            refreshed_at=refreshed_at,
        )
        .execution_options(synchronize_session="evaluate")
    )
    result = await session.execute(stmt)
    await session.flush()
    return result.rowcount == 1
