"""Session creation, renewal, revocation and bearer validation.

This is the only layer that turns key, codec and persistence failures into
domain outcomes. Every renewal failure becomes ``InvalidRefreshTokenError``
and every access failure ``InvalidAccessTokenError``; the specific reason
rides along on the exception for logs and tests but is never rendered.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import uuid_utils
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from warden.core.errors import (
    AccessFailure,
    ConflictError,
    InvalidAccessTokenError,
    InvalidRefreshTokenError,
    NotFoundError,
    RefreshFailure,
    StoreUnavailableError,
    TokenFailure,
    UnauthorizedError,
)
from warden.core.logging import get_logger
from warden.crypto.token_codec import TokenCodec
from warden.crypto.types import InvalidToken, TokenKind, VerifiedToken
from warden.db.models_session import SessionEntity, SessionStatus
from warden.db.repo_sessions import (
    count_active_sessions,
    get_oldest_active_session,
    get_session_by_access_token,
    get_session_by_id,
    get_session_by_refresh_token,
    hash_token,
    revoke_active_sessions_for_user,
    rotate_session_tokens,
    set_session_status,
    store_session,
)
from warden.db.repo_user import get_user_by_id, lock_user
from warden.sessions.types import (
    AuthenticatedIdentity,
    IssuedTokens,
    RefreshedSession,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SessionLifecycleEngine:
    """Issues, renews, revokes and validates session-bound bearer tokens."""

    def __init__(
        self,
        codec: TokenCodec,
        *,
        max_sessions: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._codec = codec
        self._max_sessions = max_sessions
        self._clock = clock

    async def create_session(
        self, db: AsyncSession, user_id: str, now: datetime | None = None
    ) -> IssuedTokens:
        """Open a session for ``user_id``, evicting the oldest one at the ceiling."""
        now = now or self._clock()
        if await lock_user(db, user_id) is None:
            raise NotFoundError(f"unknown user {user_id}")

        if await count_active_sessions(db, user_id) >= self._max_sessions:
            oldest = await get_oldest_active_session(db, user_id)
            if oldest is not None:
                await set_session_status(
                    db, oldest.id, SessionStatus.REVOKED, only_if_active=True
                )
                logger.info("session_evicted", session_id=oldest.id, user_id=user_id)

        session_id = str(uuid_utils.uuid7())
        access_token = await self._codec.sign(user_id, session_id, TokenKind.ACCESS, now)
        refresh_token = await self._codec.sign(
            user_id, session_id, TokenKind.REFRESH, now
        )
        entity = SessionEntity(
            id=session_id,
            user_id=user_id,
            access_token_hash=hash_token(access_token),
            refresh_token_hash=hash_token(refresh_token),
            status=SessionStatus.ACTIVE.value,
            expires_at=self._access_expiry(now),
            created_at=now,
            refreshed_at=now,
        )
        try:
            await store_session(db, entity)
        except IntegrityError as exc:
            raise ConflictError("session token already issued") from exc
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailableError("session store unavailable") from exc
        except SQLAlchemyError as exc:
            raise UnauthorizedError("Failed to create session") from exc

        logger.info("session_created", session_id=session_id, user_id=user_id)
        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            session_id=session_id,
        )

    async def refresh_session(
        self, db: AsyncSession, refresh_token: str, now: datetime | None = None
    ) -> RefreshedSession:
        """Rotate both tokens of the session that currently holds ``refresh_token``.

        Nothing is written unless every precondition holds, and the final
        write is a compare-and-swap on the presented refresh token, so two
        renewals racing with the same token cannot both succeed.
        """
        now = now or self._clock()
        verified = await self._codec.verify(
            refresh_token, now, expected_kind=TokenKind.REFRESH
        )
        if isinstance(verified, InvalidToken):
            raise self._reject_refresh(
                RefreshFailure.INVALID_TOKEN, token_failure=verified.reason
            )

        session = await get_session_by_refresh_token(db, refresh_token)
        if session is None:
            raise self._reject_refresh(RefreshFailure.SESSION_NOT_FOUND)
        if session.user_id != verified.subject or session.id != verified.session_id:
            raise self._reject_refresh(RefreshFailure.SESSION_MISMATCH)
        if session.status != SessionStatus.ACTIVE.value:
            raise self._reject_refresh(RefreshFailure.SESSION_INACTIVE)

        new_access = await self._codec.sign(
            session.user_id, session.id, TokenKind.ACCESS, now
        )
        new_refresh = await self._codec.sign(
            session.user_id, session.id, TokenKind.REFRESH, now
        )
        if hash_token(new_refresh) == session.refresh_token_hash:
            raise ConflictError("renewal produced the presented token; retry")

        rotated = await rotate_session_tokens(
            db,
            session_id=session.id,
            expected_refresh_hash=hash_token(refresh_token),
            access_token=new_access,
            refresh_token=new_refresh,
            expires_at=self._access_expiry(now),
            refreshed_at=now,
        )
        if not rotated:
            raise self._reject_refresh(RefreshFailure.STALE_TOKEN)

        await db.refresh(session)
        logger.info("session_refreshed", session_id=session.id, user_id=session.user_id)
        return RefreshedSession(
            access_token=new_access,
            refresh_token=new_refresh,
            session=session,
        )

    async def revoke_session(self, db: AsyncSession, session_id: str) -> None:
        """Terminate a session. Revoking a finished session changes nothing."""
        session = await get_session_by_id(db, session_id)
        if session is None:
            raise NotFoundError(f"unknown session {session_id}")
        if await set_session_status(
            db, session_id, SessionStatus.REVOKED, only_if_active=True
        ):
            logger.info("session_revoked", session_id=session_id)

    async def revoke_user_sessions(self, db: AsyncSession, user_id: str) -> int:
        """Revoke every active session a user holds."""
        if await get_user_by_id(db, user_id) is None:
            raise NotFoundError(f"unknown user {user_id}")
        revoked = await revoke_active_sessions_for_user(db, user_id)
        logger.info("user_sessions_revoked", user_id=user_id, count=revoked)
        return revoked

    async def validate_bearer(
        self,
        db: AsyncSession,
        access_token: str,
        refresh_token: str | None = None,
        now: datetime | None = None,
    ) -> AuthenticatedIdentity:
        """Authenticate a request, renewing through ``refresh_token`` if needed.

        The refresh fallback only runs when the access token itself fails
        verification. A live token bound to a dead session fails closed.
        """
        now = now or self._clock()
        verified = await self._codec.verify(
            access_token, now, expected_kind=TokenKind.ACCESS
        )
        if isinstance(verified, VerifiedToken):
            return await self._identity_from_access(db, access_token, verified, now)

        if refresh_token is None:
            logger.info("bearer_rejected", reason=verified.reason)
            raise InvalidAccessTokenError(AccessFailure.INVALID_TOKEN)

        try:
            refreshed = await self.refresh_session(db, refresh_token, now)
        except InvalidRefreshTokenError as exc:
            if exc.token_failure is TokenFailure.EXPIRED:
                await self._expire_session_holding(db, refresh_token)
            raise

        user = await get_user_by_id(db, refreshed.session.user_id)
        if user is None:
            raise InvalidAccessTokenError(AccessFailure.USER_NOT_FOUND)
        return AuthenticatedIdentity(
            user=user,
            session=refreshed.session,
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token,
            tokens_refreshed=True,
        )

    async def _identity_from_access(
        self,
        db: AsyncSession,
        access_token: str,
        verified: VerifiedToken,
        now: datetime,
    ) -> AuthenticatedIdentity:
        session = await get_session_by_access_token(db, access_token)
        if session is None:
            raise self._reject_access(AccessFailure.SESSION_NOT_FOUND)
        if session.user_id != verified.subject or session.id != verified.session_id:
            raise self._reject_access(AccessFailure.SESSION_MISMATCH)
        if session.status != SessionStatus.ACTIVE.value:
            raise self._reject_access(AccessFailure.SESSION_INACTIVE)
        if now >= _as_utc(session.expires_at):
            raise self._reject_access(AccessFailure.SESSION_EXPIRED)

        user = await get_user_by_id(db, session.user_id)
        if user is None:
            raise self._reject_access(AccessFailure.USER_NOT_FOUND)
        return AuthenticatedIdentity(user=user, session=session, access_token=access_token)

    async def _expire_session_holding(self, db: AsyncSession, refresh_token: str) -> None:
        """Mark the session whose refresh token lapsed as ``expired``.

        Committed on its own: the caller is about to fail the request and
        would otherwise roll the transition back.
        """
        session = await get_session_by_refresh_token(db, refresh_token)
        if session is None:
            return
        if await set_session_status(
            db, session.id, SessionStatus.EXPIRED, only_if_active=True
        ):
            await db.commit()
            logger.info("session_expired", session_id=session.id)

    def _access_expiry(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self._codec.ttl(TokenKind.ACCESS))

    @staticmethod
    def _reject_refresh(
        reason: RefreshFailure, token_failure: TokenFailure | None = None
    ) -> InvalidRefreshTokenError:
        logger.info("refresh_rejected", reason=reason, cause=token_failure)
        return InvalidRefreshTokenError(reason, token_failure=token_failure)

    @staticmethod
    def _reject_access(reason: AccessFailure) -> InvalidAccessTokenError:
        logger.info("bearer_rejected", reason=reason)
        return InvalidAccessTokenError(reason)
