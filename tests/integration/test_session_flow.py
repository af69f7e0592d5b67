"""End-to-end session flow across key rotation and token renewal."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from warden.core.errors import InvalidRefreshTokenError
from warden.crypto.token_codec import TokenCodec
from warden.crypto.types import TokenKind, VerifiedToken
from warden.db.models_user import UserEntity
from warden.keys.manager import KeyLifecycleManager
from warden.sessions.lifecycle import SessionLifecycleEngine

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class TestSessionFlow:
    """Issue at t0, validate at t0+5m, renew through the fallback at t0+20m."""

    async def test_full_lifecycle(
        self,
        db_session: AsyncSession,
        lifecycle: SessionLifecycleEngine,
        user: UserEntity,
    ) -> None:
        issued = await lifecycle.create_session(db_session, user.id, T0)
        await db_session.commit()

        identity = await lifecycle.validate_bearer(
            db_session,
            issued.access_token,
            issued.refresh_token,
            now=T0 + timedelta(minutes=5),
        )
        assert identity.tokens_refreshed is False
        assert identity.access_token == issued.access_token

        renewed = await lifecycle.validate_bearer(
            db_session,
            issued.access_token,
            issued.refresh_token,
            now=T0 + timedelta(minutes=20),
        )
        await db_session.commit()
        assert renewed.tokens_refreshed is True
        assert renewed.session.id == issued.session_id
        assert renewed.refresh_token is not None

        with pytest.raises(InvalidRefreshTokenError):
            await lifecycle.refresh_session(
                db_session, issued.refresh_token, T0 + timedelta(minutes=21)
            )

        current = await lifecycle.validate_bearer(
            db_session, renewed.access_token, now=T0 + timedelta(minutes=25)
        )
        assert current.session.id == issued.session_id

    async def test_tokens_outlive_rotation(
        self,
        db_session: AsyncSession,
        lifecycle: SessionLifecycleEngine,
        key_manager: KeyLifecycleManager,
        token_codec: TokenCodec,
        user: UserEntity,
    ) -> None:
        issued = await lifecycle.create_session(db_session, user.id, T0)
        await key_manager.rotate_keys()

        identity = await lifecycle.validate_bearer(
            db_session, issued.access_token, now=T0 + timedelta(minutes=1)
        )
        assert identity.session.id == issued.session_id

        renewed = await lifecycle.refresh_session(
            db_session, issued.refresh_token, T0 + timedelta(minutes=2)
        )
        verified = await token_codec.verify(
            renewed.access_token, T0 + timedelta(minutes=2), TokenKind.ACCESS
        )
        assert isinstance(verified, VerifiedToken)
        active = await key_manager.get_active_signing_key()
        assert verified.kid == active.kid
