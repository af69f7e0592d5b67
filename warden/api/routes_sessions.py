"""Session issuance, renewal, logout and identity endpoints."""

from fastapi import APIRouter, status

from warden.api.deps import DbSession, Identity, InternalToken, Lifecycle, Settings
from warden.api.schemas import (
    IdentityResponse,
    IssueSessionPayload,
    RefreshPayload,
    RevokedSessionsResponse,
    SessionResponse,
    TokenPairResponse,
    UserResponse,
)

router = APIRouter(prefix="/auth", tags=["sessions"])


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def issue_session(
    payload: IssueSessionPayload,
    db: DbSession,
    lifecycle: Lifecycle,
    settings: Settings,
    _token: InternalToken,
) -> TokenPairResponse:
    """POST /auth/sessions -- open a session for an already authenticated user."""
    issued = await lifecycle.create_session(db, payload.user_id)
    return TokenPairResponse(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        expires_in=settings.access_token_ttl,
        session_id=issued.session_id,
    )


@router.post("/refresh")
async def refresh_tokens(
    payload: RefreshPayload,
    db: DbSession,
    lifecycle: Lifecycle,
    settings: Settings,
) -> TokenPairResponse:
    """POST /auth/refresh -- rotate both tokens of a session."""
    refreshed = await lifecycle.refresh_session(db, payload.refresh_token)
    return TokenPairResponse(
        access_token=refreshed.access_token,
        refresh_token=refreshed.refresh_token,
        expires_in=settings.access_token_ttl,
        session_id=refreshed.session.id,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(identity: Identity, db: DbSession, lifecycle: Lifecycle) -> None:
    """POST /auth/logout -- revoke the caller's session."""
    await lifecycle.revoke_session(db, identity.session.id)


@router.get("/me")
async def whoami(identity: Identity) -> IdentityResponse:
    """GET /auth/me -- the authenticated user and session."""
    return IdentityResponse(
        user=UserResponse.model_validate(identity.user),
        session=SessionResponse.model_validate(identity.session),
        tokens_refreshed=identity.tokens_refreshed,
    )


@router.post("/users/{user_id}/sessions/revoke")
async def revoke_user_sessions(
    user_id: str,
    db: DbSession,
    lifecycle: Lifecycle,
    _token: InternalToken,
) -> RevokedSessionsResponse:
    """POST /auth/users/{id}/sessions/revoke -- sign a user out everywhere."""
    revoked = await lifecycle.revoke_user_sessions(db, user_id)
    return RevokedSessionsResponse(revoked=revoked)
