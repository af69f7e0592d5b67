"""Pydantic request and response bodies for the HTTP surface."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


def _to_camel(name: str) -> str:
    """Convert snake_case to camelCase for JSON serialization."""
    parts = name.split("_")
    return parts[0] + "".join(p.capitalize() for p in parts[1:])


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=_to_camel,
        populate_by_name=True,
    )


class IssueSessionPayload(_CamelModel):
    """Request body for POST /auth/sessions."""

    user_id: str


class RefreshPayload(_CamelModel):
    """Request body for POST /auth/refresh."""

    refresh_token: str


class TokenPairResponse(_CamelModel):
    """A freshly minted access/refresh pair."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    session_id: str


class SessionResponse(_CamelModel):
    """Public view of a session row; token digests are never exposed."""

    id: str
    user_id: str
    status: str
    expires_at: datetime
    created_at: datetime
    refreshed_at: datetime


class UserResponse(_CamelModel):
    id: str
    email: str
    name: str


class IdentityResponse(_CamelModel):
    """Response for GET /auth/me."""

    user: UserResponse
    session: SessionResponse
    tokens_refreshed: bool = False


class RotateKeyResponse(BaseModel):
    kid: str


class RevokeKeyResponse(BaseModel):
    ok: bool = True


class RevokedSessionsResponse(BaseModel):
    revoked: int
