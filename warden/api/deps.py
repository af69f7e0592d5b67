"""FastAPI dependency injection for keys, sessions and caller authentication."""

import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from warden.core.errors import UnauthorizedError
from warden.core.settings import AuthSettings
from warden.db.engine import get_session
from warden.keys.manager import KeyLifecycleManager
from warden.sessions.lifecycle import SessionLifecycleEngine
from warden.sessions.types import AuthenticatedIdentity

_security = HTTPBearer(auto_error=False)

NEW_ACCESS_TOKEN_HEADER = "X-New-Access-Token"
NEW_REFRESH_TOKEN_HEADER = "X-New-Refresh-Token"


def load_settings() -> AuthSettings:
    return AuthSettings()


def get_key_manager(request: Request) -> KeyLifecycleManager:
    return request.app.state.key_manager


def get_session_lifecycle(request: Request) -> SessionLifecycleEngine:
    return request.app.state.session_lifecycle


Credentials = Annotated[HTTPAuthorizationCredentials | None, Depends(_security)]
DbSession = Annotated[AsyncSession, Depends(get_session, scope="function")]
Settings = Annotated[AuthSettings, Depends(load_settings)]
Keys = Annotated[KeyLifecycleManager, Depends(get_key_manager)]
Lifecycle = Annotated[SessionLifecycleEngine, Depends(get_session_lifecycle)]


async def require_internal_token(credentials: Credentials, settings: Settings) -> str:
    """Verify the AUTH_INTERNAL_TOKEN Bearer token for privileged routes."""
    expected = settings.internal_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if credentials is None or not secrets.compare_digest(
        credentials.credentials, expected
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    return credentials.credentials


async def require_identity(
    response: Response,
    credentials: Credentials,
    db: DbSession,
    lifecycle: Lifecycle,
    x_refresh_token: Annotated[str | None, Header()] = None,
) -> AuthenticatedIdentity:
    """Authenticate the caller, echoing rotated tokens in response headers."""
    if credentials is None:
        raise UnauthorizedError("Authorization header is required")

    identity = await lifecycle.validate_bearer(
        db, credentials.credentials, x_refresh_token
    )
    if identity.tokens_refreshed and identity.refresh_token is not None:
        response.headers[NEW_ACCESS_TOKEN_HEADER] = identity.access_token
        response.headers[NEW_REFRESH_TOKEN_HEADER] = identity.refresh_token
    return identity


InternalToken = Annotated[str, Depends(require_internal_token)]
Identity = Annotated[AuthenticatedIdentity, Depends(require_identity)]
