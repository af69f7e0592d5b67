"""Result types returned by the session lifecycle engine."""

from pydantic import BaseModel, ConfigDict

from warden.db.models_session import SessionEntity
from warden.db.models_user import UserEntity


class IssuedTokens(BaseModel):
    """Credentials minted for a new session."""

    access_token: str
    refresh_token: str
    session_id: str


class RefreshedSession(BaseModel):
    """A rotated token pair and the session it now belongs to."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    access_token: str
    refresh_token: str
    session: SessionEntity


class AuthenticatedIdentity(BaseModel):
    """Outcome of a successful bearer validation.

    When ``tokens_refreshed`` is set the caller must hand the new pair back
    to the client; the presented ones are no longer current.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: UserEntity
    session: SessionEntity
    access_token: str
    refresh_token: str | None = None
    tokens_refreshed: bool = False
