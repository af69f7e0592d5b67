"""Error taxonomy shared by the key manager, token codec and session engine.

Every failure the core raises is an ``AuthError``. The HTTP layer renders the
``code`` and ``status_code`` of the error and nothing else, so internal reasons
(for example which refresh precondition failed) never reach the client.
"""

from enum import StrEnum


class TokenFailure(StrEnum):
    """Why the token codec rejected a token."""

    MALFORMED = "malformed"
    UNKNOWN_KID = "unknown_kid"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    ISSUER_MISMATCH = "issuer_mismatch"
    MISSING_CLAIMS = "missing_claims"
    WRONG_KIND = "wrong_kind"


class RefreshFailure(StrEnum):
    """Which renewal precondition failed."""

    INVALID_TOKEN = "invalid_token"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_MISMATCH = "session_mismatch"
    SESSION_INACTIVE = "session_inactive"
    STALE_TOKEN = "stale_token"


class AccessFailure(StrEnum):
    """Which access-token precondition failed."""

    INVALID_TOKEN = "invalid_token"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_MISMATCH = "session_mismatch"
    SESSION_INACTIVE = "session_inactive"
    SESSION_EXPIRED = "session_expired"
    USER_NOT_FOUND = "user_not_found"


class AuthError(Exception):
    """Base class for all warden failures."""

    status_code = 500
    code = "server_error"


class UnauthorizedError(AuthError):
    """Credential rejected; never retried automatically."""

    status_code = 401
    code = "unauthorized"


class InvalidAccessTokenError(UnauthorizedError):
    """Access token could not be matched to a live session."""

    code = "invalid_token"

    def __init__(self, reason: AccessFailure) -> None:
        super().__init__("Invalid access token")
        self.reason = reason


class InvalidRefreshTokenError(UnauthorizedError):
    """Renewal failed. ``reason`` is for logs and tests only."""

    code = "invalid_token"

    def __init__(
        self,
        reason: RefreshFailure,
        token_failure: TokenFailure | None = None,
    ) -> None:
        super().__init__("Invalid refresh token")
        self.reason = reason
        self.token_failure = token_failure


class NotFoundError(AuthError):
    """Referenced session or key does not exist."""

    status_code = 404
    code = "not_found"


class ConflictError(AuthError):
    """A uniqueness invariant would be violated."""

    status_code = 409
    code = "conflict"


class StoreUnavailableError(AuthError):
    """Backing store unreachable; safe to retry."""

    status_code = 503
    code = "temporarily_unavailable"


class SigningKeyUnavailableError(AuthError):
    """The active key has no usable private material."""

    code = "signing_key_unavailable"
