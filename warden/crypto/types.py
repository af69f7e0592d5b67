"""Type definitions for signing keys, JWKS, and bearer token claims."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from warden.core.errors import TokenFailure

SIGNING_ALGORITHM = "RS256"
KEY_USE_SIGNATURE = "sig"


class TokenKind(StrEnum):
    """Which of the two bearer tokens a session carries."""

    ACCESS = "access"
    REFRESH = "refresh"


class SigningKeyData(BaseModel):
    """A freshly generated RSA keypair."""

    kid: str
    private_key_pem: str
    public_key_pem: str


class SigningKeyRecord(BaseModel):
    """Metadata stored alongside a key's material."""

    kid: str
    algorithm: str = SIGNING_ALGORITHM
    use: str = KEY_USE_SIGNATURE
    created_at: datetime
    deactivated_at: datetime | None = None
    revoked_at: datetime | None = None


class ActiveSigningKey(BaseModel):
    """The key currently used to sign new tokens."""

    kid: str
    private_key_pem: str
    public_key_pem: str


class RotatedKey(BaseModel):
    """Result of an explicit rotation."""

    kid: str
    private_key_pem: str


class JWKEntry(BaseModel):
    """Single JWK entry in a JWKS response."""

    kty: str = "RSA"
    use: str = KEY_USE_SIGNATURE
    alg: str = SIGNING_ALGORITHM
    kid: str
    n: str
    e: str


class JWKSResponse(BaseModel):
    """JSON Web Key Set response."""

    keys: list[JWKEntry]


class TokenClaims(BaseModel):
    """The closed claim set carried by every bearer token."""

    model_config = ConfigDict(extra="forbid")

    sub: str
    jti: str
    iss: str
    iat: float
    exp: float


class VerifiedToken(BaseModel):
    """A token that passed every check."""

    subject: str
    session_id: str
    kid: str
    expires_at: datetime


class InvalidToken(BaseModel):
    """A rejected token. Carries no subject or session."""

    reason: TokenFailure


VerifyResult = VerifiedToken | InvalidToken
