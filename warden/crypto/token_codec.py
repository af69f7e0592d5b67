"""Bearer token signing and verification against the rotating key set."""

from datetime import UTC, datetime

import jwt
from pydantic import ValidationError

from warden.core.errors import TokenFailure
from warden.crypto.keys import jwk_entry_to_public_key
from warden.crypto.types import (
    SIGNING_ALGORITHM,
    InvalidToken,
    TokenClaims,
    TokenKind,
    VerifiedToken,
    VerifyResult,
)
from warden.keys.manager import KeyLifecycleManager

TOKEN_TYPES = {
    TokenKind.ACCESS: "at+jwt",
    TokenKind.REFRESH: "rt+jwt",
}
REQUIRED_CLAIMS = ["sub", "jti", "iss", "iat", "exp"]


class TokenCodec:
    """Signs with the active key and verifies against the published key set.

    The codec never decides which key is active or trusted; it asks the
    ``KeyLifecycleManager`` on every call.
    """

    def __init__(
        self,
        keys: KeyLifecycleManager,
        *,
        issuer: str,
        access_ttl: int,
        refresh_ttl: int,
    ) -> None:
        self._keys = keys
        self._issuer = issuer
        self._ttls = {
            TokenKind.ACCESS: access_ttl,
            TokenKind.REFRESH: refresh_ttl,
        }

    @property
    def issuer(self) -> str:
        return self._issuer

    def ttl(self, kind: TokenKind) -> int:
        return self._ttls[kind]

    async def sign(
        self, subject: str, session_id: str, kind: TokenKind, now: datetime
    ) -> str:
        """Create a signed token whose ``jti`` is the session id."""
        key = await self._keys.get_active_signing_key()
        # sub-second NumericDates keep successive rotations of one session distinct
        issued_at = now.timestamp()
        payload = {
            "iss": self._issuer,
            "sub": subject,
            "jti": session_id,
            "iat": issued_at,
            "exp": issued_at + self._ttls[kind],
        }
        return jwt.encode(
            payload,
            key.private_key_pem,
            algorithm=SIGNING_ALGORITHM,
            headers={"kid": key.kid, "typ": TOKEN_TYPES[kind]},
        )

    async def verify(
        self,
        token: str,
        now: datetime,
        expected_kind: TokenKind | None = None,
    ) -> VerifyResult:
        """Check signature, kid, issuer and expiry; never trust a partial pass."""
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError:
            return InvalidToken(reason=TokenFailure.MALFORMED)
        if header.get("alg") != SIGNING_ALGORITHM:
            return InvalidToken(reason=TokenFailure.MALFORMED)
        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            return InvalidToken(reason=TokenFailure.UNKNOWN_KID)
        if expected_kind is not None and header.get("typ") != TOKEN_TYPES[expected_kind]:
            return InvalidToken(reason=TokenFailure.WRONG_KIND)

        jwks = await self._keys.get_verification_key_set()
        entry = next((k for k in jwks.keys if k.kid == kid), None)
        if entry is None:
            return InvalidToken(reason=TokenFailure.UNKNOWN_KID)

        try:
            raw = jwt.decode(
                token,
                jwk_entry_to_public_key(entry),
                algorithms=[SIGNING_ALGORITHM],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_aud": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except jwt.MissingRequiredClaimError:
            return InvalidToken(reason=TokenFailure.MISSING_CLAIMS)
        except jwt.InvalidSignatureError:
            return InvalidToken(reason=TokenFailure.BAD_SIGNATURE)
        except jwt.PyJWTError:
            return InvalidToken(reason=TokenFailure.MALFORMED)

        try:
            claims = TokenClaims.model_validate(raw)
        except ValidationError:
            return InvalidToken(reason=TokenFailure.MISSING_CLAIMS)

        if claims.iss != self._issuer:
            return InvalidToken(reason=TokenFailure.ISSUER_MISMATCH)
        if claims.exp <= now.timestamp():
            return InvalidToken(reason=TokenFailure.EXPIRED)

        return VerifiedToken(
            subject=claims.sub,
            session_id=claims.jti,
            kid=kid,
            expires_at=datetime.fromtimestamp(claims.exp, tz=UTC),
        )
