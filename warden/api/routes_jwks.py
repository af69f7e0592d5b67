"""Public JSON Web Key Set endpoint."""

from fastapi import APIRouter, Response

from warden.api.deps import Keys
from warden.crypto.types import JWKSResponse

router = APIRouter(tags=["keys"])

JWKS_CACHE_CONTROL = "public, max-age=300"


@router.get("/.well-known/jwks.json")
@router.get("/auth/jwks")
async def jwks(response: Response, keys: Keys) -> JWKSResponse:
    """Every retained, non-revoked verification key, newest first."""
    key_set = await keys.get_verification_key_set()
    response.headers["Cache-Control"] = JWKS_CACHE_CONTROL
    return key_set
