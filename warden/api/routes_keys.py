"""Privileged signing key administration."""

from fastapi import APIRouter

from warden.api.deps import InternalToken, Keys
from warden.api.schemas import RevokeKeyResponse, RotateKeyResponse
from warden.crypto.types import SigningKeyRecord

router = APIRouter(prefix="/auth/keys", tags=["keys"])


@router.post("/rotate")
async def rotate_keys(keys: Keys, _token: InternalToken) -> RotateKeyResponse:
    """POST /auth/keys/rotate -- activate a new signing key."""
    rotated = await keys.rotate_keys()
    return RotateKeyResponse(kid=rotated.kid)


@router.post("/{kid}/revoke")
async def revoke_key(kid: str, keys: Keys, _token: InternalToken) -> RevokeKeyResponse:
    """POST /auth/keys/{kid}/revoke -- permanently withdraw a key."""
    await keys.revoke_key(kid)
    return RevokeKeyResponse()


@router.get("/{kid}")
async def get_key(kid: str, keys: Keys, _token: InternalToken) -> SigningKeyRecord:
    """GET /auth/keys/{kid} -- lifecycle metadata for one key."""
    return await keys.get_key_record(kid)
