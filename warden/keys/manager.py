"""Signing key lifecycle: generation, activation, retention, revocation, JWKS.

Key layout in the store::

    auth:keys:active        -> kid of the key that signs new tokens
    auth:keys:pem:<kid>     -> Fernet-encrypted PKCS#8 private key
    auth:keys:jwk:<kid>     -> public JWK (JSON)
    auth:keys:meta:<kid>    -> SigningKeyRecord (JSON)
    auth:keys:recent        -> sorted set of kids scored by creation time
    auth:keys:revoked       -> set of kids barred from the JWKS

The verification set is a sliding window over ``auth:keys:recent`` and is
independent of which single key is active, so tokens signed just before a
rotation keep validating until their key is evicted or revoked.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from cryptography.fernet import InvalidToken as FernetInvalidToken

from warden.core.errors import NotFoundError, SigningKeyUnavailableError
from warden.core.logging import get_logger
from warden.crypto.keys import (
    decrypt_private_key,
    encrypt_private_key,
    generate_rsa_keypair,
    pem_to_jwk_entry,
    public_pem_from_private,
)
from warden.crypto.types import (
    ActiveSigningKey,
    JWKEntry,
    JWKSResponse,
    RotatedKey,
    SigningKeyData,
    SigningKeyRecord,
)
from warden.keys.store import KeyStore

logger = get_logger(__name__)

ACTIVE_KID_KEY = "auth:keys:active"
KEY_PEM_PREFIX = "auth:keys:pem:"
KEY_JWK_PREFIX = "auth:keys:jwk:"
KEY_META_PREFIX = "auth:keys:meta:"
RECENT_KEYS_ZSET = "auth:keys:recent"
REVOKED_KEYS_SET = "auth:keys:revoked"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def material_keys(kid: str) -> tuple[str, str, str]:
    """Every store key holding material or metadata for ``kid``."""
    return (KEY_PEM_PREFIX + kid, KEY_JWK_PREFIX + kid, KEY_META_PREFIX + kid)


class KeyLifecycleManager:
    """Owns the active signing key and the published verification key set."""

    def __init__(
        self,
        store: KeyStore,
        *,
        fernet_key: str,
        max_keys: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._fernet_key = fernet_key
        self._max_keys = max_keys
        self._clock = clock
        # Serialises first-key generation inside this process; the store-side
        # set-if-absent covers other instances.
        self._generation_lock = asyncio.Lock()

    @property
    def max_keys(self) -> int:
        return self._max_keys

    async def ensure_active_key(self) -> ActiveSigningKey:
        """Return the active key, generating and activating one if none exists."""
        kid = await self._store.get(ACTIVE_KID_KEY)
        if kid is None:
            async with self._generation_lock:
                kid = await self._store.get(ACTIVE_KID_KEY)
                if kid is None:
                    kid = await self._create_first_key()
        return await self._load_signing_key(kid)

    async def get_active_signing_key(self) -> ActiveSigningKey:
        """Return the key new tokens must be signed with."""
        kid = await self._store.get(ACTIVE_KID_KEY)
        if kid is None:
            return await self.ensure_active_key()
        return await self._load_signing_key(kid)

    async def rotate_keys(self) -> RotatedKey:
        """Generate a key and make it active; the previous key stays verifiable.

        When rotations overlap, the pointer only ever moves forward to the
        newest key, so an older key never replaces a newer one.
        """
        keypair = generate_rsa_keypair()
        created_at = self._clock()
        await self._persist(keypair, created_at)
        await self._store.index_add(RECENT_KEYS_ZSET, keypair.kid, created_at.timestamp())

        moved, previous = await self._store.advance_pointer(
            ACTIVE_KID_KEY, RECENT_KEYS_ZSET, keypair.kid
        )
        if not moved:
            await self._stamp(keypair.kid, deactivated_at=created_at)
            logger.info("signing_key_superseded", kid=keypair.kid, active_kid=previous)
        elif previous is not None and previous != keypair.kid:
            await self._stamp(previous, deactivated_at=created_at)

        evicted = await self._trim()
        logger.info(
            "signing_key_rotated",
            kid=keypair.kid,
            previous_kid=previous,
            evicted=evicted,
        )
        return RotatedKey(kid=keypair.kid, private_key_pem=keypair.private_key_pem)

    async def revoke_key(self, kid: str) -> None:
        """Permanently bar ``kid`` from verification and destroy its private key."""
        record = await self._load_record(kid)
        indexed = await self._store.index_score(RECENT_KEYS_ZSET, kid) is not None
        if record is None and not indexed:
            raise NotFoundError(f"unknown signing key {kid}")

        await self._store.add_member(REVOKED_KEYS_SET, kid)
        await self._store.delete(KEY_PEM_PREFIX + kid)
        if record is not None:
            await self._stamp(kid, revoked_at=self._clock())

        cleared = await self._store.delete_if_equals(ACTIVE_KID_KEY, kid)
        logger.warning("signing_key_revoked", kid=kid, was_active=cleared)

    async def get_verification_key_set(self) -> JWKSResponse:
        """Public keys of the newest retained, non-revoked kids, newest first."""
        kids = await self._store.index_newest(RECENT_KEYS_ZSET, self._max_keys)
        revoked = await self._store.members(REVOKED_KEYS_SET)
        eligible = [kid for kid in kids if kid not in revoked]
        raw_entries = await self._store.get_many([KEY_JWK_PREFIX + k for k in eligible])
        return JWKSResponse(
            keys=[JWKEntry.model_validate_json(raw) for raw in raw_entries if raw]
        )

    async def get_key_record(self, kid: str) -> SigningKeyRecord:
        """Return the stored metadata for ``kid``."""
        record = await self._load_record(kid)
        if record is None:
            raise NotFoundError(f"unknown signing key {kid}")
        return record

    async def _create_first_key(self) -> str:
        keypair = generate_rsa_keypair()
        created_at = self._clock()
        await self._persist(keypair, created_at)

        winner = await self._store.claim_pointer(
            ACTIVE_KID_KEY, RECENT_KEYS_ZSET, keypair.kid, created_at.timestamp()
        )
        if winner == keypair.kid:
            evicted = await self._trim()
            logger.info("signing_key_activated", kid=keypair.kid, evicted=evicted)
            return winner

        await self._store.delete(*material_keys(keypair.kid))
        logger.info("active_key_race_lost", kid=keypair.kid, winner=winner)
        return winner

    async def _persist(self, keypair: SigningKeyData, created_at: datetime) -> None:
        record = SigningKeyRecord(kid=keypair.kid, created_at=created_at)
        jwk = pem_to_jwk_entry(keypair.public_key_pem, keypair.kid)
        encrypted = encrypt_private_key(keypair.private_key_pem, self._fernet_key)
        await self._store.set(KEY_PEM_PREFIX + keypair.kid, encrypted)
        await self._store.set(KEY_JWK_PREFIX + keypair.kid, jwk.model_dump_json())
        await self._store.set(KEY_META_PREFIX + keypair.kid, record.model_dump_json())

    async def _trim(self) -> list[str]:
        evicted = await self._store.trim_index(
            RECENT_KEYS_ZSET, self._max_keys, material_keys, pinned_by=ACTIVE_KID_KEY
        )
        if evicted:
            logger.info("signing_keys_evicted", kids=evicted)
        return evicted

    async def _load_record(self, kid: str) -> SigningKeyRecord | None:
        raw = await self._store.get(KEY_META_PREFIX + kid)
        if raw is None:
            return None
        return SigningKeyRecord.model_validate_json(raw)

    async def _stamp(
        self,
        kid: str,
        *,
        deactivated_at: datetime | None = None,
        revoked_at: datetime | None = None,
    ) -> None:
        record = await self._load_record(kid)
        if record is None:
            return
        if deactivated_at is not None and record.deactivated_at is None:
            record.deactivated_at = deactivated_at
        if revoked_at is not None:
            record.revoked_at = revoked_at
        # xx: never resurrect metadata that eviction already removed
        await self._store.set(
            KEY_META_PREFIX + kid, record.model_dump_json(), only_if_present=True
        )

    async def _load_signing_key(self, kid: str) -> ActiveSigningKey:
        encrypted = await self._store.get(KEY_PEM_PREFIX + kid)
        if encrypted is None:
            raise SigningKeyUnavailableError(f"no private material for key {kid}")
        try:
            private_pem = decrypt_private_key(encrypted, self._fernet_key)
        except FernetInvalidToken as exc:
            raise SigningKeyUnavailableError(
                f"private material for key {kid} cannot be decrypted"
            ) from exc
        return ActiveSigningKey(
            kid=kid,
            private_key_pem=private_pem,
            public_key_pem=public_pem_from_private(private_pem),
        )
