"""RSA signing keys: generation, at-rest encryption and JWK publication."""

import base64

import jwt
import uuid_utils
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import (
    RSAPrivateKey,
    RSAPublicKey,
)

from warden.crypto.types import JWKEntry, SigningKeyData

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


def _spki_pem(private_key: RSAPrivateKey) -> str:
    raw = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return raw.decode()


def _cipher(fernet_key: str) -> Fernet:
    return Fernet(fernet_key.encode())


def _b64url_uint(value: int) -> str:
    """Unpadded base64url of a big-endian unsigned integer (RFC 7518 §6.3)."""
    size = max(1, (value.bit_length() + 7) // 8)
    return base64.urlsafe_b64encode(value.to_bytes(size, "big")).rstrip(b"=").decode()


def generate_rsa_keypair() -> SigningKeyData:
    """Generate an RSA-2048 keypair named by a time-ordered UUIDv7 kid."""
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE,
    )
    pkcs8 = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return SigningKeyData(
        kid=str(uuid_utils.uuid7()),
        private_key_pem=pkcs8.decode(),
        public_key_pem=_spki_pem(private_key),
    )


def public_pem_from_private(private_pem: str) -> str:
    """Derive the SubjectPublicKeyInfo PEM from a PKCS#8 private key."""
    loaded = serialization.load_pem_private_key(private_pem.encode(), password=None)
    assert isinstance(loaded, RSAPrivateKey)
    return _spki_pem(loaded)


def encrypt_private_key(private_pem: str, fernet_key: str) -> str:
    """Encrypt a private PEM before it is written to the key store."""
    return _cipher(fernet_key).encrypt(private_pem.encode()).decode()


def decrypt_private_key(encrypted: str, fernet_key: str) -> str:
    """Raises ``cryptography.fernet.InvalidToken`` on a wrong key or tampering."""
    return _cipher(fernet_key).decrypt(encrypted.encode()).decode()


def pem_to_jwk_entry(public_key_pem: str, kid: str) -> JWKEntry:
    """Publish a SubjectPublicKeyInfo PEM as an RS256 signing JWK."""
    loaded = serialization.load_pem_public_key(public_key_pem.encode())
    assert isinstance(loaded, RSAPublicKey)
    numbers = loaded.public_numbers()
    return JWKEntry(kid=kid, n=_b64url_uint(numbers.n), e=_b64url_uint(numbers.e))


def jwk_entry_to_public_key(entry: JWKEntry) -> RSAPublicKey:
    """Load a published JWK back into a verifying key."""
    key = jwt.PyJWK(entry.model_dump(), algorithm=entry.alg).key
    assert isinstance(key, RSAPublicKey)
    return key
