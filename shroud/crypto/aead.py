"""
Shroud v1 Authenticated Encryption

AES-256-GCM with optional additional authenticated data, plus the
versioned base64 envelope used for persistence:

    version (1) || nonce (12) || tag (16) || ciphertext

Every failure on the decrypt path surfaces as the same DecryptionError so
callers cannot tell a wrong key from tampered data.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shroud.constants import (
    AES_KEY_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    ENCRYPTION_VERSION,
    ENVELOPE_HEADER_SIZE,
    MAX_PLAINTEXT_SIZE,
)
from shroud.encoding import bytes_to_base64, base64_to_bytes
from shroud.errors import CryptoError, DecryptionError, ErrorCode, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EncryptedData:
    """AES-GCM output split into its parts."""
    nonce: bytes
    tag: bytes
    ciphertext: bytes

    def __post_init__(self):
        if len(self.nonce) != NONCE_SIZE:
            raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(self.nonce)}")
        if len(self.tag) != TAG_SIZE:
            raise ValueError(f"Tag must be {TAG_SIZE} bytes, got {len(self.tag)}")

    def serialize(self) -> bytes:
        """Serialize to bytes: version || nonce || tag || ciphertext."""
        return bytes([ENCRYPTION_VERSION]) + self.nonce + self.tag + self.ciphertext

    @classmethod
    def deserialize(cls, data: bytes) -> "EncryptedData":
        if len(data) < ENVELOPE_HEADER_SIZE:
            raise CryptoError("Encrypted data too short", ErrorCode.CRYPTO_INVALID_FORMAT)
        if data[0] != ENCRYPTION_VERSION:
            raise CryptoError(
                f"Unsupported encryption version: {data[0]}",
                ErrorCode.CRYPTO_INVALID_FORMAT
            )
        offset = 1
        nonce = data[offset:offset + NONCE_SIZE]
        offset += NONCE_SIZE
        tag = data[offset:offset + TAG_SIZE]
        offset += TAG_SIZE
        return cls(nonce=nonce, tag=tag, ciphertext=data[offset:])


def _check_key(key: bytes) -> None:
    if len(key) != AES_KEY_SIZE:
        raise CryptoError(f"Key must be {AES_KEY_SIZE} bytes for AES-256-GCM")
    if not any(key):
        raise CryptoError("Key cannot be all zeros")


def encrypt(plaintext: bytes, key: bytes, aad: Optional[bytes] = None) -> EncryptedData:
    """
    Encrypt with AES-256-GCM under a fresh random 96-bit nonce.

    Raises:
        CryptoError: bad key, empty or oversized plaintext
    """
    _check_key(key)
    if len(plaintext) == 0:
        raise CryptoError("Plaintext cannot be empty", ErrorCode.CRYPTO_ENCRYPTION_FAILED)
    if len(plaintext) > MAX_PLAINTEXT_SIZE:
        raise CryptoError(
            f"Plaintext too large (max {MAX_PLAINTEXT_SIZE} bytes)",
            ErrorCode.CRYPTO_ENCRYPTION_FAILED
        )

    nonce = secrets.token_bytes(NONCE_SIZE)
    sealed = AESGCM(bytes(key)).encrypt(nonce, bytes(plaintext), aad or None)

    # cryptography appends the tag to the ciphertext
    return EncryptedData(nonce=nonce, tag=sealed[-TAG_SIZE:], ciphertext=sealed[:-TAG_SIZE])


def decrypt(
    ciphertext: bytes,
    key: bytes,
    nonce: bytes,
    tag: bytes,
    aad: Optional[bytes] = None
) -> bytes:
    """
    Decrypt and authenticate.

    Raises:
        DecryptionError: wrong key, wrong AAD or tampered data
    """
    if len(key) != AES_KEY_SIZE or len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
        raise DecryptionError()
    if len(ciphertext) == 0:
        raise DecryptionError()

    try:
        return AESGCM(bytes(key)).decrypt(nonce, bytes(ciphertext) + tag, aad or None)
    except InvalidTag:
        raise DecryptionError() from None


def encrypt_bytes(plaintext: bytes, key: bytes, aad: Optional[bytes] = None) -> str:
    """Encrypt and pack into the base64 envelope."""
    return bytes_to_base64(encrypt(plaintext, key, aad).serialize())


def decrypt_bytes(envelope: str, key: bytes, aad: Optional[bytes] = None) -> bytes:
    """
    Unpack the base64 envelope and decrypt.

    Malformed envelopes and authentication failures alike raise
    DecryptionError.
    """
    try:
        parts = EncryptedData.deserialize(base64_to_bytes(envelope))
    except (CryptoError, ValidationError, ValueError) as e:
        logger.debug(f"Rejected envelope: {e}")
        raise DecryptionError() from None
    return decrypt(parts.ciphertext, key, parts.nonce, parts.tag, aad)
