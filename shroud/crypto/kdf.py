"""
Shroud v1 Key Derivation

Turns a password and an external signature into the key hierarchy:

    password_hash = Argon2id(password, salt)
    master        = HKDF-Keccak256(password_hash || signature)
    storage       = Expand(master, "storage")
    viewing       = Expand(master, "viewing")   (valid scalar)
    spending      = Expand(master, "spending")  (valid scalar)

A second, password-only Argon2id output under an independent salt is the
unlock key that encrypts the stored hierarchy.
"""

import logging
import secrets
from typing import Optional

from argon2.low_level import hash_secret_raw, Type
from argon2.exceptions import HashingError

from shroud.config import KdfConfig
from shroud.constants import (
    SALT_SIZE,
    SIGNATURE_SIZE,
    SIGNATURE_MESSAGE_TEMPLATE,
    HKDF_MASTER_SALT,
    HKDF_MASTER_INFO,
    LABEL_STORAGE,
    LABEL_VIEWING,
    LABEL_SPENDING,
    MASTER_KEY_SIZE,
    MAX_SCALAR_ATTEMPTS,
)
from shroud.crypto.curve import derive_public_key, is_valid_private_key
from shroud.crypto.hashing import hkdf, hkdf_expand
from shroud.encoding import hex_to_bytes
from shroud.errors import (
    AuthError,
    CryptoError,
    ErrorCode,
    KeyStateError,
    ValidationError,
)
from shroud.keys.types import KeyHierarchy, zero_buffer
from shroud.signer import Signer

logger = logging.getLogger(__name__)


def generate_salt(size: int = SALT_SIZE) -> bytes:
    """Random salt from the OS CSPRNG."""
    return secrets.token_bytes(size)


def hash_password(password: str, salt: bytes, params: Optional[KdfConfig] = None) -> bytearray:
    """
    Memory-hard password hash (Argon2id).

    Args:
        password: User password (minimum length from params)
        salt: Random salt

    Returns:
        hash_len-byte output as a bytearray the caller must zero

    Raises:
        ValidationError: If password is too short
    """
    params = params or KdfConfig()

    if not isinstance(password, str) or len(password) < params.min_password_length:
        raise ValidationError(
            f"Password must be at least {params.min_password_length} characters"
        )

    try:
        digest = hash_secret_raw(
            secret=password.encode('utf-8'),
            salt=bytes(salt),
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=params.hash_len,
            type=Type.ID,  # Argon2id - hybrid of i and d
        )
    except HashingError as e:
        raise KeyStateError(
            f"Password hashing failed: {e}",
            ErrorCode.KEY_DERIVATION_FAILED
        ) from e

    return bytearray(digest)


# ============================================================================
# SIGNER FACTOR
# ============================================================================

def signature_message(identifier: str) -> str:
    """The fixed message the signer is asked to sign for an identifier."""
    if not identifier or not identifier.strip():
        raise ValidationError("User identifier cannot be empty")
    return SIGNATURE_MESSAGE_TEMPLATE + identifier.strip().lower()


def request_signature(signer: Signer, identifier: str) -> bytearray:
    """
    Ask the external signer for the deterministic derivation signature.

    Accepts raw bytes or 0x-hex from the signer.

    Raises:
        AuthError: signer missing or returned something other than 65 bytes
    """
    if signer is None:
        raise AuthError("Signer is required", ErrorCode.AUTH_SIGNER_REQUIRED)

    raw = signer.sign_message(signature_message(identifier))
    if isinstance(raw, str):
        try:
            raw = hex_to_bytes(raw)
        except ValidationError as e:
            raise AuthError("Signer returned malformed signature", ErrorCode.AUTH_SIGNATURE_INVALID) from e

    if len(raw) != SIGNATURE_SIZE:
        raise AuthError(
            f"Signature must be {SIGNATURE_SIZE} bytes, got {len(raw)}",
            ErrorCode.AUTH_SIGNATURE_INVALID
        )
    return bytearray(raw)


# ============================================================================
# HIERARCHY
# ============================================================================

def derive_master_key(password_hash: bytes, signature: bytes) -> bytearray:
    """HKDF-Keccak256 over password_hash || signature."""
    ikm = bytearray(password_hash) + bytearray(signature)
    try:
        return bytearray(hkdf(bytes(ikm), HKDF_MASTER_SALT, HKDF_MASTER_INFO, MASTER_KEY_SIZE))
    finally:
        zero_buffer(ikm)


def derive_subkey(master_key: bytes, label: bytes) -> bytearray:
    """Expand a 32-byte sub-key from the master key."""
    return bytearray(hkdf_expand(bytes(master_key), label, MASTER_KEY_SIZE))


def derive_scalar_subkey(master_key: bytes, label: bytes) -> bytearray:
    """
    Expand a sub-key that must be a valid secp256k1 scalar.

    The first attempt uses the bare label; on the (negligible) chance the
    output is zero or >= n, a counter byte is appended and expansion
    repeats.
    """
    key = derive_subkey(master_key, label)
    attempt = 0
    while not is_valid_private_key(key):
        attempt += 1
        if attempt >= MAX_SCALAR_ATTEMPTS:
            raise KeyStateError(
                f"Could not derive a valid {label.decode()} key",
                ErrorCode.KEY_DERIVATION_FAILED
            )
        zero_buffer(key)
        key = derive_subkey(master_key, label + bytes([attempt]))
    return key


def derive_storage_key(master_key: bytes) -> bytearray:
    return derive_scalar_subkey(master_key, LABEL_STORAGE)


def derive_viewing_key(master_key: bytes) -> bytearray:
    return derive_scalar_subkey(master_key, LABEL_VIEWING)


def derive_spending_key(master_key: bytes) -> bytearray:
    return derive_scalar_subkey(master_key, LABEL_SPENDING)


def hierarchy_from_master(master_key: bytes) -> KeyHierarchy:
    """Expand the full key hierarchy from a master key."""
    storage = derive_storage_key(master_key)
    viewing = derive_viewing_key(master_key)
    spending = derive_spending_key(master_key)
    try:
        return KeyHierarchy(
            master_key=master_key,
            storage_key=storage,
            viewing_private=viewing,
            viewing_public=derive_public_key(viewing),
            spending_private=spending,
            spending_public=derive_public_key(spending),
        )
    except CryptoError as e:
        raise KeyStateError(f"Failed to derive keys: {e.message}", ErrorCode.KEY_DERIVATION_FAILED) from e
    finally:
        for buf in (storage, viewing, spending):
            zero_buffer(buf)


def derive_key_hierarchy(password_hash: bytearray, signature: bytearray) -> KeyHierarchy:
    """
    Two-factor derivation of the whole hierarchy.

    The password hash and signature buffers are zeroed before returning,
    whether or not derivation succeeds.
    """
    master = None
    try:
        master = derive_master_key(password_hash, signature)
        return hierarchy_from_master(master)
    finally:
        zero_buffer(password_hash)
        zero_buffer(signature)
        zero_buffer(master)


def derive_keys(
    password: str,
    signer: Signer,
    identifier: str,
    salt: bytes,
    params: Optional[KdfConfig] = None
) -> KeyHierarchy:
    """Password + signer + salt -> KeyHierarchy."""
    password_hash = hash_password(password, salt, params)
    try:
        signature = request_signature(signer, identifier)
    except BaseException:
        zero_buffer(password_hash)
        raise
    return derive_key_hierarchy(password_hash, signature)


def derive_unlock_key(password: str, unlock_salt: bytes, params: Optional[KdfConfig] = None) -> bytearray:
    """Password-only key that encrypts the stored hierarchy."""
    return hash_password(password, unlock_salt, params)
