"""
Shroud v1 Curve Primitives

secp256k1 scalar and point operations on top of coincurve
(libsecp256k1). All public keys leave this module in 33-byte compressed
form unless explicitly asked otherwise.
"""

import logging
import secrets
from typing import Tuple

from coincurve import PrivateKey, PublicKey

from shroud.constants import (
    SECP256K1_N,
    PRIVATE_KEY_SIZE,
    COMPRESSED_PUBLIC_KEY_SIZE,
    UNCOMPRESSED_PUBLIC_KEY_SIZE,
    ADDRESS_SIZE,
)
from shroud.crypto.hashing import keccak256
from shroud.errors import CryptoError, ErrorCode

logger = logging.getLogger(__name__)


# ============================================================================
# PREDICATES
# ============================================================================

def is_valid_private_key(private_key) -> bool:
    """
    Check that a value is a usable secp256k1 scalar.

    32 bytes, 0 < k < n. Never raises.
    """
    if not isinstance(private_key, (bytes, bytearray)):
        return False
    if len(private_key) != PRIVATE_KEY_SIZE:
        return False
    k = int.from_bytes(private_key, 'big')
    return 0 < k < SECP256K1_N


def is_valid_public_key(public_key) -> bool:
    """
    Check that a value decodes to a point on the curve.

    Accepts 33-byte compressed (0x02/0x03) or 65-byte uncompressed (0x04)
    encodings. Never raises.
    """
    if not isinstance(public_key, (bytes, bytearray)):
        return False
    if len(public_key) == COMPRESSED_PUBLIC_KEY_SIZE:
        if public_key[0] not in (0x02, 0x03):
            return False
    elif len(public_key) == UNCOMPRESSED_PUBLIC_KEY_SIZE:
        if public_key[0] != 0x04:
            return False
    else:
        return False

    try:
        PublicKey(bytes(public_key))
    except ValueError:
        return False
    return True


# ============================================================================
# KEY DERIVATION
# ============================================================================

def derive_public_key(private_key: bytes, compressed: bool = True) -> bytes:
    """privateKey · G."""
    if not is_valid_private_key(private_key):
        raise CryptoError("Invalid private key", ErrorCode.CRYPTO_INVALID_KEY)
    return PrivateKey(bytes(private_key)).public_key.format(compressed=compressed)


def generate_keypair() -> Tuple[bytearray, bytes]:
    """
    Fresh random keypair.

    The private half is returned as a bytearray so the caller can zero it.
    """
    while True:
        candidate = bytearray(secrets.token_bytes(PRIVATE_KEY_SIZE))
        if is_valid_private_key(candidate):
            return candidate, derive_public_key(candidate)


def _load_public_key(public_key: bytes) -> PublicKey:
    if not is_valid_public_key(public_key):
        raise CryptoError("Invalid public key", ErrorCode.CRYPTO_INVALID_KEY)
    return PublicKey(bytes(public_key))


def compress_public_key(public_key: bytes) -> bytes:
    return _load_public_key(public_key).format(compressed=True)


def decompress_public_key(public_key: bytes) -> bytes:
    return _load_public_key(public_key).format(compressed=False)


def public_key_to_address(public_key: bytes) -> bytes:
    """
    Account address of a public key.

    keccak256(X || Y) of the uncompressed point, last 20 bytes.
    """
    uncompressed = decompress_public_key(public_key)
    return keccak256(uncompressed[1:])[-ADDRESS_SIZE:]


# ============================================================================
# ECDH
# ============================================================================

def ecdh_shared_secret(private_key: bytes, public_key: bytes) -> bytes:
    """
    Raw ECDH: x-coordinate of privateKey · publicKey.

    coincurve's PrivateKey.ecdh hashes the point, so the multiplication is
    done on the public key and the x-coordinate sliced out of the
    compressed encoding.
    """
    if not is_valid_private_key(private_key):
        raise CryptoError("Invalid private key for ECDH", ErrorCode.CRYPTO_INVALID_KEY)
    point = _load_public_key(public_key)
    shared = point.multiply(bytes(private_key))
    return shared.format(compressed=True)[1:]


# ============================================================================
# SCALAR / POINT ARITHMETIC
# ============================================================================

def scalar_from_hash(digest: bytes) -> int:
    """Interpret a 32-byte digest as a scalar mod n."""
    return int.from_bytes(digest, 'big') % SECP256K1_N


def scalar_add_mod_n(a: bytes, b: int) -> bytes:
    """(a + b) mod n as 32 big-endian bytes."""
    total = (int.from_bytes(a, 'big') + b) % SECP256K1_N
    if total == 0:
        raise CryptoError("Scalar addition produced zero", ErrorCode.CRYPTO_INVALID_KEY)
    return total.to_bytes(PRIVATE_KEY_SIZE, 'big')


def point_add_scalar_base(public_key: bytes, scalar: int) -> bytes:
    """publicKey + scalar · G, compressed."""
    point = _load_public_key(public_key)
    try:
        tweaked = point.add(scalar.to_bytes(PRIVATE_KEY_SIZE, 'big'))
    except ValueError as e:
        raise CryptoError(f"Point addition failed: {e}", ErrorCode.CRYPTO_INVALID_KEY) from e
    return tweaked.format(compressed=True)


def add_points(a: bytes, b: bytes) -> bytes:
    """A + B, compressed."""
    try:
        combined = PublicKey.combine_keys([_load_public_key(a), _load_public_key(b)])
    except ValueError as e:
        raise CryptoError(f"Point addition failed: {e}", ErrorCode.CRYPTO_INVALID_KEY) from e
    return combined.format(compressed=True)
