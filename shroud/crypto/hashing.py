"""
Shroud v1 Hash Primitives

Keccak-256 (the pre-NIST padding used on Ethereum), HMAC over
Keccak-256 and HKDF (RFC 5869) built on that HMAC.

pycryptodome's Keccak object cannot be handed to the stdlib hmac
module, so HMAC is composed directly from the Keccak-256 rate.
"""

from typing import Iterable

from Crypto.Hash import keccak

from shroud.constants import HASH_SIZE, KECCAK256_BLOCK_SIZE

_IPAD = bytes(0x36 for _ in range(KECCAK256_BLOCK_SIZE))
_OPAD = bytes(0x5C for _ in range(KECCAK256_BLOCK_SIZE))


def keccak256(*parts: bytes) -> bytes:
    """Keccak-256 digest of the concatenated parts."""
    h = keccak.new(digest_bits=256)
    for part in parts:
        h.update(bytes(part))
    return h.digest()


def hmac_keccak256(key: bytes, data: bytes) -> bytes:
    """HMAC with Keccak-256 as the underlying hash."""
    key = bytes(key)
    if len(key) > KECCAK256_BLOCK_SIZE:
        key = keccak256(key)
    key = key.ljust(KECCAK256_BLOCK_SIZE, b'\x00')

    inner = keccak256(_xor(key, _IPAD), data)
    return keccak256(_xor(key, _OPAD), inner)


def hkdf_extract(salt: bytes, ikm: bytes) -> bytes:
    """HKDF-Extract: PRK = HMAC(salt, IKM)."""
    if not salt:
        salt = bytes(HASH_SIZE)
    return hmac_keccak256(salt, ikm)


def hkdf_expand(prk: bytes, info: bytes, length: int = HASH_SIZE) -> bytes:
    """
    HKDF-Expand.

    T(0) = empty, T(i) = HMAC(PRK, T(i-1) || info || i)
    """
    if length <= 0 or length > 255 * HASH_SIZE:
        raise ValueError(f"HKDF output length out of range: {length}")

    okm = bytearray()
    block = b''
    counter = 1
    while len(okm) < length:
        block = hmac_keccak256(prk, block + info + bytes([counter]))
        okm.extend(block)
        counter += 1
    return bytes(okm[:length])


def hkdf(ikm: bytes, salt: bytes, info: bytes, length: int = HASH_SIZE) -> bytes:
    """Full extract-then-expand."""
    return hkdf_expand(hkdf_extract(salt, ikm), info, length)


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256 over a canonical function signature."""
    return keccak256(signature.encode('ascii'))[:4]


def event_topic(signature: str) -> bytes:
    """Topic 0 for an event signature."""
    return keccak256(signature.encode('ascii'))


def _xor(a: bytes, b: Iterable[int]) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))
