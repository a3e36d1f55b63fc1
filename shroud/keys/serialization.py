"""
Shroud v1 Key Serialization

Fixed 194-byte layout of the key hierarchy. This is the plaintext that the
key store encrypts.

    master (32) | storage (32) | viewing_private (32) | viewing_public (33)
    | spending_private (32) | spending_public (33)
"""

from typing import List, Tuple

from shroud.constants import (
    MASTER_KEY_SIZE,
    PRIVATE_KEY_SIZE,
    COMPRESSED_PUBLIC_KEY_SIZE,
    SERIALIZED_KEYS_SIZE,
)
from shroud.errors import CryptoError, ErrorCode
from shroud.keys.types import KeyHierarchy

# (field, size) in wire order
LAYOUT: List[Tuple[str, int]] = [
    ("master_key", MASTER_KEY_SIZE),
    ("storage_key", MASTER_KEY_SIZE),
    ("viewing_private", PRIVATE_KEY_SIZE),
    ("viewing_public", COMPRESSED_PUBLIC_KEY_SIZE),
    ("spending_private", PRIVATE_KEY_SIZE),
    ("spending_public", COMPRESSED_PUBLIC_KEY_SIZE),
]


def serialize_keys(keys: KeyHierarchy) -> bytearray:
    """Pack the hierarchy; the result holds secrets and should be zeroed."""
    buffer = bytearray()
    for name, size in LAYOUT:
        value = getattr(keys, name)
        if len(value) != size:
            raise CryptoError(
                f"{name} must be {size} bytes, got {len(value)}",
                ErrorCode.CRYPTO_INVALID_FORMAT
            )
        buffer.extend(value)
    return buffer


def deserialize_keys(data: bytes) -> KeyHierarchy:
    """Unpack a 194-byte buffer. Any other length is rejected."""
    if len(data) != SERIALIZED_KEYS_SIZE:
        raise CryptoError(
            f"Invalid serialized keys length: {len(data)}",
            ErrorCode.CRYPTO_INVALID_FORMAT
        )

    fields = {}
    offset = 0
    for name, size in LAYOUT:
        fields[name] = data[offset:offset + size]
        offset += size

    return KeyHierarchy(**fields)
