"""
Shroud v1 Encoding Helpers

Hex, base64 and account-address conversions with validation.
"""

import base64
import binascii
import re
from typing import Union

from shroud.constants import ADDRESS_SIZE
from shroud.crypto.hashing import keccak256
from shroud.errors import (
    ValidationError,
    InvalidAddressError,
    InvalidLengthError,
    ErrorCode,
)

_ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')

BytesLike = Union[bytes, bytearray]


def hex_to_bytes(value: str) -> bytes:
    """Decode hex with or without a 0x prefix."""
    if not isinstance(value, str):
        raise ValidationError("Hex value must be a string", ErrorCode.INVALID_HEX)
    if value.startswith(('0x', '0X')):
        value = value[2:]
    if len(value) % 2:
        raise ValidationError("Hex string has odd length", ErrorCode.INVALID_HEX)
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise ValidationError(f"Invalid hex string: {e}", ErrorCode.INVALID_HEX) from e


def bytes_to_hex(data: BytesLike, prefix: bool = True) -> str:
    encoded = bytes(data).hex()
    return '0x' + encoded if prefix else encoded


def bytes_to_base64(data: BytesLike) -> str:
    return base64.b64encode(bytes(data)).decode('ascii')


def base64_to_bytes(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64: {e}", ErrorCode.VALIDATION_FAILED) from e


def require_length(field: str, data: BytesLike, expected: int) -> None:
    if len(data) != expected:
        raise InvalidLengthError(field, expected, len(data))


# ============================================================================
# ADDRESSES
# ============================================================================

def is_address(value: str) -> bool:
    """Syntactic check for a 0x-prefixed 20-byte hex address."""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def to_checksum_address(address: Union[str, BytesLike]) -> str:
    """EIP-55 mixed-case checksum encoding."""
    if isinstance(address, (bytes, bytearray)):
        require_length("address", address, ADDRESS_SIZE)
        lower = bytes(address).hex()
    else:
        if not is_address(address):
            raise InvalidAddressError(address)
        lower = address[2:].lower()

    digest = keccak256(lower.encode('ascii')).hex()
    return '0x' + ''.join(
        c.upper() if int(digest[i], 16) >= 8 else c
        for i, c in enumerate(lower)
    )


def address_to_bytes(address: str) -> bytes:
    if not is_address(address):
        raise InvalidAddressError(address)
    return bytes.fromhex(address[2:])


def addresses_equal(a: str, b: str) -> bool:
    """Case-insensitive address comparison."""
    return isinstance(a, str) and isinstance(b, str) and a.lower() == b.lower()
