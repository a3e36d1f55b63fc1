"""
Shroud v1 Stealth Address Protocol

Sender side:
    r, R      = fresh ephemeral keypair
    S         = ECDH(r, V)                 V = recipient viewing public key
    h         = keccak256(S) mod n
    P         = B + h·G                    B = recipient spending public key
    address   = keccak256(P_uncompressed[1:])[12:]

Recipient side:
    S         = ECDH(v, R)                 same S by commutativity
    p         = (b + h) mod n              so that p·G == P

A payment that is not ours is a NoMatch result, never an exception.
Malformed keys are errors.
"""

from __future__ import annotations
import hmac
import logging
from dataclasses import dataclass
from typing import Union

from shroud.constants import (
    ADDRESS_SIZE,
    SHARED_SECRET_SIZE,
)
from shroud.crypto.curve import (
    derive_public_key,
    ecdh_shared_secret,
    generate_keypair,
    is_valid_private_key,
    is_valid_public_key,
    point_add_scalar_base,
    public_key_to_address,
    scalar_add_mod_n,
    scalar_from_hash,
)
from shroud.crypto.hashing import keccak256
from shroud.encoding import to_checksum_address
from shroud.errors import CryptoError, ErrorCode, PaymentError
from shroud.keys.types import zero_buffer

logger = logging.getLogger(__name__)


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class StealthPaymentData:
    """What the sender publishes for one payment."""
    stealth_address: bytes
    ephemeral_public_key: bytes
    view_tag: int

    @property
    def checksum_address(self) -> str:
        return to_checksum_address(self.stealth_address)

    @property
    def ephemeral_key_hash(self) -> bytes:
        """keccak256 of the ephemeral key as indexed in the payment event."""
        return keccak256(self.ephemeral_public_key)


@dataclass(frozen=True, slots=True)
class Match:
    """The candidate address belongs to the key holder."""
    address: bytes

    @property
    def matched(self) -> bool:
        return True

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class NoMatch:
    """The candidate address is someone else's; derived_address kept for audit."""
    derived_address: bytes

    @property
    def matched(self) -> bool:
        return False

    def __bool__(self) -> bool:
        return False


StealthCheck = Union[Match, NoMatch]


# ============================================================================
# DERIVATION
# ============================================================================

def _tweak(shared_secret: bytes) -> int:
    if len(shared_secret) != SHARED_SECRET_SIZE:
        raise CryptoError(
            f"Shared secret must be {SHARED_SECRET_SIZE} bytes, got {len(shared_secret)}",
            ErrorCode.CRYPTO_INVALID_KEY
        )
    return scalar_from_hash(keccak256(shared_secret))


def compute_stealth_public_key(spending_public: bytes, shared_secret: bytes) -> bytes:
    """P = B + (keccak256(S) mod n)·G, compressed."""
    return point_add_scalar_base(spending_public, _tweak(shared_secret))


def stealth_public_key_to_address(stealth_public: bytes) -> bytes:
    return public_key_to_address(stealth_public)


def derive_stealth_private_key(spending_private: bytes, shared_secret: bytes) -> bytearray:
    """p = (b + keccak256(S)) mod n."""
    if not is_valid_private_key(spending_private):
        raise PaymentError("Invalid spending private key")
    return bytearray(scalar_add_mod_n(bytes(spending_private), _tweak(shared_secret)))


def verify_stealth_derivation(stealth_private: bytes, stealth_public: bytes) -> bool:
    """True when stealth_private · G == stealth_public."""
    if not is_valid_private_key(stealth_private) or not is_valid_public_key(stealth_public):
        return False
    derived = derive_public_key(stealth_private, compressed=len(stealth_public) == 33)
    return hmac.compare_digest(derived, bytes(stealth_public))


# ============================================================================
# SENDER
# ============================================================================

def generate_stealth_payment(viewing_public: bytes, spending_public: bytes) -> StealthPaymentData:
    """
    Create a one-time address for a recipient's public meta keys.

    The ephemeral private key is zeroed before returning; only the public
    half leaves this function.

    Raises:
        PaymentError: recipient keys are not valid curve points
    """
    if not is_valid_public_key(viewing_public):
        raise PaymentError("Invalid recipient viewing public key")
    if not is_valid_public_key(spending_public):
        raise PaymentError("Invalid recipient spending public key")

    ephemeral_private, ephemeral_public = generate_keypair()
    shared = None
    try:
        shared = bytearray(ecdh_shared_secret(ephemeral_private, viewing_public))
        stealth_public = compute_stealth_public_key(spending_public, bytes(shared))
        address = stealth_public_key_to_address(stealth_public)
        view_tag = shared[0]
    finally:
        zero_buffer(ephemeral_private)
        zero_buffer(shared)

    logger.debug(f"Generated stealth address {to_checksum_address(address)}")
    return StealthPaymentData(
        stealth_address=address,
        ephemeral_public_key=ephemeral_public,
        view_tag=view_tag,
    )


# ============================================================================
# RECIPIENT
# ============================================================================

def check_stealth_payment(
    ephemeral_public: bytes,
    viewing_private: bytes,
    spending_public: bytes,
    candidate_address: bytes,
) -> StealthCheck:
    """
    Does candidate_address belong to the holder of viewing_private?

    Returns:
        Match(address) or NoMatch(derived_address)

    Raises:
        PaymentError: any input is malformed
    """
    if not is_valid_public_key(ephemeral_public):
        raise PaymentError("Invalid ephemeral public key")
    if not is_valid_private_key(viewing_private):
        raise PaymentError("Invalid viewing private key")
    if not is_valid_public_key(spending_public):
        raise PaymentError("Invalid spending public key")
    if len(candidate_address) != ADDRESS_SIZE:
        raise PaymentError(
            f"Candidate address must be {ADDRESS_SIZE} bytes, got {len(candidate_address)}",
            ErrorCode.PAYMENT_INVALID_KEY
        )

    shared = bytearray(ecdh_shared_secret(viewing_private, ephemeral_public))
    try:
        derived = stealth_public_key_to_address(
            compute_stealth_public_key(spending_public, bytes(shared))
        )
    finally:
        zero_buffer(shared)

    if hmac.compare_digest(derived, bytes(candidate_address)):
        return Match(address=derived)
    return NoMatch(derived_address=derived)


def recover_stealth_private_key(
    ephemeral_public: bytes,
    viewing_private: bytes,
    spending_private: bytes,
) -> bytearray:
    """
    Recompute the one-time spending key for a detected payment.

    Raises:
        PaymentError: any input is malformed
    """
    if not is_valid_public_key(ephemeral_public):
        raise PaymentError("Invalid ephemeral public key")
    if not is_valid_private_key(viewing_private):
        raise PaymentError("Invalid viewing private key")

    shared = bytearray(ecdh_shared_secret(viewing_private, ephemeral_public))
    try:
        return derive_stealth_private_key(spending_private, bytes(shared))
    finally:
        zero_buffer(shared)
