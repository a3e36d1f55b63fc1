"""
Shroud v1 Stealth Addresses
"""

from shroud.stealth.address import (
    Match,
    NoMatch,
    StealthPaymentData,
    check_stealth_payment,
    compute_stealth_public_key,
    derive_stealth_private_key,
    generate_stealth_payment,
    recover_stealth_private_key,
    verify_stealth_derivation,
)

__all__ = [
    "Match",
    "NoMatch",
    "StealthPaymentData",
    "check_stealth_payment",
    "compute_stealth_public_key",
    "derive_stealth_private_key",
    "generate_stealth_payment",
    "recover_stealth_private_key",
    "verify_stealth_derivation",
]
