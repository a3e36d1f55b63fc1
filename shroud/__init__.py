"""
Shroud v1
Stealth-payment key engine

Two-factor key derivation, an encrypted local key store, one-time
stealth addresses on secp256k1 and an incremental payment scanner.
"""

__version__ = "1.0.0"
__author__ = "Shroud Team"

from shroud.constants import PROTOCOL_VERSION, KEY_RECORD_VERSION
from shroud.errors import ErrorCode, ShroudError

__all__ = [
    "PROTOCOL_VERSION",
    "KEY_RECORD_VERSION",
    "ErrorCode",
    "ShroudError",
    "__version__",
]
