"""
Shroud v1 Payment Scanner
"""

from shroud.scanner.calldata import extract_ephemeral_key
from shroud.scanner.scanner import (
    PaymentDirection,
    PaymentScanner,
    PaymentStats,
    ScanResult,
    StealthPayment,
    calculate_stats,
    format_amount,
)

__all__ = [
    "PaymentDirection",
    "PaymentScanner",
    "PaymentStats",
    "ScanResult",
    "StealthPayment",
    "calculate_stats",
    "extract_ephemeral_key",
    "format_amount",
]
