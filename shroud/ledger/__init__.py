"""
Shroud v1 Ledger Access
"""

from shroud.ledger.base import Ledger, OnChainPayment, PaymentLog

__all__ = ["Ledger", "OnChainPayment", "PaymentLog"]
