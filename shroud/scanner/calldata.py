"""
Shroud v1 Calldata Unwrapping

The payment event only carries a hash of the ephemeral key; the key itself
is an argument of the sendToStealth call. That call may arrive directly or
wrapped by an account-abstraction EntryPoint and a smart account:

    handleOps(ops[], beneficiary)
      └─ op.callData = execute(target, value, data)
                     | executeBatch(calls[])
           └─ data   = sendToStealth(stealth, amount, ephemeralPubkey)

extract_ephemeral_key walks this closed set of shapes recursively and
returns None when no path reaches a sendToStealth on the payment contract.
"""

import logging
from typing import Callable, Dict, Optional

from shroud.constants import (
    SEND_TO_STEALTH_SIGNATURE,
    HANDLE_OPS_SIGNATURE,
    EXECUTE_SIGNATURE,
    EXECUTE_BATCH_SIGNATURE,
    HANDLE_OPS_SELECTOR,
    EXECUTE_SELECTOR,
    EXECUTE_BATCH_SELECTOR,
    MAX_UNWRAP_DEPTH,
)
from shroud.crypto.curve import is_valid_public_key
from shroud.crypto.hashing import function_selector
from shroud.errors import AbiDecodeError
from shroud.scanner.abi import decode_call

logger = logging.getLogger(__name__)

SEND_TO_STEALTH_SELECTOR = function_selector(SEND_TO_STEALTH_SIGNATURE)


def _from_send_to_stealth(calldata: bytes, contract: str, depth: int) -> Optional[bytes]:
    _, _, ephemeral = decode_call(SEND_TO_STEALTH_SIGNATURE, calldata)
    if not is_valid_public_key(ephemeral):
        logger.debug("sendToStealth carried an invalid ephemeral key")
        return None
    return bytes(ephemeral)


def _from_handle_ops(calldata: bytes, contract: str, depth: int) -> Optional[bytes]:
    ops, _beneficiary = decode_call(HANDLE_OPS_SIGNATURE, calldata)
    for op in ops:
        found = extract_ephemeral_key(op[3], contract, depth + 1)
        if found is not None:
            return found
    return None


def _from_execute(calldata: bytes, contract: str, depth: int) -> Optional[bytes]:
    target, _value, data = decode_call(EXECUTE_SIGNATURE, calldata)
    if target.lower() != contract.lower():
        return None
    return extract_ephemeral_key(data, contract, depth + 1)


def _from_execute_batch(calldata: bytes, contract: str, depth: int) -> Optional[bytes]:
    (calls,) = decode_call(EXECUTE_BATCH_SIGNATURE, calldata)
    for target, _value, data in calls:
        if target.lower() != contract.lower():
            continue
        found = extract_ephemeral_key(data, contract, depth + 1)
        if found is not None:
            return found
    return None


_DECODERS: Dict[bytes, Callable[[bytes, str, int], Optional[bytes]]] = {
    SEND_TO_STEALTH_SELECTOR: _from_send_to_stealth,
    HANDLE_OPS_SELECTOR: _from_handle_ops,
    EXECUTE_SELECTOR: _from_execute,
    EXECUTE_BATCH_SELECTOR: _from_execute_batch,
}


def extract_ephemeral_key(calldata: bytes, payment_contract: str, depth: int = 0) -> Optional[bytes]:
    """
    Recover the ephemeral public key announced by a transaction's input.

    Returns:
        33-byte compressed key, or None if no known envelope yields one
    """
    if depth > MAX_UNWRAP_DEPTH or len(calldata) < 4:
        return None

    decoder = _DECODERS.get(bytes(calldata[:4]))
    if decoder is None:
        return None

    try:
        return decoder(bytes(calldata), payment_contract, depth)
    except AbiDecodeError as e:
        logger.debug(f"Calldata decode failed at depth {depth}: {e}")
        return None
