"""
Shroud v1 JSON-RPC Ledger

Ledger implementation over an Ethereum-compatible JSON-RPC endpoint using
httpx. Transport failures and RPC error objects both surface as
NetworkError so the scanner can retry them uniformly.
"""

from __future__ import annotations
import itertools
import logging
from typing import Any, List, Optional

import httpx

from shroud.config import LedgerConfig
from shroud.constants import (
    JSONRPC_VERSION,
    PAYMENT_EVENT_SIGNATURE,
    GET_STEALTH_PAYMENT_SIGNATURE,
    GET_META_KEYS_SIGNATURE,
    COMPRESSED_PUBLIC_KEY_SIZE,
)
from shroud.crypto.hashing import event_topic
from shroud.encoding import hex_to_bytes, bytes_to_hex, to_checksum_address, is_address
from shroud.errors import (
    AbiDecodeError,
    ErrorCode,
    InvalidAddressError,
    NetworkError,
    ValidationError,
)
from shroud.keys.types import PublicKeys
from shroud.ledger.base import Ledger, OnChainPayment, PaymentLog
from shroud.scanner import abi

logger = logging.getLogger(__name__)

PAYMENT_EVENT_TOPIC = event_topic(PAYMENT_EVENT_SIGNATURE)


def _topic_to_address(topic: str) -> str:
    raw = hex_to_bytes(topic)
    return to_checksum_address(raw[-20:])


def _quantity(value: Any, what: str) -> int:
    """Hex quantity from an RPC result; null or non-hex values are RPC errors."""
    try:
        return int(value, 16)
    except (TypeError, ValueError) as e:
        raise NetworkError(f"{what} returned invalid quantity: {value!r}", ErrorCode.RPC_ERROR) from e


class JsonRpcLedger(Ledger):
    """
    Ledger over JSON-RPC.

    Args:
        config: Endpoint, payment contract and timeout
        transport: Optional httpx transport (e.g. httpx.MockTransport)
    """

    def __init__(self, config: LedgerConfig, transport: Optional[httpx.BaseTransport] = None):
        if not is_address(config.payment_contract):
            raise InvalidAddressError(config.payment_contract)

        self.config = config
        self.payment_contract = to_checksum_address(config.payment_contract)
        self._ids = itertools.count(1)
        self._client = httpx.Client(
            base_url=config.rpc_url,
            timeout=config.timeout_sec,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> JsonRpcLedger:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": JSONRPC_VERSION,
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = self._client.post("", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} timed out", ErrorCode.NETWORK_TIMEOUT) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} failed: {e}", ErrorCode.NETWORK_REQUEST_FAILED) from e
        except ValueError as e:
            raise NetworkError(f"{method} returned invalid JSON", ErrorCode.RPC_ERROR) from e

        if not isinstance(body, dict):
            raise NetworkError(f"{method} returned a non-object response", ErrorCode.RPC_ERROR)

        if body.get("error"):
            error = body["error"]
            raise NetworkError(
                f"{method} error {error.get('code')}: {error.get('message')}",
                ErrorCode.RPC_ERROR,
                error,
            )
        return body.get("result")

    def _eth_call(self, signature: str, args: List[Any], output_types: List[str]) -> List[Any]:
        calldata = abi.encode_call(signature, args)
        result = self._call("eth_call", [
            {"to": self.payment_contract, "data": bytes_to_hex(calldata)},
            "latest",
        ])
        try:
            return abi.decode(output_types, hex_to_bytes(result or "0x"))
        except (AbiDecodeError, ValidationError) as e:
            raise NetworkError(f"{signature} returned malformed data: {e}", ErrorCode.RPC_ERROR) from e

    # =========================================================================
    # LEDGER
    # =========================================================================

    def get_block_number(self) -> int:
        return _quantity(self._call("eth_blockNumber", []), "eth_blockNumber")

    def get_payment_logs(self, from_block: int, to_block: int) -> List[PaymentLog]:
        raw_logs = self._call("eth_getLogs", [{
            "address": self.payment_contract,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": [bytes_to_hex(PAYMENT_EVENT_TOPIC)],
        }]) or []

        logs = []
        for entry in raw_logs:
            try:
                topics = entry["topics"]
                amount, key_hash = abi.decode(["uint256", "bytes32"], hex_to_bytes(entry["data"]))
                logs.append(PaymentLog(
                    stealth_address=_topic_to_address(topics[1]),
                    sender=_topic_to_address(topics[2]),
                    amount=amount,
                    ephemeral_key_hash=key_hash,
                    block_number=int(entry["blockNumber"], 16),
                    tx_hash=entry["transactionHash"],
                    log_index=int(entry["logIndex"], 16),
                ))
            except (KeyError, IndexError, ValueError, AbiDecodeError, ValidationError) as e:
                logger.debug(f"Skipping malformed log: {e}")
        logs.sort(key=lambda log: (log.block_number, log.log_index))
        return logs

    def get_transaction_input(self, tx_hash: str) -> bytes:
        tx = self._call("eth_getTransactionByHash", [tx_hash])
        if not tx:
            raise NetworkError(f"Transaction not found: {tx_hash}", ErrorCode.RPC_ERROR)
        if not isinstance(tx, dict):
            raise NetworkError(f"Malformed transaction: {tx_hash}", ErrorCode.RPC_ERROR)
        return hex_to_bytes(tx.get("input") or tx.get("data") or "0x")

    def get_block_timestamp(self, block_number: int) -> int:
        block = self._call("eth_getBlockByNumber", [hex(block_number), False])
        if not block:
            raise NetworkError(f"Block not found: {block_number}", ErrorCode.RPC_ERROR)
        if not isinstance(block, dict):
            raise NetworkError(f"Malformed block: {block_number}", ErrorCode.RPC_ERROR)
        return _quantity(block.get("timestamp"), f"block {block_number} timestamp")

    def get_stealth_payment(self, stealth_address: str) -> OnChainPayment:
        amount, claimed, sender, timestamp = self._eth_call(
            GET_STEALTH_PAYMENT_SIGNATURE,
            [stealth_address],
            ["uint256", "bool", "address", "uint256"],
        )
        return OnChainPayment(
            amount=amount,
            claimed=claimed,
            sender=to_checksum_address(sender),
            timestamp=timestamp,
        )

    def get_meta_keys(self, account: str) -> Optional[PublicKeys]:
        viewing, spending = self._eth_call(
            GET_META_KEYS_SIGNATURE,
            [account],
            ["bytes", "bytes"],
        )
        if len(viewing) != COMPRESSED_PUBLIC_KEY_SIZE or len(spending) != COMPRESSED_PUBLIC_KEY_SIZE:
            return None
        return PublicKeys(viewing=viewing, spending=spending)
