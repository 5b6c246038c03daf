"""
Base (EVM) USDC verifier.

Candidate transactions are found through USDC `Transfer` logs whose indexed
recipient is the destination. Each candidate only counts if the transaction
itself targets the USDC contract and its calldata decodes as
transfer(destination, amount); token contracts that merely emit a lookalike
event, and transfers routed through other contracts, are ignored.
"""

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from billing.networks import Network
from billing.periods import utcnow
from infrastructure.errors import VerificationIndeterminate
from infrastructure.rpc import JsonRpcClient
from .base import (
    DEFAULT_TOLERANCE,
    ChainVerifier,
    ObservedTransfer,
    VerificationOutcome,
    VerificationResult,
    judge,
)
from .calldata import (
    CalldataError,
    TRANSFER_EVENT_TOPIC,
    address_topic,
    decode_transfer_calldata,
    scale_amount,
)

logger = logging.getLogger("EvmVerifier")

# Extra blocks scanned before the intent's creation time to absorb clock skew
LOOKBACK_MARGIN_BLOCKS = 30


class EvmUsdcVerifier(ChainVerifier):
    network = Network.EVM

    def __init__(
        self,
        rpc: JsonRpcClient,
        usdc_contract: str,
        decimals: int = 6,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        min_confirmations: int = 1,
        log_chunk_blocks: int = 5000,
        block_time_seconds: float = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(tolerance)
        self.rpc = rpc
        self.usdc_contract = usdc_contract.lower()
        self.decimals = decimals
        self.min_confirmations = min_confirmations
        self.log_chunk_blocks = log_chunk_blocks
        self.block_time_seconds = block_time_seconds
        self.clock = clock

    async def _verify(self, destination, expected_amount, since, exclude) -> VerificationResult:
        latest = await self._block_number()
        from_block = self._start_block(latest, since)
        tx_hashes = await self._candidate_transactions(destination, from_block, latest)

        best_short: Optional[VerificationResult] = None
        for tx_hash in tx_hashes:
            if tx_hash in exclude:
                continue
            transfer = await self._observe(tx_hash, destination, latest)
            if transfer is None or not self._usable(transfer, since):
                continue

            result = judge(transfer, expected_amount, self.tolerance)
            if result.paid:
                logger.info(f"[EvmVerifier] ✅ {transfer.amount} USDC to {destination[:10]}... in {tx_hash[:12]}...")
                return result
            if best_short is None or result.amount > best_short.amount:
                best_short = result

        if best_short is not None:
            logger.info(f"[EvmVerifier] Underpaid to {destination[:10]}...: {best_short.reason}")
            return best_short
        return VerificationResult(VerificationOutcome.UNPAID)

    async def _verify_transaction(self, tx_ref, destination, expected_amount, since) -> VerificationResult:
        latest = await self._block_number()
        transfer = await self._observe(tx_ref, destination, latest)
        if transfer is None:
            return VerificationResult(
                VerificationOutcome.UNPAID,
                reason="not a confirmed USDC transfer to the destination",
            )
        if not self._usable(transfer, since):
            return VerificationResult(
                VerificationOutcome.UNPAID,
                transfer=transfer,
                reason="transfer predates the payment intent or lacks confirmations",
            )
        return judge(transfer, expected_amount, self.tolerance)

    # ===========================================
    # RPC HELPERS
    # ===========================================

    async def _block_number(self) -> int:
        return int(await self.rpc.call("eth_blockNumber"), 16)

    def _start_block(self, latest: int, since: Optional[datetime]) -> int:
        if since is None:
            return max(0, latest - self.log_chunk_blocks + 1)
        elapsed = max((self.clock() - since).total_seconds(), 0)
        blocks_back = math.ceil(elapsed / self.block_time_seconds) + LOOKBACK_MARGIN_BLOCKS
        return max(0, latest - blocks_back)

    async def _candidate_transactions(self, destination: str, from_block: int, to_block: int) -> List[str]:
        """Transaction hashes of USDC Transfer logs to `destination`, oldest first, deduplicated."""
        seen: Dict[str, None] = {}
        start = from_block
        while start <= to_block:
            end = min(start + self.log_chunk_blocks - 1, to_block)
            logs = await self.rpc.call("eth_getLogs", [{
                "fromBlock": hex(start),
                "toBlock": hex(end),
                "address": self.usdc_contract,
                "topics": [TRANSFER_EVENT_TOPIC, None, address_topic(destination)],
            }])
            if not isinstance(logs, list):
                raise VerificationIndeterminate(self.network.value, "malformed eth_getLogs result")
            for log in logs:
                if log.get("removed"):
                    continue
                seen.setdefault(log["transactionHash"].lower(), None)
            start = end + 1
        return list(seen)

    async def _observe(self, tx_hash: str, destination: str, latest: int) -> Optional[ObservedTransfer]:
        """Decode `tx_hash` as a direct USDC transfer to `destination`, or None."""
        tx = await self.rpc.call("eth_getTransactionByHash", [tx_hash])
        _require_object(tx, "eth_getTransactionByHash")
        if not tx or not tx.get("blockNumber"):
            return None

        if (tx.get("to") or "").lower() != self.usdc_contract:
            logger.debug(f"[EvmVerifier] {tx_hash[:12]}... does not target the USDC contract")
            return None

        try:
            call = decode_transfer_calldata(tx.get("input") or tx.get("data") or "")
        except CalldataError as e:
            logger.debug(f"[EvmVerifier] {tx_hash[:12]}... skipped: {e}")
            return None

        if call.recipient != destination.lower():
            return None

        receipt = await self.rpc.call("eth_getTransactionReceipt", [tx_hash])
        _require_object(receipt, "eth_getTransactionReceipt")
        if not receipt or receipt.get("status") != "0x1":
            return None

        block_number = int(tx["blockNumber"], 16)
        block = await self.rpc.call("eth_getBlockByNumber", [hex(block_number), False])
        _require_object(block, "eth_getBlockByNumber")
        block_time = datetime.fromtimestamp(int(block["timestamp"], 16), tz=timezone.utc)

        return ObservedTransfer(
            to_address=call.recipient,
            amount=scale_amount(call.raw_amount, self.decimals),
            from_address=(tx.get("from") or "").lower() or None,
            confirmations=latest - block_number + 1,
            block_time=block_time,
            tx_ref=tx_hash.lower(),
        )

    def _usable(self, transfer: ObservedTransfer, since: Optional[datetime]) -> bool:
        if transfer.confirmations is not None and transfer.confirmations < self.min_confirmations:
            return False
        if since is not None and transfer.block_time is not None and transfer.block_time < since:
            return False
        return True

    async def aclose(self):
        await self.rpc.aclose()


def _require_object(result, method: str):
    """A result is either null or a JSON object; anything else is a broken node."""
    if result is not None and not isinstance(result, dict):
        raise VerificationIndeterminate(Network.EVM.value, f"malformed {method} result")
