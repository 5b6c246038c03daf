"""
Solana (non-EVM) USDC verifier.

Holdings check: sum every USDC token account owned by the destination and
compare against the expected amount. A submitted signature is checked from
the transaction's pre/post token balances for accounts the destination owns.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List

from billing.networks import Network
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

logger = logging.getLogger("SolanaVerifier")


def _ui_amount(token_amount: Dict) -> Decimal:
    """Exact amount from a jsonParsed tokenAmount; avoids the float `uiAmount` field."""
    if token_amount.get("uiAmountString") is not None:
        return Decimal(token_amount["uiAmountString"])
    return Decimal(token_amount["amount"]).scaleb(-int(token_amount["decimals"]))


class SolanaUsdcVerifier(ChainVerifier):
    network = Network.NON_EVM

    def __init__(
        self,
        rpc: JsonRpcClient,
        usdc_mint: str,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        commitment: str = "confirmed",
    ):
        super().__init__(tolerance)
        self.rpc = rpc
        self.usdc_mint = usdc_mint
        self.commitment = commitment

    async def _verify(self, destination, expected_amount, since, exclude) -> VerificationResult:
        result = await self.rpc.call("getTokenAccountsByOwner", [
            destination,
            {"mint": self.usdc_mint},
            {"encoding": "jsonParsed", "commitment": self.commitment},
        ])
        if not isinstance(result, dict) or not isinstance(result.get("value"), list):
            raise VerificationIndeterminate(self.network.value, "malformed getTokenAccountsByOwner result")

        total = Decimal("0")
        for account in result["value"]:
            info = account["account"]["data"]["parsed"]["info"]
            if info.get("mint", self.usdc_mint) != self.usdc_mint:
                continue
            total += _ui_amount(info["tokenAmount"])

        if total <= 0:
            return VerificationResult(VerificationOutcome.UNPAID)

        holdings = ObservedTransfer(to_address=destination, amount=total)
        return judge(holdings, expected_amount, self.tolerance)

    async def _verify_transaction(self, tx_ref, destination, expected_amount, since) -> VerificationResult:
        tx = await self.rpc.call("getTransaction", [
            tx_ref,
            {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0, "commitment": self.commitment},
        ])
        if not tx:
            return VerificationResult(VerificationOutcome.UNPAID, reason="transaction not found")

        meta = tx.get("meta")
        if not isinstance(meta, dict):
            # Node has the transaction but not its status metadata yet
            raise VerificationIndeterminate(self.network.value, "transaction has no status metadata")
        if meta.get("err") is not None:
            return VerificationResult(VerificationOutcome.UNPAID, reason="transaction failed on chain")

        block_time = None
        if tx.get("blockTime"):
            block_time = datetime.fromtimestamp(tx["blockTime"], tz=timezone.utc)
        if since is not None and block_time is not None and block_time < since:
            return VerificationResult(VerificationOutcome.UNPAID, reason="transaction predates the payment intent")

        received = self._balance_delta(meta, destination)
        if received <= 0:
            return VerificationResult(VerificationOutcome.UNPAID, reason="no USDC received by the destination")

        transfer = ObservedTransfer(
            to_address=destination,
            amount=received,
            from_address=self._sender(meta, destination),
            block_time=block_time,
            tx_ref=tx_ref,
        )
        return judge(transfer, expected_amount, self.tolerance)

    def _usdc_balances(self, balances: List[Dict]) -> Dict[int, Dict]:
        return {b["accountIndex"]: b for b in balances or [] if b.get("mint") == self.usdc_mint}

    def _balance_delta(self, meta: Dict, owner: str) -> Decimal:
        pre = self._usdc_balances(meta.get("preTokenBalances"))
        post = self._usdc_balances(meta.get("postTokenBalances"))

        delta = Decimal("0")
        for index, after in post.items():
            if after.get("owner") != owner:
                continue
            before = pre.get(index)
            before_amount = _ui_amount(before["uiTokenAmount"]) if before else Decimal("0")
            delta += _ui_amount(after["uiTokenAmount"]) - before_amount
        return delta

    def _sender(self, meta: Dict, destination: str):
        pre = self._usdc_balances(meta.get("preTokenBalances"))
        post = self._usdc_balances(meta.get("postTokenBalances"))
        for index, before in pre.items():
            after = post.get(index)
            if before.get("owner") == destination or after is None:
                continue
            if _ui_amount(after["uiTokenAmount"]) < _ui_amount(before["uiTokenAmount"]):
                return before.get("owner")
        return None

    async def aclose(self):
        await self.rpc.aclose()
