"""
Verifier contract shared by every network.

`verify` never raises for infrastructure trouble: timeouts, transport errors,
JSON-RPC errors and malformed payloads all come back as an INDETERMINATE
result, which callers must treat as "ask again later", not "unpaid".
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import AbstractSet, Dict, Optional

import httpx

from billing.networks import Network
from infrastructure.errors import BlockchainError, VerificationIndeterminate

logger = logging.getLogger("Verifier")

DEFAULT_TOLERANCE = Decimal("0.01")

# Everything that means "the node gave us nothing usable"
INDETERMINATE_ERRORS = (
    VerificationIndeterminate,
    BlockchainError,
    httpx.HTTPError,
    AttributeError,
    IndexError,
    KeyError,
    TypeError,
    ValueError,
    ArithmeticError,
)


class VerificationOutcome(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    UNDERPAID = "underpaid"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class ObservedTransfer:
    to_address: str
    amount: Decimal
    from_address: Optional[str] = None
    confirmations: Optional[int] = None
    block_time: Optional[datetime] = None
    tx_ref: Optional[str] = None


@dataclass(frozen=True)
class VerificationResult:
    outcome: VerificationOutcome
    amount: Decimal = Decimal("0")
    transfer: Optional[ObservedTransfer] = None
    reason: Optional[str] = None

    @property
    def paid(self) -> bool:
        return self.outcome == VerificationOutcome.PAID

    @property
    def indeterminate(self) -> bool:
        return self.outcome == VerificationOutcome.INDETERMINATE

    def to_dict(self) -> Dict:
        return {
            "paid": self.paid,
            "outcome": self.outcome.value,
            "amount": str(self.amount),
            "tx_ref": self.transfer.tx_ref if self.transfer else None,
            "reason": self.reason,
        }


def meets_expected(amount: Decimal, expected: Decimal, tolerance: Decimal = DEFAULT_TOLERANCE) -> bool:
    """Absolute tolerance: short by at most `tolerance` still counts; overpayment always counts."""
    return amount >= expected - tolerance


def judge(transfer: ObservedTransfer, expected: Decimal, tolerance: Decimal) -> VerificationResult:
    if meets_expected(transfer.amount, expected, tolerance):
        return VerificationResult(VerificationOutcome.PAID, transfer.amount, transfer)
    return VerificationResult(
        VerificationOutcome.UNDERPAID,
        transfer.amount,
        transfer,
        reason=f"expected {expected} USDC, received {transfer.amount} USDC",
    )


class ChainVerifier(ABC):
    network: Network

    def __init__(self, tolerance: Decimal = DEFAULT_TOLERANCE):
        self.tolerance = tolerance

    async def verify(
        self,
        destination: str,
        expected_amount: Decimal,
        since: Optional[datetime] = None,
        exclude: AbstractSet[str] = frozenset(),
    ) -> VerificationResult:
        """Has `destination` received at least `expected_amount` USDC (since `since`)?"""
        try:
            return await self._verify(destination, expected_amount, since, exclude)
        except INDETERMINATE_ERRORS as e:
            logger.warning(f"[{self.network.value}] Verification indeterminate for {destination[:10]}...: {e}")
            return VerificationResult(VerificationOutcome.INDETERMINATE, reason=str(e))

    async def verify_transaction(
        self,
        tx_ref: str,
        destination: str,
        expected_amount: Decimal,
        since: Optional[datetime] = None,
    ) -> VerificationResult:
        """Check one specific transaction submitted by the payer."""
        try:
            return await self._verify_transaction(tx_ref, destination, expected_amount, since)
        except INDETERMINATE_ERRORS as e:
            logger.warning(f"[{self.network.value}] Transaction {tx_ref[:12]}... indeterminate: {e}")
            return VerificationResult(VerificationOutcome.INDETERMINATE, reason=str(e))

    @abstractmethod
    async def _verify(self, destination, expected_amount, since, exclude) -> VerificationResult:
        ...

    @abstractmethod
    async def _verify_transaction(self, tx_ref, destination, expected_amount, since) -> VerificationResult:
        ...

    async def aclose(self):
        pass
