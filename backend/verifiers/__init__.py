# Chain verifiers: one implementation bound per Network
from typing import Dict, Optional

from billing.networks import Network
from infrastructure.config import BillingConfig
from infrastructure.rpc import build_rpc_client

from .base import (
    ChainVerifier,
    ObservedTransfer,
    VerificationOutcome,
    VerificationResult,
    meets_expected,
)
from .evm import EvmUsdcVerifier
from .solana import SolanaUsdcVerifier


def build_verifiers(config: BillingConfig, transports: Optional[Dict] = None) -> Dict[Network, ChainVerifier]:
    """Lookup table Network -> verifier. `transports` lets tests swap the HTTP layer per network."""
    transports = transports or {}
    chain = config.blockchain
    tolerance = config.pricing.amount_tolerance

    return {
        Network.EVM: EvmUsdcVerifier(
            build_rpc_client(chain.evm_rpc_url, "base", chain, transports.get(Network.EVM)),
            chain.evm_usdc_contract,
            decimals=chain.usdc_decimals,
            tolerance=tolerance,
            min_confirmations=chain.min_confirmations,
            log_chunk_blocks=chain.evm_log_chunk_blocks,
            block_time_seconds=chain.evm_block_time_seconds,
        ),
        Network.NON_EVM: SolanaUsdcVerifier(
            build_rpc_client(chain.solana_rpc_url, "solana", chain, transports.get(Network.NON_EVM)),
            chain.solana_usdc_mint,
            tolerance=tolerance,
        ),
    }


__all__ = [
    "ChainVerifier",
    "ObservedTransfer",
    "VerificationOutcome",
    "VerificationResult",
    "meets_expected",
    "EvmUsdcVerifier",
    "SolanaUsdcVerifier",
    "build_verifiers",
]
