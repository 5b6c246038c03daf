"""
Settlement networks.

A closed set: one EVM chain (Base) and one non-EVM chain (Solana). Everything
network-specific is looked up from `Network`, never compared as free strings.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from infrastructure.config import BillingConfig, ZERO_ADDRESSES
from infrastructure.errors import UnconfiguredNetwork, ValidationError


class Network(str, Enum):
    EVM = "evm"
    NON_EVM = "non_evm"

    @classmethod
    def parse(cls, value) -> "Network":
        """Accept the enum value or the chain name used by the frontend."""
        if isinstance(value, Network):
            return value
        key = str(value or "").strip().lower()
        network = _ALIASES.get(key)
        if network is None:
            raise ValidationError(f"Unsupported network '{value}'", {"network": value})
        return network


_ALIASES: Dict[str, Network] = {
    "evm": Network.EVM,
    "base": Network.EVM,
    "non_evm": Network.NON_EVM,
    "non-evm": Network.NON_EVM,
    "solana": Network.NON_EVM,
}


@dataclass(frozen=True)
class NetworkSettings:
    network: Network
    chain_name: str
    rpc_url: str
    usdc_token: str  # contract address (EVM) or mint (Solana)
    wallet_address: Optional[str]


def network_settings(config: BillingConfig) -> Dict[Network, NetworkSettings]:
    chain = config.blockchain
    return {
        Network.EVM: NetworkSettings(
            network=Network.EVM,
            chain_name="base",
            rpc_url=chain.evm_rpc_url,
            usdc_token=chain.evm_usdc_contract,
            wallet_address=chain.evm_wallet_address,
        ),
        Network.NON_EVM: NetworkSettings(
            network=Network.NON_EVM,
            chain_name="solana",
            rpc_url=chain.solana_rpc_url,
            usdc_token=chain.solana_usdc_mint,
            wallet_address=chain.solana_wallet_address,
        ),
    }


def destination_address(config: BillingConfig, network: Network) -> str:
    """Treasury address for `network`; raises UnconfiguredNetwork when unset."""
    address = network_settings(config)[network].wallet_address
    if not address or address in ZERO_ADDRESSES:
        raise UnconfiguredNetwork(network.value)
    return address
