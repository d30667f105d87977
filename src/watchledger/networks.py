"""Supported networks and their address-format rules.

Network ids are EVM chain ids. Addresses are validated and canonicalised
before they are persisted, so uniqueness checks see one spelling per address.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional

from watchledger.exceptions import InvalidAddressFormat, UnsupportedNetwork

EVM_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class NetworkConfig:
    """Configuration for a network."""

    network_id: int
    name: str
    symbol: str  # Native asset
    address_pattern: re.Pattern = EVM_ADDRESS_PATTERN
    normalize: Callable[[str], str] = str.lower
    is_testnet: bool = False
    rpc_url: Optional[str] = None  # Public JSON-RPC endpoint
    decimals: int = 18

    def is_valid_address(self, address: str) -> bool:
        return bool(self.address_pattern.match(address))


# ======================
# Network Configurations
# ======================

NETWORKS: dict[int, NetworkConfig] = {
    1: NetworkConfig(
        network_id=1, name="Ethereum", symbol="ETH", rpc_url="https://eth.llamarpc.com"
    ),
    10: NetworkConfig(
        network_id=10, name="Optimism", symbol="ETH", rpc_url="https://mainnet.optimism.io"
    ),
    56: NetworkConfig(
        network_id=56,
        name="BNB Smart Chain",
        symbol="BNB",
        rpc_url="https://bsc-dataseed.binance.org/",
    ),
    137: NetworkConfig(
        network_id=137, name="Polygon", symbol="MATIC", rpc_url="https://polygon-rpc.com/"
    ),
    8453: NetworkConfig(
        network_id=8453, name="Base", symbol="ETH", rpc_url="https://mainnet.base.org"
    ),
    42161: NetworkConfig(
        network_id=42161,
        name="Arbitrum One",
        symbol="ETH",
        rpc_url="https://arb1.arbitrum.io/rpc",
    ),
    43114: NetworkConfig(
        network_id=43114,
        name="Avalanche C-Chain",
        symbol="AVAX",
        rpc_url="https://api.avax.network/ext/bc/C/rpc",
    ),
    11155111: NetworkConfig(network_id=11155111, name="Sepolia", symbol="ETH", is_testnet=True),
}


# ======================
# Helper Functions
# ======================


def get_network(network_id: int) -> Optional[NetworkConfig]:
    """Get network configuration by id."""
    return NETWORKS.get(network_id)


def get_all_networks() -> list[NetworkConfig]:
    """Get all network configurations."""
    return list(NETWORKS.values())


def normalize_address(address: str, network_id: int) -> str:
    """Validate ``address`` for ``network_id`` and return its canonical form.

    Raises:
        UnsupportedNetwork: network id is unknown
        InvalidAddressFormat: address does not match the network's format
    """
    network = get_network(network_id)
    if network is None:
        raise UnsupportedNetwork(network_id)

    candidate = (address or "").strip()
    if not network.is_valid_address(candidate):
        raise InvalidAddressFormat(address, network_id)
    return network.normalize(candidate)


def normalize_token_address(token_address: Optional[str], network_id: int) -> Optional[str]:
    """Token contracts follow the same format as accounts; None means native."""
    if token_address is None:
        return None
    return normalize_address(token_address, network_id)
