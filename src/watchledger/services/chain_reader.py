"""EVM JSON-RPC chain reader.

Fetches native and ERC20 balances for the balance poller. Every read of one
address is pinned to a single block so native and token balances in a sweep
describe the same chain state.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

import httpx

from watchledger.exceptions import ChainReadError, UnsupportedNetwork
from watchledger.networks import get_network
from watchledger.services.poller import ChainBalance

logger = logging.getLogger(__name__)

# ERC20 balanceOf(address) method signature
BALANCE_OF_SIGNATURE = "0x70a08231"


@dataclass(frozen=True)
class TrackedToken:
    """ERC20 token whose balance is read for every watch on a network."""

    address: str
    symbol: str
    decimals: int = 18


# Stablecoins tracked by default
DEFAULT_TOKENS: dict[int, tuple[TrackedToken, ...]] = {
    1: (
        TrackedToken("0xdac17f958d2ee523a2206206994597c13d831ec7", "USDT", 6),
        TrackedToken("0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48", "USDC", 6),
    ),
    56: (
        TrackedToken("0x55d398326f99059ff775485246999027b3197955", "USDT", 18),
        TrackedToken("0x8ac76a51cc950d9822d68b83fe1ad97b32cd580d", "USDC", 18),
    ),
    137: (
        TrackedToken("0xc2132d05d31c914a87c6611c10748aeb04b58e8f", "USDT", 6),
        TrackedToken("0x2791bca1f2de4661ed88a30c99a7a9449aa84174", "USDC", 6),
    ),
}


def to_units(raw: int, decimals: int) -> Decimal:
    """Scale an integer amount of base units to a decimal balance."""
    return Decimal(f"{raw}e-{decimals}")


class EvmRpcReader:
    """ChainReader backed by public EVM JSON-RPC endpoints."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        rpc_urls: Optional[Mapping[int, str]] = None,
        tokens: Optional[Mapping[int, Sequence[TrackedToken]]] = None,
        timeout: float = 15.0,
    ):
        self._client = client
        self._owns_client = client is None
        self.rpc_urls = dict(rpc_urls or {})
        self.tokens = dict(DEFAULT_TOKENS if tokens is None else tokens)
        self.timeout = timeout
        self._request_id = 0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _rpc_url(self, network_id: int) -> str:
        if network_id in self.rpc_urls:
            return self.rpc_urls[network_id]
        network = get_network(network_id)
        if network is None:
            raise UnsupportedNetwork(network_id)
        if not network.rpc_url:
            raise ChainReadError(f"No RPC endpoint for network {network_id}", network_id)
        return network.rpc_url

    async def _call(self, network_id: int, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": self._request_id}

        try:
            response = await self.client.post(self._rpc_url(network_id), json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChainReadError(
                f"{method} failed on network {network_id}: {e}", network_id
            ) from e

        if "error" in data:
            raise ChainReadError(
                f"{method} failed on network {network_id}: {data['error']}", network_id
            )
        if "result" not in data:
            raise ChainReadError(
                f"{method} returned no result on network {network_id}", network_id
            )
        return data["result"]

    async def get_block_number(self, network_id: int) -> int:
        return int(await self._call(network_id, "eth_blockNumber", []), 16)

    async def get_native_balance(self, address: str, network_id: int, block: str) -> Decimal:
        """Native balance (ETH, BNB, MATIC...) at ``block``."""
        network = get_network(network_id)
        decimals = network.decimals if network else 18
        result = await self._call(network_id, "eth_getBalance", [address, block])
        return to_units(int(result, 16), decimals)

    async def get_token_balance(
        self, address: str, token: TrackedToken, network_id: int, block: str
    ) -> Decimal:
        """ERC20 balanceOf(address) at ``block``."""
        address_padded = address.lower().replace("0x", "").zfill(64)
        data = f"{BALANCE_OF_SIGNATURE}{address_padded}"
        result = await self._call(
            network_id, "eth_call", [{"to": token.address, "data": data}, block]
        )
        if result in ("0x", ""):
            return Decimal(0)
        return to_units(int(result, 16), token.decimals)

    async def get_balances(self, address: str, network_id: int) -> list[ChainBalance]:
        """Native balance plus every tracked token, all at the current head block.

        Raises:
            ChainReadError: RPC unreachable or returned an error
            UnsupportedNetwork: network id unknown
        """
        block_number = await self.get_block_number(network_id)
        block = hex(block_number)

        balances = [
            ChainBalance(
                balance=await self.get_native_balance(address, network_id, block),
                block_number=block_number,
            )
        ]
        for token in self.tokens.get(network_id, ()):
            try:
                amount = await self.get_token_balance(address, token, network_id, block)
            except ChainReadError as e:
                logger.warning(f"Skipping {token.symbol} for {address}: {e}")
                continue
            balances.append(
                ChainBalance(
                    balance=amount,
                    block_number=block_number,
                    token_address=token.address,
                    token_symbol=token.symbol,
                )
            )
        return balances
