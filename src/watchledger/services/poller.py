"""Balance poller.

Feeds chain reads into the ledger for every active watch address. The chain
itself is behind the ChainReader protocol; RPC clients live elsewhere.

Usage:
    poller = BalancePoller(registry, ledger, reader)
    result = await poller.poll_once(network_id=1)
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, Union

from watchledger.exceptions import WatchLedgerError
from watchledger.services.ledger import BalanceLedger
from watchledger.services.registry import AddressRegistry

logger = logging.getLogger(__name__)


@dataclass
class ChainBalance:
    """One balance read from the chain. ``token_address=None`` is native."""

    balance: Union[str, Decimal]
    block_number: Optional[int] = None
    token_address: Optional[str] = None
    token_symbol: Optional[str] = None


class ChainReader(Protocol):
    async def get_balances(self, address: str, network_id: int) -> list[ChainBalance]: ...


@dataclass
class PollResult:
    checked: int = 0
    recorded: int = 0
    failed: int = 0


class BalancePoller:
    """Runs balance sweeps over the registry."""

    def __init__(
        self,
        registry: AddressRegistry,
        ledger: BalanceLedger,
        reader: ChainReader,
        interval: float = 60.0,
    ):
        self.registry = registry
        self.ledger = ledger
        self.reader = reader
        self.interval = interval
        self._stop = asyncio.Event()

    async def poll_once(self, network_id: Optional[int] = None) -> PollResult:
        """Read and record balances for every active watch address.

        A failure on one address is logged and counted; the sweep continues.
        """
        result = PollResult()
        watches = await self.registry.list_all_active_watches(network_id)

        for watch in watches:
            result.checked += 1
            try:
                balances = await self.reader.get_balances(watch.address, watch.network_id)
                for item in balances:
                    await self.ledger.record_observation(
                        watch.id,
                        item.balance,
                        token_address=item.token_address,
                        block_number=item.block_number,
                        token_symbol=item.token_symbol,
                    )
                    result.recorded += 1
            except WatchLedgerError as e:
                result.failed += 1
                logger.warning(f"Rejected observation for watch {watch.id} ({watch.address}): {e}")
            except Exception as e:
                result.failed += 1
                logger.error(f"Chain read failed for watch {watch.id} ({watch.address}): {e}")

        logger.info(
            f"Poll complete: {result.checked} checked, {result.recorded} recorded, "
            f"{result.failed} failed"
        )
        return result

    async def run(self, network_id: Optional[int] = None) -> None:
        """Poll until stop() is called."""
        logger.info(f"Balance poller started (interval {self.interval}s)")
        while not self._stop.is_set():
            try:
                await self.poll_once(network_id)
            except Exception as e:
                logger.error(f"Poller error: {e}")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Balance poller stopped")

    def stop(self) -> None:
        self._stop.set()
