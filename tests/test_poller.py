"""Tests for the balance poller."""

import asyncio
from decimal import Decimal

import pytest

from watchledger.services.poller import BalancePoller, ChainBalance

USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"


class FakeChainReader:
    """Serves canned balances per address."""

    def __init__(self, balances: dict[str, list[ChainBalance]], broken: tuple = ()):
        self.balances = balances
        self.broken = set(broken)
        self.calls: list[tuple[str, int]] = []

    async def get_balances(self, address: str, network_id: int) -> list[ChainBalance]:
        self.calls.append((address, network_id))
        if address in self.broken:
            raise ConnectionError("rpc timeout")
        return self.balances.get(address, [])


class TestBalancePoller:
    """Tests for balance sweeps."""

    @pytest.mark.asyncio
    async def test_poll_once_records_balances(self, core, watch):
        reader = FakeChainReader(
            {
                watch.address: [
                    ChainBalance("2.5", block_number=10),
                    ChainBalance("100", block_number=10, token_address=USDC, token_symbol="USDC"),
                ]
            }
        )
        poller = BalancePoller(core.registry, core.ledger, reader)

        result = await poller.poll_once()

        assert (result.checked, result.recorded, result.failed) == (1, 2, 0)
        assert await core.ledger.latest_balance(watch.id) == Decimal("2.5")
        assert await core.ledger.latest_balance(watch.id, USDC) == Decimal("100")

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_sweep(self, core, alice, watch):
        other = await core.registry.add_watch(alice.id, "0x" + "5" * 40)
        reader = FakeChainReader(
            {other.address: [ChainBalance("7", block_number=1)]},
            broken=(watch.address,),
        )
        poller = BalancePoller(core.registry, core.ledger, reader)

        result = await poller.poll_once()

        assert (result.checked, result.recorded, result.failed) == (2, 1, 1)
        assert await core.ledger.latest_balance(other.id) == Decimal("7")

    @pytest.mark.asyncio
    async def test_rejected_observation_counted(self, core, watch):
        reader = FakeChainReader({watch.address: [ChainBalance("-1", block_number=1)]})
        poller = BalancePoller(core.registry, core.ledger, reader)

        result = await poller.poll_once()

        assert result.failed == 1
        assert result.recorded == 0

    @pytest.mark.asyncio
    async def test_network_filter(self, core, alice, watch):
        polygon = await core.registry.add_watch(alice.id, watch.address, network_id=137)
        reader = FakeChainReader({})
        poller = BalancePoller(core.registry, core.ledger, reader)

        result = await poller.poll_once(network_id=137)

        assert result.checked == 1
        assert reader.calls == [(polygon.address, 137)]

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, core, watch):
        reader = FakeChainReader({watch.address: [ChainBalance("1", block_number=1)]})
        poller = BalancePoller(core.registry, core.ledger, reader, interval=0.01)

        task = asyncio.create_task(poller.run())
        await asyncio.sleep(0.1)
        poller.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert len(reader.calls) >= 1
        assert len(await core.ledger.history(watch.id)) == 1
