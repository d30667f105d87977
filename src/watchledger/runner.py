"""Balance poller runner.

Runs the balance poller against the configured database, reading balances
from public EVM JSON-RPC endpoints.

Usage:
    python -m watchledger.runner --network 1 --interval 60
    python -m watchledger.runner --once
"""

import argparse
import asyncio
import logging
import signal
from typing import Optional

from watchledger.config import Settings, get_settings
from watchledger.ledger.database import Database
from watchledger.services import LedgerCore
from watchledger.services.chain_reader import EvmRpcReader
from watchledger.services.poller import BalancePoller, PollResult

logger = logging.getLogger(__name__)


async def run_poller(
    settings: Settings,
    network_id: Optional[int] = None,
    interval: float = 60.0,
    once: bool = False,
) -> Optional[PollResult]:
    """Wire the core to an RPC reader and poll once or until interrupted."""
    db = Database.from_settings(settings)
    await db.init_db()
    core = LedgerCore.create(db, settings)
    reader = EvmRpcReader(timeout=settings.rpc_timeout)
    poller = BalancePoller(core.registry, core.ledger, reader, interval=interval)

    try:
        if once:
            return await poller.poll_once(network_id)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, poller.stop)
            except NotImplementedError:
                # Not available on Windows event loops
                pass
        await poller.run(network_id)
        return None
    finally:
        await reader.close()
        await db.close()


def main() -> None:
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Run the balance poller")
    parser.add_argument(
        "--network",
        type=int,
        default=None,
        help="Only poll watch addresses on this network id (default: all)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=60.0,
        help="Seconds between sweeps (default: 60)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one sweep and exit",
    )
    args = parser.parse_args()

    result = asyncio.run(
        run_poller(get_settings(), network_id=args.network, interval=args.interval, once=args.once)
    )
    if result is not None:
        logger.info(
            f"Checked {result.checked} addresses, recorded {result.recorded}, "
            f"failed {result.failed}"
        )


if __name__ == "__main__":
    main()
