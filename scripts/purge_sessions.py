#!/usr/bin/env python3
"""Expired session sweep.

Deletes revoked sessions and sessions whose refresh token has expired.
Meant to run from cron; validation never removes rows itself.

Usage:
    python scripts/purge_sessions.py [--older-than-hours N]

Options:
    --older-than-hours  Only purge refresh tokens that expired at least N hours ago
"""

import argparse
import asyncio
import logging
from datetime import timedelta

from watchledger.config import get_settings
from watchledger.ledger.database import Database
from watchledger.ledger.types import utcnow
from watchledger.services import LedgerCore

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def main(older_than_hours: float) -> int:
    settings = get_settings()
    db = Database.from_settings(settings)
    core = LedgerCore.create(db, settings)

    cutoff = utcnow() - timedelta(hours=older_than_hours)
    try:
        purged = await core.sessions.purge_expired(before=cutoff)
        logger.info(f"Purged {purged} sessions")
        if core.auditor.degraded_count:
            logger.warning(f"Audit trail degraded ({core.auditor.degraded_count} failed writes)")
        return 0
    finally:
        await db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delete expired and revoked sessions")
    parser.add_argument(
        "--older-than-hours",
        type=float,
        default=0.0,
        help="Grace period after refresh expiry (default: 0)",
    )
    args = parser.parse_args()
    raise SystemExit(asyncio.run(main(args.older_than_hours)))
