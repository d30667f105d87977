#!/usr/bin/env python3
"""Database setup script - creates all tables.

Usage:
    python scripts/init_db.py [--check]

Options:
    --check  Only verify the database answers, do not create tables
"""

import argparse
import asyncio
import logging
from pathlib import Path

from sqlalchemy.engine import make_url

from watchledger.config import get_settings
from watchledger.ledger.database import Database

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def ensure_sqlite_dir(database_url: str) -> None:
    """SQLite will not create the parent directory of its file."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


async def main(check_only: bool) -> int:
    settings = get_settings()
    logger.info(f"Database URL: {settings.get_safe_dict()['database_url']}")

    ensure_sqlite_dir(settings.database_url)
    db = Database.from_settings(settings)
    try:
        if check_only:
            healthy = await db.health_check()
            logger.info("Database is reachable" if healthy else "Database is NOT reachable")
            return 0 if healthy else 1

        logger.info("Creating database tables...")
        await db.init_db()
        logger.info("Database tables created successfully")
        return 0
    finally:
        await db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the watchledger schema")
    parser.add_argument("--check", action="store_true", help="Only run a health check")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(main(args.check)))
