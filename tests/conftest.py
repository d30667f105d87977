"""Pytest configuration and fixtures."""

import os
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"

from watchledger.config import Settings
from watchledger.ledger.database import Database
from watchledger.ledger.models import User, WatchAddress
from watchledger.ledger.repository import LedgerRepository
from watchledger.services import LedgerCore


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a per-test SQLite file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        environment="test",
        lock_timeout=5.0,
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    """Create a fresh database with all tables."""
    database = Database(settings.database_url)
    await database.init_db()

    yield database

    await database.close()


@pytest_asyncio.fixture
async def db_session(db: Database) -> AsyncGenerator[AsyncSession, None]:
    """Raw session for repository-level tests."""
    async with db.session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture
def core(db: Database, settings: Settings) -> LedgerCore:
    """All services wired to the test database."""
    return LedgerCore.create(db, settings)


@pytest_asyncio.fixture
async def alice(core: LedgerCore) -> User:
    return await core.identity.create_user("alice", "alice@example.com", "hash-alice", "salt-a")


@pytest_asyncio.fixture
async def bob(core: LedgerCore) -> User:
    return await core.identity.create_user("bob", "bob@example.com", "hash-bob", "salt-b")


@pytest_asyncio.fixture
async def watch(core: LedgerCore, alice: User) -> WatchAddress:
    """Alice watching her Ethereum address."""
    return await core.registry.add_watch(
        alice.id, "0xAbC0000000000000000000000000000000000001", network_id=1, label="main"
    )
