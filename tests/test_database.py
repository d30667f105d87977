"""Tests for the database handle, repository and schema migration."""

import importlib.util
from decimal import Decimal
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError, OperationalError

from watchledger.exceptions import TransientStoreError
from watchledger.ledger.database import Database, is_transient, normalize_url
from watchledger.ledger.models import Base
from watchledger.ledger.repository import LedgerRepository

MIGRATION = Path(__file__).parent.parent / "alembic" / "versions" / "001_initial_schema.py"


def load_migration():
    location = importlib.util.spec_from_file_location("initial_schema", MIGRATION)
    module = importlib.util.module_from_spec(location)
    location.loader.exec_module(module)
    return module


class TestDatabase:
    """Tests for the storage handle."""

    def test_normalize_url(self):
        assert normalize_url("sqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"
        assert normalize_url("sqlite+aiosqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"

    def test_operational_errors_are_transient(self):
        error = OperationalError("SELECT 1", {}, Exception("database is locked"))

        assert is_transient(error)
        assert not is_transient(ValueError("nope"))

    @pytest.mark.asyncio
    async def test_health_check(self, db):
        assert await db.health_check() is True

    @pytest.mark.asyncio
    async def test_unreachable_store_is_transient(self, tmp_path):
        database = Database(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/x.db")
        try:
            with pytest.raises(TransientStoreError):
                async with database.session() as session:
                    await session.connection()
        finally:
            await database.close()

    @pytest.mark.asyncio
    async def test_session_rolls_back_on_error(self, db, ledger_repo, db_session):
        with pytest.raises(RuntimeError):
            async with db.session() as session:
                await LedgerRepository(session).create_user("eve", "eve@example.com", "h", "s")
                raise RuntimeError("abort")

        assert await ledger_repo.username_exists("eve") is False


class TestRepository:
    """Repository-level checks on a raw session."""

    @pytest.mark.asyncio
    async def test_history_order(self, ledger_repo, db_session):
        user = await ledger_repo.create_user("frank", "frank@example.com", "h", "s")
        watch = await ledger_repo.create_watch(
            user_id=user.id, address="0x" + "6" * 40, network_id=1
        )
        await ledger_repo.add_history(watch.id, Decimal("1"), block_number=5)
        await ledger_repo.add_history(watch.id, Decimal("2"))
        await ledger_repo.add_history(watch.id, Decimal("3"), block_number=9)
        await db_session.commit()

        history = await ledger_repo.get_history(watch.id)
        assert [h.block_number for h in history] == [9, 5, None]

        head = await ledger_repo.get_latest_history(watch.id, None)
        assert head.balance == Decimal("3")

    @pytest.mark.asyncio
    async def test_find_watch_sees_tombstones(self, ledger_repo, db_session):
        user = await ledger_repo.create_user("gina", "gina@example.com", "h", "s")
        watch = await ledger_repo.create_watch(
            user_id=user.id, address="0x" + "7" * 40, network_id=1
        )
        watch.tombstone()
        await db_session.commit()

        assert await ledger_repo.get_watch(watch.id) is None
        found = await ledger_repo.find_watch(user.id, "0x" + "7" * 40, 1)
        assert found.id == watch.id

    @pytest.mark.asyncio
    async def test_one_row_per_block_and_stream(self, db, ledger_repo, db_session):
        user = await ledger_repo.create_user("hugo", "hugo@example.com", "h", "s")
        watch = await ledger_repo.create_watch(
            user_id=user.id, address="0x" + "8" * 40, network_id=1
        )
        token = "0x" + "c" * 40
        await ledger_repo.add_history(watch.id, Decimal("1"), block_number=5)
        await ledger_repo.add_history(watch.id, Decimal("1"), token_address=token, block_number=5)
        await ledger_repo.add_history(watch.id, Decimal("2"))
        await ledger_repo.add_history(watch.id, Decimal("3"))
        await db_session.commit()

        for token_address in (None, token):
            with pytest.raises(IntegrityError):
                async with db.session() as session:
                    await LedgerRepository(session).add_history(
                        watch.id, Decimal("9"), token_address=token_address, block_number=5
                    )


class TestMigration:
    """The initial revision builds the same schema as the models."""

    def test_upgrade_matches_models(self, tmp_path):
        migration = load_migration()
        engine = create_engine(f"sqlite:///{tmp_path}/migrated.db")

        with engine.begin() as conn:
            ctx = MigrationContext.configure(conn)
            with Operations.context(ctx):
                migration.upgrade()

        inspector = inspect(engine)
        assert set(inspector.get_table_names()) == set(Base.metadata.tables)
        for name, table in Base.metadata.tables.items():
            migrated = {column["name"] for column in inspector.get_columns(name)}
            assert migrated == {column.name for column in table.columns}, name

        with engine.connect() as conn:
            indexes = set(
                conn.scalars(text("SELECT name FROM sqlite_master WHERE type = 'index'"))
            )
        assert "uq_balance_history_block" in indexes

        engine.dispose()

    def test_downgrade_drops_everything(self, tmp_path):
        migration = load_migration()
        engine = create_engine(f"sqlite:///{tmp_path}/migrated.db")

        with engine.begin() as conn:
            ctx = MigrationContext.configure(conn)
            with Operations.context(ctx):
                migration.upgrade()
                migration.downgrade()

        assert inspect(engine).get_table_names() == []
        engine.dispose()
