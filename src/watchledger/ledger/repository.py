"""Repository for ledger operations.

Pure data access over one AsyncSession. Transactions, locking, validation
and auditing belong to the services that drive it.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from watchledger.ledger.models import (
    ActivityLog,
    ActivityStatus,
    AddressBalanceHistory,
    User,
    UserPreference,
    UserSession,
    UserWallet,
    WatchAddress,
)
from watchledger.ledger.types import StructuredMap, utcnow


def _token_clause(token_address: Optional[str]):
    if token_address is None:
        return AddressBalanceHistory.token_address.is_(None)
    return AddressBalanceHistory.token_address == token_address


# Newest first: block number is authoritative, insertion order breaks ties
HISTORY_ORDER = (
    AddressBalanceHistory.block_number.desc().nulls_last(),
    AddressBalanceHistory.id.desc(),
)


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # User operations
    async def create_user(
        self, username: str, email: str, password_hash: str, salt: str
    ) -> User:
        """Insert a new user row."""
        user = User(username=username, email=email, password_hash=password_hash, salt=salt)
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_user(
        self, user_id: int, include_deleted: bool = False, for_update: bool = False
    ) -> Optional[User]:
        """Get user by ID."""
        stmt = select(User).where(User.id == user_id)
        if not include_deleted:
            stmt = stmt.where(User.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_identifier(self, identifier: str) -> Optional[User]:
        """Get a non-deleted user by username or email."""
        stmt = select(User).where(
            or_(User.username == identifier, User.email == identifier),
            User.deleted_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def username_exists(self, username: str) -> bool:
        """Usernames stay reserved after account closure."""
        stmt = select(User.id).where(User.username == username)
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def email_exists(self, email: str) -> bool:
        stmt = select(User.id).where(User.email == email)
        result = await self.session.execute(stmt)
        return result.first() is not None

    # Session operations
    async def create_session(
        self,
        user_id: int,
        session_token: str,
        refresh_token: str,
        expires_at: datetime,
        refresh_expires_at: datetime,
        device_info: Optional[Mapping[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UserSession:
        """Insert a session row."""
        user_session = UserSession(
            user_id=user_id,
            session_token=session_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            refresh_expires_at=refresh_expires_at,
            device_info=StructuredMap(device_info),
            ip_address=ip_address,
            user_agent=user_agent,
            is_active=True,
        )
        self.session.add(user_session)
        await self.session.flush()
        return user_session

    async def get_session_by_token(self, session_token: str) -> Optional[UserSession]:
        stmt = select(UserSession).where(UserSession.session_token == session_token)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_session_by_refresh_token(self, refresh_token: str) -> Optional[UserSession]:
        stmt = select(UserSession).where(UserSession.refresh_token == refresh_token)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_sessions(self, user_id: int) -> list[UserSession]:
        """Get unexpired, unrevoked sessions for a user, newest first."""
        stmt = (
            select(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.is_active.is_(True),
                UserSession.expires_at > utcnow(),
            )
            .order_by(UserSession.created_at.desc(), UserSession.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def deactivate_user_sessions(self, user_id: int) -> int:
        """Revoke every active session of a user. Returns rows touched."""
        stmt = (
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
            .values(is_active=False, updated_at=utcnow())
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def delete_expired_sessions(self, before: datetime) -> int:
        """Physically remove sessions that can no longer be used."""
        stmt = delete(UserSession).where(
            or_(
                UserSession.is_active.is_(False),
                UserSession.refresh_expires_at <= before,
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    # Watch address operations
    async def create_watch(self, **fields) -> WatchAddress:
        watch = WatchAddress(**fields)
        self.session.add(watch)
        await self.session.flush()
        return watch

    async def get_watch(
        self,
        watch_id: int,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> Optional[WatchAddress]:
        """Get watch address by ID, optionally row-locked for the transaction."""
        stmt = select(WatchAddress).where(WatchAddress.id == watch_id)
        if not include_deleted:
            stmt = stmt.where(WatchAddress.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_watch(
        self, user_id: int, address: str, network_id: int
    ) -> Optional[WatchAddress]:
        """Find the (user, address, network) row regardless of tombstone."""
        stmt = select(WatchAddress).where(
            WatchAddress.user_id == user_id,
            WatchAddress.address == address,
            WatchAddress.network_id == network_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_watches(
        self,
        user_id: int,
        network_id: Optional[int] = None,
        favorites_first: bool = True,
        include_deleted: bool = False,
    ) -> list[WatchAddress]:
        """Get a user's watch addresses, favorites first then newest."""
        stmt = select(WatchAddress).where(WatchAddress.user_id == user_id)
        if network_id is not None:
            stmt = stmt.where(WatchAddress.network_id == network_id)
        if not include_deleted:
            stmt = stmt.where(WatchAddress.deleted_at.is_(None))

        order = [WatchAddress.created_at.desc(), WatchAddress.id.desc()]
        if favorites_first:
            order.insert(0, WatchAddress.is_favorite.desc())
        stmt = stmt.order_by(*order)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_all_active_watches(self, network_id: Optional[int] = None) -> list[WatchAddress]:
        """Get every non-deleted watch address, optionally for one network.

        Used by the balance poller.
        """
        stmt = (
            select(WatchAddress)
            .join(User, User.id == WatchAddress.user_id)
            .where(WatchAddress.deleted_at.is_(None), User.deleted_at.is_(None))
        )
        if network_id is not None:
            stmt = stmt.where(WatchAddress.network_id == network_id)
        stmt = stmt.order_by(WatchAddress.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Wallet operations
    async def create_wallet(self, **fields) -> UserWallet:
        wallet = UserWallet(**fields)
        self.session.add(wallet)
        await self.session.flush()
        return wallet

    async def get_wallet(
        self, wallet_id: int, include_deleted: bool = False
    ) -> Optional[UserWallet]:
        stmt = select(UserWallet).where(UserWallet.id == wallet_id)
        if not include_deleted:
            stmt = stmt.where(UserWallet.deleted_at.is_(None))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_wallet(
        self, user_id: int, address: str, network_id: int
    ) -> Optional[UserWallet]:
        stmt = select(UserWallet).where(
            UserWallet.user_id == user_id,
            UserWallet.address == address,
            UserWallet.network_id == network_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_wallets(
        self,
        user_id: int,
        network_id: Optional[int] = None,
        include_deleted: bool = False,
    ) -> list[UserWallet]:
        """Get a user's wallets: primary first, then most recently used."""
        stmt = select(UserWallet).where(UserWallet.user_id == user_id)
        if network_id is not None:
            stmt = stmt.where(UserWallet.network_id == network_id)
        if not include_deleted:
            stmt = stmt.where(UserWallet.deleted_at.is_(None))
        stmt = stmt.order_by(
            UserWallet.is_primary.desc(),
            UserWallet.last_used_at.desc().nulls_last(),
            UserWallet.created_at.desc(),
            UserWallet.id.desc(),
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_primary_wallet(self, user_id: int) -> Optional[UserWallet]:
        stmt = select(UserWallet).where(
            UserWallet.user_id == user_id,
            UserWallet.is_primary.is_(True),
            UserWallet.deleted_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def clear_primary_wallets(self, user_id: int) -> int:
        """Clear the primary flag on every wallet of a user."""
        stmt = (
            update(UserWallet)
            .where(UserWallet.user_id == user_id, UserWallet.is_primary.is_(True))
            .values(is_primary=False, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    # Balance history operations
    async def add_history(
        self,
        watch_address_id: int,
        balance: Decimal,
        token_address: Optional[str] = None,
        token_symbol: Optional[str] = None,
        block_number: Optional[int] = None,
    ) -> AddressBalanceHistory:
        """Append an observation. History rows are never updated."""
        row = AddressBalanceHistory(
            watch_address_id=watch_address_id,
            balance=balance,
            token_address=token_address,
            token_symbol=token_symbol,
            block_number=block_number,
            recorded_at=utcnow(),
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_history_at_block(
        self, watch_address_id: int, token_address: Optional[str], block_number: int
    ) -> Optional[AddressBalanceHistory]:
        """Get the observation already recorded for a block, if any."""
        stmt = (
            select(AddressBalanceHistory)
            .where(
                AddressBalanceHistory.watch_address_id == watch_address_id,
                _token_clause(token_address),
                AddressBalanceHistory.block_number == block_number,
            )
            .order_by(AddressBalanceHistory.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_history(
        self, watch_address_id: int, token_address: Optional[str]
    ) -> Optional[AddressBalanceHistory]:
        """Get the newest observation of a stream."""
        rows = await self.get_history(watch_address_id, token_address, limit=1)
        return rows[0] if rows else None

    async def get_history(
        self,
        watch_address_id: int,
        token_address: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AddressBalanceHistory]:
        """Get observations of a stream, newest first."""
        stmt = select(AddressBalanceHistory).where(
            AddressBalanceHistory.watch_address_id == watch_address_id,
            _token_clause(token_address),
        )
        if since is not None:
            stmt = stmt.where(AddressBalanceHistory.recorded_at >= since)
        stmt = stmt.order_by(*HISTORY_ORDER).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Preference operations
    async def get_preference(self, user_id: int) -> Optional[UserPreference]:
        stmt = select(UserPreference).where(UserPreference.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_preference(self, user_id: int, **fields) -> UserPreference:
        preference = UserPreference(user_id=user_id, **fields)
        self.session.add(preference)
        await self.session.flush()
        return preference

    # Activity log operations
    async def add_activity_log(
        self,
        action: str,
        user_id: Optional[int] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
        status: ActivityStatus = ActivityStatus.SUCCESS,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ActivityLog:
        """Append an activity log entry."""
        entry = ActivityLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=StructuredMap(details),
            status=ActivityStatus(status).value,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_user_activity_logs(self, user_id: int, limit: int = 50) -> list[ActivityLog]:
        """Get activity logs for a user, newest first."""
        stmt = (
            select(ActivityLog)
            .where(ActivityLog.user_id == user_id)
            .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_activity_logs_by_resource(
        self, resource_type: str, resource_id: str
    ) -> list[ActivityLog]:
        """Get activity logs for a specific resource, oldest first."""
        stmt = (
            select(ActivityLog)
            .where(
                ActivityLog.resource_type == resource_type,
                ActivityLog.resource_id == resource_id,
            )
            .order_by(ActivityLog.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
