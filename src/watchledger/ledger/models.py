"""SQLAlchemy models for the address/balance ledger."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from watchledger.ledger.types import (
    DecimalString,
    StructuredMap,
    StructuredMapType,
    UTCDateTime,
    empty_map,
    utcnow,
)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class RecordStatus(str, Enum):
    """Retention status of a tombstonable row."""

    ACTIVE = "active"
    TOMBSTONED = "tombstoned"


class AddressType(str, Enum):
    """Kind of account behind a watch address."""

    EOA = "EOA"
    CONTRACT = "Contract"
    MULTISIG = "MultiSig"


class WalletType(str, Enum):
    """How a wallet came to be known to the user."""

    IMPORTED = "imported"
    CREATED = "created"
    HARDWARE = "hardware"


class ActivityStatus(str, Enum):
    """Outcome recorded on an activity log entry."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class SessionState(str, Enum):
    """Lifecycle of a login session."""

    CREATED = "created"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class TimestampMixin:
    """Primary key and bookkeeping timestamps shared by every table."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class TombstoneMixin:
    """Soft delete marker. Rows are retained for audit and history."""

    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)

    @property
    def status(self) -> RecordStatus:
        return RecordStatus.TOMBSTONED if self.deleted_at is not None else RecordStatus.ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def tombstone(self) -> None:
        self.deleted_at = utcnow()

    def restore(self) -> None:
        self.deleted_at = None


class User(TimestampMixin, TombstoneMixin, Base):
    """Account owning every other record."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    salt: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    def to_public_dict(self) -> dict:
        """Outward representation. Credentials are never included."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "avatar_url": self.avatar_url,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at,
            "created_at": self.created_at,
            "status": self.status.value,
        }

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, username={self.username!r})"


class UserSession(TimestampMixin, Base):
    """Login session with its session and refresh tokens."""

    __tablename__ = "user_sessions"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    session_token: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    refresh_token: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    device_info: Mapped[StructuredMap] = mapped_column(
        StructuredMapType, default=empty_map, nullable=False
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    refresh_expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    __table_args__ = (
        Index("ix_user_sessions_user_active", "user_id", "is_active", "expires_at"),
    )

    def state(self, now: Optional[datetime] = None) -> SessionState:
        """Current lifecycle state. Revocation wins over expiry."""
        if self.id is None:
            return SessionState.CREATED
        if not self.is_active:
            return SessionState.REVOKED
        if self.expires_at <= (now or utcnow()):
            return SessionState.EXPIRED
        return SessionState.ACTIVE


class UserPreference(TimestampMixin, Base):
    """Per-user settings, exactly one row per user."""

    __tablename__ = "user_preferences"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    default_currency: Mapped[str] = mapped_column(String(10), default="USD", nullable=False)
    theme: Mapped[str] = mapped_column(String(20), default="light", nullable=False)
    language: Mapped[str] = mapped_column(String(10), default="en", nullable=False)
    notifications: Mapped[StructuredMap] = mapped_column(
        StructuredMapType, default=empty_map, nullable=False
    )
    display_settings: Mapped[StructuredMap] = mapped_column(
        StructuredMapType, default=empty_map, nullable=False
    )
    privacy_settings: Mapped[StructuredMap] = mapped_column(
        StructuredMapType, default=empty_map, nullable=False
    )


class WatchAddress(TimestampMixin, TombstoneMixin, Base):
    """Address a user monitors.

    ``balance_cache`` mirrors the newest native-asset observation in
    ``address_balance_history``; token balances are only kept in history.
    """

    __tablename__ = "watch_addresses"
    __table_args__ = (
        UniqueConstraint("user_id", "address", "network_id", name="uq_watch_user_address_network"),
        Index("ix_watch_addresses_user_network_fav", "user_id", "network_id", "is_favorite"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    network_id: Mapped[int] = mapped_column(default=1, nullable=False, index=True)
    label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    address_type: Mapped[str] = mapped_column(
        String(20), default=AddressType.EOA.value, nullable=False
    )
    tags: Mapped[StructuredMap] = mapped_column(
        StructuredMapType, default=empty_map, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_favorite: Mapped[bool] = mapped_column(default=False, nullable=False)
    notification_enabled: Mapped[bool] = mapped_column(default=True, nullable=False)
    balance_cache: Mapped[Optional[Decimal]] = mapped_column(DecimalString, nullable=True)
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"WatchAddress(id={self.id!r}, address={self.address!r}, "
            f"network_id={self.network_id!r})"
        )


class UserWallet(TimestampMixin, TombstoneMixin, Base):
    """Wallet the user holds. Never stores key material."""

    __tablename__ = "user_wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "address", "network_id", name="uq_wallet_user_address_network"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    network_id: Mapped[int] = mapped_column(default=1, nullable=False, index=True)
    wallet_name: Mapped[str] = mapped_column(String(100), nullable=False)
    wallet_type: Mapped[str] = mapped_column(
        String(20), default=WalletType.IMPORTED.value, nullable=False
    )
    derivation_path: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    # At most one primary per user; enforced by the registry's swap, not by a constraint
    is_primary: Mapped[bool] = mapped_column(default=False, nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class AddressBalanceHistory(TimestampMixin, Base):
    """Immutable balance observation for one (watch address, token) stream."""

    __tablename__ = "address_balance_history"
    __table_args__ = (
        Index("ix_balance_history_stream", "watch_address_id", "token_address", "block_number"),
    )

    watch_address_id: Mapped[int] = mapped_column(
        ForeignKey("watch_addresses.id"), nullable=False, index=True
    )
    balance: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    token_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True, index=True)
    token_symbol: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False, index=True
    )

    @property
    def is_native(self) -> bool:
        return self.token_address is None


# One observation per block and stream
Index(
    "uq_balance_history_block",
    AddressBalanceHistory.watch_address_id,
    func.coalesce(AddressBalanceHistory.token_address, ""),
    AddressBalanceHistory.block_number,
    unique=True,
    sqlite_where=AddressBalanceHistory.block_number.isnot(None),
    postgresql_where=AddressBalanceHistory.block_number.isnot(None),
)


class ActivityLog(TimestampMixin, Base):
    """Security audit entry. ``user_id`` may be null for system actions."""

    __tablename__ = "user_activity_logs"

    user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    details: Mapped[StructuredMap] = mapped_column(
        StructuredMapType, default=empty_map, nullable=False
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ActivityStatus.SUCCESS.value, nullable=False
    )
