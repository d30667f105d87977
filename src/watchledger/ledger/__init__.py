"""Ledger module: models, storage handle and repository."""

from watchledger.ledger.database import Database
from watchledger.ledger.models import (
    ActivityLog,
    ActivityStatus,
    AddressBalanceHistory,
    AddressType,
    Base,
    RecordStatus,
    SessionState,
    User,
    UserPreference,
    UserSession,
    UserWallet,
    WalletType,
    WatchAddress,
)
from watchledger.ledger.repository import LedgerRepository
from watchledger.ledger.types import StructuredMap

__all__ = [
    # Models
    "User",
    "UserSession",
    "UserPreference",
    "WatchAddress",
    "UserWallet",
    "AddressBalanceHistory",
    "ActivityLog",
    "Base",
    # Enums
    "ActivityStatus",
    "AddressType",
    "RecordStatus",
    "SessionState",
    "WalletType",
    # Storage
    "Database",
    "LedgerRepository",
    "StructuredMap",
]
