"""Service layer: the only entry points into the ledger core."""

from dataclasses import dataclass
from typing import Optional

from watchledger.config import Settings, get_settings
from watchledger.ledger.database import Database
from watchledger.services.auditor import ActivityAuditor
from watchledger.services.identity import IdentityStore
from watchledger.services.ledger import BalanceChange, BalanceLedger, Notifier
from watchledger.services.preferences import PreferenceStore
from watchledger.services.registry import AddressRegistry
from watchledger.services.sessions import SessionManager


@dataclass
class LedgerCore:
    """All components wired to one database handle."""

    db: Database
    auditor: ActivityAuditor
    identity: IdentityStore
    sessions: SessionManager
    registry: AddressRegistry
    ledger: BalanceLedger
    preferences: PreferenceStore

    @classmethod
    def create(
        cls,
        db: Database,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
    ) -> "LedgerCore":
        settings = settings or get_settings()
        auditor = ActivityAuditor(db)
        return cls(
            db=db,
            auditor=auditor,
            identity=IdentityStore(db, auditor),
            sessions=SessionManager(db, auditor, settings),
            registry=AddressRegistry(db, auditor, settings),
            ledger=BalanceLedger(db, auditor, notifier=notifier, settings=settings),
            preferences=PreferenceStore(db, auditor, settings),
        )


__all__ = [
    "ActivityAuditor",
    "AddressRegistry",
    "BalanceChange",
    "BalanceLedger",
    "IdentityStore",
    "LedgerCore",
    "Notifier",
    "PreferenceStore",
    "SessionManager",
]
