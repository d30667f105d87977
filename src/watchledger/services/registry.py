"""Address registry: watch addresses and user wallets.

Both record kinds are unique per (user, address, network) and are soft
deleted. Re-adding a tombstoned triple revives the existing row, which keeps
the UNIQUE constraint intact and the balance history attached.
"""

import logging
from typing import Any, Mapping, Optional, Union

from sqlalchemy.exc import IntegrityError

from watchledger.config import Settings, get_settings
from watchledger.contracts import WalletUpdate, WatchAddressUpdate, parse_update
from watchledger.exceptions import DuplicateWallet, DuplicateWatch, NotFoundError
from watchledger.ledger.database import Database
from watchledger.ledger.models import AddressType, UserWallet, WalletType, WatchAddress
from watchledger.ledger.repository import LedgerRepository
from watchledger.ledger.types import StructuredMap, utcnow
from watchledger.networks import normalize_address
from watchledger.services.auditor import ActivityAuditor
from watchledger.utils.locks import LockRegistry

logger = logging.getLogger(__name__)


class AddressRegistry:
    """Manages the addresses a user watches and the wallets a user holds."""

    def __init__(
        self,
        db: Database,
        auditor: ActivityAuditor,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.auditor = auditor
        self.settings = settings or get_settings()
        self.locks = LockRegistry()

    # Watch address operations
    async def add_watch(
        self,
        user_id: int,
        address: str,
        network_id: Optional[int] = None,
        label: Optional[str] = None,
        tags: Optional[Mapping[str, Any]] = None,
        notes: Optional[str] = None,
        address_type: Union[AddressType, str] = AddressType.EOA,
        is_favorite: bool = False,
        notification_enabled: bool = True,
    ) -> WatchAddress:
        """Start watching an address.

        Raises:
            InvalidAddressFormat / UnsupportedNetwork: rejected before any write
            NotFoundError: user missing or closed
            DuplicateWatch: the triple is already actively watched
        """
        network_id = network_id if network_id is not None else self.settings.default_network_id
        address = normalize_address(address, network_id)
        address_type = AddressType(address_type).value
        tag_map = StructuredMap(tags)

        try:
            async with self.db.session() as session:
                repo = LedgerRepository(session)
                if await repo.get_user(user_id) is None:
                    raise NotFoundError("User", user_id)

                existing = await repo.find_watch(user_id, address, network_id)
                if existing is not None and not existing.is_deleted:
                    raise DuplicateWatch(user_id, address, network_id)

                if existing is not None:
                    existing.restore()
                    existing.label = label
                    existing.tags = tag_map
                    existing.notes = notes
                    existing.address_type = address_type
                    existing.is_favorite = is_favorite
                    existing.notification_enabled = notification_enabled
                    existing.created_at = utcnow()
                    await session.flush()
                    watch, revived = existing, True
                else:
                    watch = await repo.create_watch(
                        user_id=user_id,
                        address=address,
                        network_id=network_id,
                        label=label,
                        tags=tag_map,
                        notes=notes,
                        address_type=address_type,
                        is_favorite=is_favorite,
                        notification_enabled=notification_enabled,
                    )
                    revived = False
        except IntegrityError as e:
            raise DuplicateWatch(user_id, address, network_id) from e

        logger.info(
            f"User {user_id} {'re-added' if revived else 'added'} watch {watch.id} "
            f"({address} on network {network_id})"
        )
        await self.auditor.record(
            "watch_address_add",
            user_id=user_id,
            resource_type="watch_address",
            resource_id=watch.id,
            details={"address": address, "network_id": network_id, "revived": revived},
        )
        return watch

    async def get_watch(self, watch_id: int, include_deleted: bool = False) -> WatchAddress:
        async with self.db.session() as session:
            watch = await LedgerRepository(session).get_watch(watch_id, include_deleted)
        if watch is None:
            raise NotFoundError("WatchAddress", watch_id)
        return watch

    async def update_watch(
        self,
        watch_id: int,
        update: Union[WatchAddressUpdate, Mapping[str, Any]],
    ) -> WatchAddress:
        """Apply the fields set on ``update``. Tags merge unless replace_tags is set."""
        update = parse_update(WatchAddressUpdate, update)
        fields = update.model_fields_set - {"replace_tags"}

        async with self.db.session() as session:
            watch = await LedgerRepository(session).get_watch(watch_id)
            if watch is None:
                raise NotFoundError("WatchAddress", watch_id)

            for name in ("label", "notes"):
                if name in fields:
                    setattr(watch, name, getattr(update, name))
            for name in ("is_favorite", "notification_enabled"):
                if name in fields and getattr(update, name) is not None:
                    setattr(watch, name, getattr(update, name))
            if "tags" in fields:
                if update.replace_tags:
                    watch.tags = watch.tags.replace(update.tags)
                else:
                    watch.tags = watch.tags.merge(update.tags)
            await session.flush()

        await self.auditor.record(
            "watch_address_update",
            user_id=watch.user_id,
            resource_type="watch_address",
            resource_id=watch_id,
            details={"fields": sorted(fields)},
        )
        return watch

    async def remove_watch(self, watch_id: int) -> WatchAddress:
        """Soft delete a watch address. Its balance history is kept.

        Raises:
            NotFoundError: missing or already removed
        """
        async with self.db.session() as session:
            watch = await LedgerRepository(session).get_watch(watch_id)
            if watch is None:
                raise NotFoundError("WatchAddress", watch_id)
            watch.tombstone()

        logger.info(f"Removed watch {watch_id} for user {watch.user_id}")
        await self.auditor.record(
            "watch_address_delete",
            user_id=watch.user_id,
            resource_type="watch_address",
            resource_id=watch_id,
        )
        return watch

    async def list_watches(
        self,
        user_id: int,
        network_id: Optional[int] = None,
        include_favorites_first: bool = True,
        include_deleted: bool = False,
    ) -> list[WatchAddress]:
        """Get a user's watch addresses, favorites first then newest first."""
        async with self.db.session() as session:
            return await LedgerRepository(session).list_watches(
                user_id,
                network_id=network_id,
                favorites_first=include_favorites_first,
                include_deleted=include_deleted,
            )

    async def list_all_active_watches(self, network_id: Optional[int] = None) -> list[WatchAddress]:
        async with self.db.session() as session:
            return await LedgerRepository(session).list_all_active_watches(network_id)

    # Wallet operations
    async def add_wallet(
        self,
        user_id: int,
        address: str,
        wallet_name: str,
        network_id: Optional[int] = None,
        wallet_type: Union[WalletType, str] = WalletType.IMPORTED,
        derivation_path: Optional[str] = None,
        is_primary: bool = False,
    ) -> UserWallet:
        """Register a wallet the user holds (address only, never keys).

        Raises:
            InvalidAddressFormat / UnsupportedNetwork: rejected before any write
            NotFoundError: user missing or closed
            DuplicateWallet: the triple is already an active wallet
        """
        network_id = network_id if network_id is not None else self.settings.default_network_id
        address = normalize_address(address, network_id)
        wallet_type = WalletType(wallet_type).value

        try:
            async with self.locks.hold(("primary", user_id), timeout=self.settings.lock_timeout):
                async with self.db.session() as session:
                    repo = LedgerRepository(session)
                    if await repo.get_user(user_id, for_update=is_primary) is None:
                        raise NotFoundError("User", user_id)

                    existing = await repo.find_wallet(user_id, address, network_id)
                    if existing is not None and not existing.is_deleted:
                        raise DuplicateWallet(user_id, address, network_id)

                    if is_primary:
                        await repo.clear_primary_wallets(user_id)

                    if existing is not None:
                        existing.restore()
                        existing.wallet_name = wallet_name
                        existing.wallet_type = wallet_type
                        existing.derivation_path = derivation_path
                        existing.is_primary = is_primary
                        existing.created_at = utcnow()
                        await session.flush()
                        wallet = existing
                    else:
                        wallet = await repo.create_wallet(
                            user_id=user_id,
                            address=address,
                            network_id=network_id,
                            wallet_name=wallet_name,
                            wallet_type=wallet_type,
                            derivation_path=derivation_path,
                            is_primary=is_primary,
                        )
        except IntegrityError as e:
            raise DuplicateWallet(user_id, address, network_id) from e

        await self.auditor.record(
            "user_wallet_add",
            user_id=user_id,
            resource_type="user_wallet",
            resource_id=wallet.id,
            details={"address": address, "network_id": network_id, "is_primary": is_primary},
        )
        return wallet

    async def get_wallet(self, wallet_id: int, include_deleted: bool = False) -> UserWallet:
        async with self.db.session() as session:
            wallet = await LedgerRepository(session).get_wallet(wallet_id, include_deleted)
        if wallet is None:
            raise NotFoundError("UserWallet", wallet_id)
        return wallet

    async def list_wallets(
        self,
        user_id: int,
        network_id: Optional[int] = None,
        include_deleted: bool = False,
    ) -> list[UserWallet]:
        async with self.db.session() as session:
            return await LedgerRepository(session).list_wallets(
                user_id, network_id=network_id, include_deleted=include_deleted
            )

    async def get_primary_wallet(self, user_id: int) -> Optional[UserWallet]:
        async with self.db.session() as session:
            return await LedgerRepository(session).get_primary_wallet(user_id)

    async def set_primary(self, wallet_id: int) -> UserWallet:
        """Make a wallet the user's only primary wallet.

        Clearing the other wallets and setting this one happen in a single
        transaction, serialized per user.

        Raises:
            NotFoundError: wallet missing or removed
        """
        wallet = await self.get_wallet(wallet_id)
        user_id = wallet.user_id

        async with self.locks.hold(("primary", user_id), timeout=self.settings.lock_timeout):
            async with self.db.session() as session:
                repo = LedgerRepository(session)
                await repo.get_user(user_id, include_deleted=True, for_update=True)
                wallet = await repo.get_wallet(wallet_id)
                if wallet is None:
                    raise NotFoundError("UserWallet", wallet_id)
                cleared = await repo.clear_primary_wallets(user_id)
                wallet.is_primary = True
                await session.flush()

        logger.info(f"Wallet {wallet_id} is now primary for user {user_id} ({cleared} cleared)")
        await self.auditor.record(
            "user_wallet_set_primary",
            user_id=user_id,
            resource_type="user_wallet",
            resource_id=wallet_id,
        )
        return wallet

    async def update_wallet(
        self,
        wallet_id: int,
        update: Union[WalletUpdate, Mapping[str, Any]],
    ) -> UserWallet:
        """Rename a wallet and/or change its primary flag.

        ``is_primary=True`` goes through the same clear-then-set swap as
        set_primary; ``is_primary=False`` just drops the flag.

        Raises:
            ValidationError: unknown field or empty name
            NotFoundError: wallet missing or removed
        """
        update = parse_update(WalletUpdate, update)
        fields = {name for name in update.model_fields_set if getattr(update, name) is not None}
        user_id = (await self.get_wallet(wallet_id)).user_id

        async with self.locks.hold(("primary", user_id), timeout=self.settings.lock_timeout):
            async with self.db.session() as session:
                repo = LedgerRepository(session)
                await repo.get_user(user_id, include_deleted=True, for_update=True)
                wallet = await repo.get_wallet(wallet_id)
                if wallet is None:
                    raise NotFoundError("UserWallet", wallet_id)

                if "wallet_name" in fields:
                    wallet.wallet_name = update.wallet_name
                if "is_primary" in fields:
                    if update.is_primary:
                        await repo.clear_primary_wallets(user_id)
                    wallet.is_primary = update.is_primary
                await session.flush()

        await self.auditor.record(
            "user_wallet_update",
            user_id=user_id,
            resource_type="user_wallet",
            resource_id=wallet_id,
            details={"fields": sorted(fields)},
        )
        return wallet

    async def touch_wallet(self, wallet_id: int) -> UserWallet:
        """Record that a wallet was just used."""
        async with self.db.session() as session:
            wallet = await LedgerRepository(session).get_wallet(wallet_id)
            if wallet is None:
                raise NotFoundError("UserWallet", wallet_id)
            wallet.last_used_at = utcnow()
        return wallet

    async def remove_wallet(self, wallet_id: int) -> UserWallet:
        """Soft delete a wallet. A removed wallet is never primary."""
        async with self.db.session() as session:
            wallet = await LedgerRepository(session).get_wallet(wallet_id)
            if wallet is None:
                raise NotFoundError("UserWallet", wallet_id)
            wallet.tombstone()
            wallet.is_primary = False

        await self.auditor.record(
            "user_wallet_delete",
            user_id=wallet.user_id,
            resource_type="user_wallet",
            resource_id=wallet_id,
        )
        return wallet
