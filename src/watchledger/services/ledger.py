"""Balance ledger: append-only observation log plus the cached native balance.

A stream is the sequence of observations for one (watch address, token)
pair; ``token_address=None`` is the native asset. Within a stream rows are
ordered newest first by block number, then by insertion. The native stream's
head is mirrored in ``WatchAddress.balance_cache``; the cache is only ever
written in the same transaction that appends the row becoming the new head,
so the two cannot diverge.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Protocol

from sqlalchemy.exc import IntegrityError

from watchledger.config import Settings, get_settings
from watchledger.exceptions import InvalidBalance, NotFoundError, ValidationError
from watchledger.ledger.database import Database
from watchledger.ledger.models import AddressBalanceHistory, WatchAddress
from watchledger.ledger.repository import LedgerRepository
from watchledger.networks import normalize_token_address
from watchledger.services.auditor import ActivityAuditor
from watchledger.utils.locks import LockRegistry, stream_key

logger = logging.getLogger(__name__)


@dataclass
class BalanceChange:
    """Event handed to the notifier when a cached native balance moves."""

    watch_address_id: int
    user_id: int
    address: str
    network_id: int
    previous: Optional[Decimal]
    current: Decimal
    block_number: Optional[int]
    recorded_at: datetime


class Notifier(Protocol):
    """Consumer of balance-change events (push, email, webhooks...)."""

    async def notify(self, change: BalanceChange) -> None: ...


def parse_balance(value: Any) -> Decimal:
    """Parse an observed balance.

    Accepts decimal strings, ints and Decimals. Floats are refused because
    they cannot carry the precision token balances need.

    Raises:
        InvalidBalance: non-numeric, non-finite or negative
    """
    if value is None or isinstance(value, (bool, float)):
        raise InvalidBalance(value, "expected a decimal string, int or Decimal")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidBalance(value)
    if not amount.is_finite():
        raise InvalidBalance(value, "not finite")
    if amount < 0:
        raise InvalidBalance(value, "negative balances are not allowed")
    return amount


def _check_block_number(block_number: Optional[int]) -> None:
    if block_number is None:
        return
    if isinstance(block_number, bool) or not isinstance(block_number, int) or block_number < 0:
        raise ValidationError(
            f"Invalid block number: {block_number!r}", field="block_number", value=block_number
        )


class BalanceLedger:
    """Records balance observations and serves balance reads."""

    def __init__(
        self,
        db: Database,
        auditor: ActivityAuditor,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.auditor = auditor
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.locks = LockRegistry()

    async def record_observation(
        self,
        watch_address_id: int,
        balance: Any,
        token_address: Optional[str] = None,
        block_number: Optional[int] = None,
        token_symbol: Optional[str] = None,
    ) -> AddressBalanceHistory:
        """Append an observation to a stream.

        - An observation for a block the stream already holds is a no-op and
          returns the row recorded for that block. The store enforces this
          with a unique index, so writers in other processes are covered too.
        - Otherwise a history row is appended. If it becomes the head of the
          native stream, the cached balance and last-activity timestamp are
          updated in the same transaction. A late observation (lower block
          than the head) is kept as history but never moves the cache.
        - Unnumbered observations sort after numbered ones. Once a stream
          holds a numbered observation, a refresh without a block number is
          stored as history only and does not update the cache.

        Auditing and notification run after the stream is released.

        Raises:
            InvalidBalance / ValidationError: rejected before any write
            NotFoundError: watch address missing or removed
            LockTimeoutError: stream busy longer than the configured timeout
        """
        amount = parse_balance(balance)
        _check_block_number(block_number)
        lock_token = token_address.strip().lower() if token_address else None

        try:
            async with self.locks.hold(
                stream_key(watch_address_id, lock_token),
                timeout=self.settings.lock_timeout,
                operation="record_observation",
            ):
                async with self.db.session() as session:
                    repo = LedgerRepository(session)
                    watch = await repo.get_watch(watch_address_id, for_update=True)
                    if watch is None:
                        raise NotFoundError("WatchAddress", watch_address_id)
                    token = normalize_token_address(token_address, watch.network_id)

                    if block_number is not None:
                        existing = await repo.get_history_at_block(
                            watch_address_id, token, block_number
                        )
                        if existing is not None:
                            logger.debug(
                                f"Observation for watch {watch_address_id} at block "
                                f"{block_number} already recorded"
                            )
                            return existing

                    row = await repo.add_history(
                        watch_address_id=watch_address_id,
                        balance=amount,
                        token_address=token,
                        token_symbol=token_symbol,
                        block_number=block_number,
                    )
                    head = await repo.get_latest_history(watch_address_id, token)
                    is_head = head is not None and head.id == row.id

                    previous = watch.balance_cache
                    cache_updated = token is None and is_head
                    if cache_updated:
                        watch.balance_cache = amount
                        watch.last_activity_at = row.recorded_at
                    await session.flush()
        except IntegrityError:
            if block_number is None:
                raise
            existing = await self._recorded_at_block(watch_address_id, token_address, block_number)
            if existing is None:
                raise
            logger.debug(
                f"Observation for watch {watch_address_id} at block {block_number} "
                f"recorded concurrently by another writer"
            )
            return existing

        if not is_head:
            logger.info(
                f"Late observation for watch {watch_address_id} "
                f"(block {block_number}) kept as history only"
            )

        await self.auditor.record(
            "balance_recorded",
            user_id=watch.user_id,
            resource_type="watch_address",
            resource_id=watch_address_id,
            details={
                "history_id": row.id,
                "balance": str(amount),
                "previous": str(previous) if cache_updated and previous is not None else None,
                "token_address": token,
                "block_number": block_number,
                "cache_updated": cache_updated,
            },
        )

        if cache_updated and previous != amount:
            await self._notify(watch, previous, row)

        return row

    async def _recorded_at_block(
        self, watch_address_id: int, token_address: Optional[str], block_number: int
    ) -> Optional[AddressBalanceHistory]:
        async with self.db.session() as session:
            repo = LedgerRepository(session)
            watch = await repo.get_watch(watch_address_id, include_deleted=True)
            if watch is None:
                return None
            token = normalize_token_address(token_address, watch.network_id)
            return await repo.get_history_at_block(watch_address_id, token, block_number)

    async def _notify(
        self,
        watch: WatchAddress,
        previous: Optional[Decimal],
        row: AddressBalanceHistory,
    ) -> None:
        if self.notifier is None or not watch.notification_enabled:
            return
        change = BalanceChange(
            watch_address_id=watch.id,
            user_id=watch.user_id,
            address=watch.address,
            network_id=watch.network_id,
            previous=previous,
            current=row.balance,
            block_number=row.block_number,
            recorded_at=row.recorded_at,
        )
        try:
            await self.notifier.notify(change)
        except Exception as e:
            logger.error(f"Notifier failed for watch {watch.id}: {e}")

    async def latest_balance(
        self, watch_address_id: int, token_address: Optional[str] = None
    ) -> Decimal:
        """Current balance of a stream.

        Native balances come from the cache, token balances from the newest
        history row. Removed watch addresses remain readable.

        Raises:
            NotFoundError: unknown watch address or no observation yet
        """
        async with self.db.session() as session:
            repo = LedgerRepository(session)
            watch = await repo.get_watch(watch_address_id, include_deleted=True)
            if watch is None:
                raise NotFoundError("WatchAddress", watch_address_id)

            token = normalize_token_address(token_address, watch.network_id)
            if token is None:
                if watch.balance_cache is None:
                    raise NotFoundError("Balance", watch_address_id)
                return watch.balance_cache

            head = await repo.get_latest_history(watch_address_id, token)
        if head is None:
            raise NotFoundError("Balance", f"{watch_address_id}/{token}")
        return head.balance

    async def history(
        self,
        watch_address_id: int,
        token_address: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[AddressBalanceHistory]:
        """Observations of a stream, newest first.

        Pages are restartable: pass ``offset + len(page)`` to continue.
        Removed watch addresses remain readable.

        Raises:
            NotFoundError: unknown watch address
            ValidationError: non-positive limit or negative offset
        """
        limit = self.settings.history_page_size if limit is None else limit
        if limit <= 0:
            raise ValidationError(f"Invalid limit: {limit}", field="limit", value=limit)
        if offset < 0:
            raise ValidationError(f"Invalid offset: {offset}", field="offset", value=offset)
        limit = min(limit, self.settings.max_history_page_size)

        async with self.db.session() as session:
            repo = LedgerRepository(session)
            watch = await repo.get_watch(watch_address_id, include_deleted=True)
            if watch is None:
                raise NotFoundError("WatchAddress", watch_address_id)
            token = normalize_token_address(token_address, watch.network_id)
            return await repo.get_history(
                watch_address_id, token, since=since, limit=limit, offset=offset
            )
