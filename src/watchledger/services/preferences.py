"""Per-user preferences, created on first access."""

import logging
from typing import Any, Mapping, Optional, Union

from sqlalchemy.exc import IntegrityError

from watchledger.config import Settings, get_settings
from watchledger.contracts import PreferenceUpdate, parse_update
from watchledger.exceptions import NotFoundError
from watchledger.ledger.database import Database
from watchledger.ledger.models import UserPreference
from watchledger.ledger.repository import LedgerRepository
from watchledger.services.auditor import ActivityAuditor

logger = logging.getLogger(__name__)

SCALAR_FIELDS = ("default_currency", "theme", "language")
MAP_FIELDS = ("notifications", "display_settings", "privacy_settings")


class PreferenceStore:
    def __init__(
        self,
        db: Database,
        auditor: ActivityAuditor,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.auditor = auditor
        self.settings = settings or get_settings()

    async def _get_or_create(self, repo: LedgerRepository, user_id: int) -> UserPreference:
        preference = await repo.get_preference(user_id)
        if preference is None:
            if await repo.get_user(user_id) is None:
                raise NotFoundError("User", user_id)
            preference = await repo.create_preference(
                user_id,
                default_currency=self.settings.default_currency,
                theme=self.settings.default_theme,
                language=self.settings.default_language,
            )
            logger.info(f"Created default preferences for user {user_id}")
        return preference

    async def get(self, user_id: int) -> UserPreference:
        """Get a user's preferences, creating defaults on first access."""
        try:
            async with self.db.session() as session:
                return await self._get_or_create(LedgerRepository(session), user_id)
        except IntegrityError:
            # A concurrent first access created the row
            async with self.db.session() as session:
                return await LedgerRepository(session).get_preference(user_id)

    async def update(
        self,
        user_id: int,
        partial: Union[PreferenceUpdate, Mapping[str, Any]],
    ) -> UserPreference:
        """Apply a partial update.

        Scalar fields replace; settings maps merge only the supplied keys.

        Raises:
            ValidationError: unknown field or out-of-range value
            NotFoundError: user missing or closed
        """
        partial = parse_update(PreferenceUpdate, partial)
        fields = partial.model_fields_set

        await self.get(user_id)
        async with self.db.session() as session:
            preference = await LedgerRepository(session).get_preference(user_id)
            for name in SCALAR_FIELDS:
                value = getattr(partial, name)
                if name in fields and value is not None:
                    setattr(preference, name, value)
            for name in MAP_FIELDS:
                value = getattr(partial, name)
                if name in fields and value is not None:
                    setattr(preference, name, getattr(preference, name).merge(value))
            await session.flush()

        await self.auditor.record(
            "preferences_update",
            user_id=user_id,
            resource_type="user_preference",
            resource_id=preference.id,
            details={"fields": sorted(fields)},
        )
        return preference
