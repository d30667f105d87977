"""Identity store: user records and credentials."""

import hmac
import logging

from sqlalchemy.exc import IntegrityError

from watchledger.exceptions import (
    DuplicateEmail,
    DuplicateUsername,
    InactiveError,
    NotFoundError,
    ValidationError,
)
from watchledger.ledger.database import Database
from watchledger.ledger.models import ActivityStatus, User
from watchledger.ledger.repository import LedgerRepository
from watchledger.ledger.types import utcnow
from watchledger.services.auditor import ActivityAuditor

logger = logging.getLogger(__name__)


class IdentityStore:
    """Owns User rows. Password hashing happens upstream; only hash and salt arrive here."""

    def __init__(self, db: Database, auditor: ActivityAuditor):
        self.db = db
        self.auditor = auditor

    async def create_user(
        self, username: str, email: str, password_hash: str, salt: str
    ) -> User:
        """Register a user.

        Raises:
            ValidationError: empty username, email or credentials
            DuplicateUsername: username already taken (including closed accounts)
            DuplicateEmail: email already registered
        """
        username = (username or "").strip()
        email = (email or "").strip().lower()
        if not username:
            raise ValidationError("Username is required", field="username", value=username)
        if not email or "@" not in email:
            raise ValidationError(f"Invalid email: {email!r}", field="email", value=email)
        if not password_hash or not salt:
            raise ValidationError("Password hash and salt are required", field="password_hash")

        try:
            async with self.db.session() as session:
                repo = LedgerRepository(session)
                if await repo.username_exists(username):
                    raise DuplicateUsername(username)
                if await repo.email_exists(email):
                    raise DuplicateEmail(email)
                user = await repo.create_user(username, email, password_hash, salt)
        except IntegrityError as e:
            # Lost a race with a concurrent registration
            message = str(e.orig).lower()
            if "email" in message:
                raise DuplicateEmail(email) from e
            raise DuplicateUsername(username) from e

        logger.info(f"Created user {user.id} ({username})")
        await self.auditor.record(
            "user_register", user_id=user.id, resource_type="user", resource_id=user.id
        )
        return user

    async def get_user(self, user_id: int, include_deleted: bool = False) -> User:
        async with self.db.session() as session:
            user = await LedgerRepository(session).get_user(user_id, include_deleted)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def authenticate(self, identifier: str, password_hash: str) -> User:
        """Check credentials by username or email.

        A wrong password is reported as NotFoundError so callers cannot tell
        which half of the credential was wrong.

        Raises:
            NotFoundError: no such user or hash mismatch
            InactiveError: user exists but is deactivated
        """
        identifier = (identifier or "").strip()
        async with self.db.session() as session:
            repo = LedgerRepository(session)
            user = await repo.get_user_by_identifier(identifier)
            if user is None and "@" in identifier:
                user = await repo.get_user_by_identifier(identifier.lower())

            matched = user is not None and hmac.compare_digest(
                user.password_hash.encode(), (password_hash or "").encode()
            )
            if matched and user.is_active:
                user.last_login_at = utcnow()

        if not matched:
            await self.auditor.record(
                "user_login",
                user_id=user.id if user else None,
                details={"identifier": identifier},
                status=ActivityStatus.FAILED,
            )
            raise NotFoundError("User", identifier)
        if not user.is_active:
            await self.auditor.record(
                "user_login",
                user_id=user.id,
                details={"reason": "inactive"},
                status=ActivityStatus.FAILED,
            )
            raise InactiveError(user.id)

        await self.auditor.record(
            "user_login", user_id=user.id, resource_type="user", resource_id=user.id
        )
        return user

    async def set_active(self, user_id: int, active: bool) -> User:
        """Activate or deactivate an account without deleting it."""
        async with self.db.session() as session:
            repo = LedgerRepository(session)
            user = await repo.get_user(user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            user.is_active = active
            if not active:
                await repo.deactivate_user_sessions(user_id)

        action = "user_activate" if active else "user_deactivate"
        await self.auditor.record(
            action, user_id=user_id, resource_type="user", resource_id=user_id
        )
        return user

    async def soft_delete(self, user_id: int) -> User:
        """Close an account. The row and its history stay for audit.

        The user's sessions are revoked in the same transaction.
        """
        async with self.db.session() as session:
            repo = LedgerRepository(session)
            user = await repo.get_user(user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            user.tombstone()
            user.is_active = False
            revoked = await repo.deactivate_user_sessions(user_id)

        logger.info(f"Soft-deleted user {user_id} ({revoked} sessions revoked)")
        await self.auditor.record(
            "user_delete",
            user_id=user_id,
            resource_type="user",
            resource_id=user_id,
            details={"sessions_revoked": revoked},
        )
        return user

