"""Session manager: issue, validate, refresh and revoke login sessions.

State per session: created -> active -> {expired, revoked}. Expired rows are
left in place; ``purge_expired`` is the out-of-band sweep that removes them.
"""

import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Union

from watchledger.config import Settings, get_settings
from watchledger.exceptions import (
    InactiveError,
    NotFoundError,
    RefreshExpired,
    RevokedError,
    SessionExpired,
)
from watchledger.ledger.database import Database
from watchledger.ledger.models import SessionState, User, UserSession
from watchledger.ledger.repository import LedgerRepository
from watchledger.ledger.types import utcnow
from watchledger.services.auditor import ActivityAuditor

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32

# Compared against when a token is unknown so both paths do the same work
_PLACEHOLDER_TOKEN = secrets.token_urlsafe(TOKEN_BYTES)


def generate_token() -> str:
    """Opaque URL-safe token with 256 bits of entropy."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def _as_timedelta(ttl: Union[timedelta, int, float, None], default_seconds: int) -> timedelta:
    if ttl is None:
        return timedelta(seconds=default_seconds)
    if isinstance(ttl, timedelta):
        return ttl
    return timedelta(seconds=ttl)


class SessionManager:
    """Issues and checks session tokens for users."""

    def __init__(
        self,
        db: Database,
        auditor: ActivityAuditor,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.auditor = auditor
        self.settings = settings or get_settings()

    async def issue(
        self,
        user_id: int,
        device_info: Optional[Mapping[str, Any]] = None,
        ttl: Union[timedelta, int, float, None] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UserSession:
        """Create a session with fresh session and refresh tokens.

        Args:
            user_id: Owner of the session
            device_info: Free-form device metadata
            ttl: Session lifetime (timedelta or seconds); defaults to settings

        Raises:
            NotFoundError: user missing or closed
            InactiveError: user deactivated
        """
        now = utcnow()
        session_ttl = _as_timedelta(ttl, self.settings.session_ttl_seconds)
        refresh_ttl = max(session_ttl, timedelta(seconds=self.settings.refresh_ttl_seconds))

        async with self.db.session() as session:
            repo = LedgerRepository(session)
            user = await repo.get_user(user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            if not user.is_active:
                raise InactiveError(user_id)

            user_session = await repo.create_session(
                user_id=user_id,
                session_token=generate_token(),
                refresh_token=generate_token(),
                expires_at=now + session_ttl,
                refresh_expires_at=now + refresh_ttl,
                device_info=device_info,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        logger.info(f"Issued session {user_session.id} for user {user_id}")
        await self.auditor.record(
            "session_issue",
            user_id=user_id,
            resource_type="session",
            resource_id=user_session.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return user_session

    async def validate(self, session_token: str) -> User:
        """Resolve a session token to its user.

        Unknown, revoked and expired tokens all take the same path through
        the store (one session lookup, one user lookup, one constant-time
        compare) before the outcome is decided.

        Raises:
            NotFoundError: token never existed
            RevokedError: session revoked, or its user closed/deactivated
            SessionExpired: session past its expiry
        """
        presented = session_token or ""
        async with self.db.session() as session:
            repo = LedgerRepository(session)
            row = await repo.get_session_by_token(presented)
            user = await repo.get_user(row.user_id if row is not None else 0)

        stored = row.session_token if row is not None else _PLACEHOLDER_TOKEN
        token_matches = hmac.compare_digest(stored.encode(), presented.encode())
        state = row.state(utcnow()) if row is not None else None
        user_usable = user is not None and user.is_active

        if row is None or not token_matches:
            raise NotFoundError("Session")
        if state == SessionState.REVOKED or not user_usable:
            raise RevokedError(f"Session {row.id} has been revoked")
        if state == SessionState.EXPIRED:
            raise SessionExpired(f"Session {row.id} expired at {row.expires_at.isoformat()}")
        return user

    async def revoke(self, session_token: str) -> UserSession:
        """Deactivate a session. Revoking twice is a no-op.

        Raises:
            NotFoundError: token never existed
        """
        async with self.db.session() as session:
            repo = LedgerRepository(session)
            row = await repo.get_session_by_token(session_token or "")
            if row is None:
                raise NotFoundError("Session")
            changed = row.is_active
            row.is_active = False

        if changed:
            logger.info(f"Revoked session {row.id} for user {row.user_id}")
            await self.auditor.record(
                "session_revoke", user_id=row.user_id, resource_type="session", resource_id=row.id
            )
        return row

    async def revoke_all(self, user_id: int) -> int:
        """Revoke every active session of a user (logout everywhere)."""
        async with self.db.session() as session:
            count = await LedgerRepository(session).deactivate_user_sessions(user_id)

        await self.auditor.record(
            "session_revoke_all",
            user_id=user_id,
            resource_type="user",
            resource_id=user_id,
            details={"sessions_revoked": count},
        )
        return count

    async def refresh(self, refresh_token: str) -> UserSession:
        """Rotate the session token of a refresh-token family.

        The refresh token is kept; the session gets a new session token and a
        new expiry.

        Raises:
            NotFoundError: refresh token never existed
            RevokedError: the family was revoked
            RefreshExpired: the refresh token is past its lifetime
        """
        now = utcnow()
        async with self.db.session() as session:
            repo = LedgerRepository(session)
            row = await repo.get_session_by_refresh_token(refresh_token or "")
            if row is None:
                raise NotFoundError("Refresh token")
            if not row.is_active:
                raise RevokedError(f"Session {row.id} has been revoked")
            if row.refresh_expires_at <= now:
                raise RefreshExpired(
                    f"Refresh token for session {row.id} expired at "
                    f"{row.refresh_expires_at.isoformat()}"
                )

            row.session_token = generate_token()
            row.expires_at = min(
                now + timedelta(seconds=self.settings.session_ttl_seconds),
                row.refresh_expires_at,
            )
            await session.flush()

        await self.auditor.record(
            "session_refresh", user_id=row.user_id, resource_type="session", resource_id=row.id
        )
        return row

    async def list_active(self, user_id: int) -> list[UserSession]:
        async with self.db.session() as session:
            return await LedgerRepository(session).get_active_sessions(user_id)

    async def purge_expired(self, before: Optional[datetime] = None) -> int:
        """Physically delete revoked sessions and sessions whose refresh token expired."""
        cutoff = before or utcnow()
        async with self.db.session() as session:
            count = await LedgerRepository(session).delete_expired_sessions(cutoff)

        logger.info(f"Purged {count} expired sessions (cutoff {cutoff.isoformat()})")
        await self.auditor.record(
            "session_purge", resource_type="session", details={"purged": count}
        )
        return count
