"""Tests for the session manager."""

from datetime import timedelta

import pytest

from watchledger.config import Settings
from watchledger.exceptions import (
    ExpiredError,
    InactiveError,
    NotFoundError,
    RefreshExpired,
    RevokedError,
    SessionExpired,
)
from watchledger.ledger.models import SessionState
from watchledger.ledger.types import utcnow
from watchledger.services import SessionManager


class TestIssueAndValidate:
    """Tests for issuing and checking session tokens."""

    @pytest.mark.asyncio
    async def test_issue_and_validate(self, core, alice):
        session = await core.sessions.issue(alice.id, device_info={"os": "ios"})

        assert session.session_token != session.refresh_token
        assert session.device_info["os"] == "ios"
        assert session.state() == SessionState.ACTIVE
        assert session.refresh_expires_at >= session.expires_at

        user = await core.sessions.validate(session.session_token)
        assert user.id == alice.id

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, core, alice):
        first = await core.sessions.issue(alice.id)
        second = await core.sessions.issue(alice.id)

        assert first.session_token != second.session_token
        assert len(await core.sessions.list_active(alice.id)) == 2

    @pytest.mark.asyncio
    async def test_unknown_token(self, core, alice):
        with pytest.raises(NotFoundError):
            await core.sessions.validate("no-such-token")

    @pytest.mark.asyncio
    async def test_expired_session(self, core, alice):
        session = await core.sessions.issue(alice.id, ttl=timedelta(seconds=-1))

        with pytest.raises(SessionExpired):
            await core.sessions.validate(session.session_token)

    @pytest.mark.asyncio
    async def test_issue_for_inactive_user(self, core, alice):
        await core.identity.set_active(alice.id, False)

        with pytest.raises(InactiveError):
            await core.sessions.issue(alice.id)

    @pytest.mark.asyncio
    async def test_issue_for_unknown_user(self, core):
        with pytest.raises(NotFoundError):
            await core.sessions.issue(999)


class TestRevoke:
    """Tests for logout."""

    @pytest.mark.asyncio
    async def test_revoke(self, core, alice):
        session = await core.sessions.issue(alice.id)

        await core.sessions.revoke(session.session_token)

        with pytest.raises(RevokedError):
            await core.sessions.validate(session.session_token)

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, core, alice):
        session = await core.sessions.issue(alice.id)

        await core.sessions.revoke(session.session_token)
        row = await core.sessions.revoke(session.session_token)

        assert row.is_active is False
        revocations = await core.auditor.list_for_resource("session", session.id)
        assert [log.action for log in revocations].count("session_revoke") == 1

    @pytest.mark.asyncio
    async def test_revoke_unknown(self, core):
        with pytest.raises(NotFoundError):
            await core.sessions.revoke("missing")

    @pytest.mark.asyncio
    async def test_revoke_all(self, core, alice, bob):
        await core.sessions.issue(alice.id)
        await core.sessions.issue(alice.id)
        bob_session = await core.sessions.issue(bob.id)

        count = await core.sessions.revoke_all(alice.id)

        assert count == 2
        assert await core.sessions.list_active(alice.id) == []
        assert (await core.sessions.validate(bob_session.session_token)).id == bob.id

    @pytest.mark.asyncio
    async def test_deactivated_user_sessions_are_revoked(self, core, alice):
        session = await core.sessions.issue(alice.id)

        await core.identity.set_active(alice.id, False)

        with pytest.raises(RevokedError):
            await core.sessions.validate(session.session_token)


class TestRefresh:
    """Tests for session token rotation."""

    @pytest.mark.asyncio
    async def test_refresh_rotates_session_token(self, core, alice):
        session = await core.sessions.issue(alice.id)
        old_token = session.session_token

        refreshed = await core.sessions.refresh(session.refresh_token)

        assert refreshed.id == session.id
        assert refreshed.session_token != old_token
        assert refreshed.refresh_token == session.refresh_token
        assert refreshed.expires_at <= refreshed.refresh_expires_at
        with pytest.raises(NotFoundError):
            await core.sessions.validate(old_token)
        assert (await core.sessions.validate(refreshed.session_token)).id == alice.id

    @pytest.mark.asyncio
    async def test_refresh_revives_expired_session(self, core, alice):
        session = await core.sessions.issue(alice.id, ttl=timedelta(seconds=-1))

        refreshed = await core.sessions.refresh(session.refresh_token)

        assert refreshed.expires_at > utcnow()

    @pytest.mark.asyncio
    async def test_refresh_revoked(self, core, alice):
        session = await core.sessions.issue(alice.id)
        await core.sessions.revoke(session.session_token)

        with pytest.raises(RevokedError):
            await core.sessions.refresh(session.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_unknown(self, core):
        with pytest.raises(NotFoundError):
            await core.sessions.refresh("missing")

    @pytest.mark.asyncio
    async def test_refresh_expired(self, db, core, alice, settings):
        short = Settings(
            database_url=settings.database_url, refresh_ttl_seconds=0, lock_timeout=5.0
        )
        manager = SessionManager(db, core.auditor, short)
        session = await manager.issue(alice.id, ttl=timedelta(seconds=-1))

        with pytest.raises(RefreshExpired):
            await manager.refresh(session.refresh_token)

    def test_expiry_errors_share_a_base(self):
        assert issubclass(SessionExpired, ExpiredError)
        assert issubclass(RefreshExpired, ExpiredError)
        assert issubclass(RevokedError, ExpiredError)


class TestPurge:
    """Tests for the expired session sweep."""

    @pytest.mark.asyncio
    async def test_purge_expired(self, core, alice):
        keep = await core.sessions.issue(alice.id)
        revoked = await core.sessions.issue(alice.id)
        await core.sessions.revoke(revoked.session_token)

        purged = await core.sessions.purge_expired(before=utcnow() + timedelta(seconds=1))

        assert purged == 1
        assert (await core.sessions.validate(keep.session_token)).id == alice.id
        with pytest.raises(NotFoundError):
            await core.sessions.validate(revoked.session_token)

    @pytest.mark.asyncio
    async def test_purge_refresh_expired(self, core, alice):
        await core.sessions.issue(alice.id)

        purged = await core.sessions.purge_expired(before=utcnow() + timedelta(days=30))

        assert purged == 1
        assert await core.sessions.list_active(alice.id) == []
