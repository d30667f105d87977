"""Tests for the activity auditor."""

import logging

import pytest

from watchledger.ledger.models import ActivityStatus
from watchledger.services import ActivityAuditor


class BrokenDatabase:
    """Database handle whose sessions always fail."""

    def session(self):
        raise RuntimeError("audit store unavailable")


class TestActivityAuditor:
    """Tests for audit writes and reads."""

    @pytest.mark.asyncio
    async def test_record_and_list(self, core, alice):
        entry = await core.auditor.record(
            "wallet_export",
            user_id=alice.id,
            resource_type="user",
            resource_id=alice.id,
            details={"format": "csv"},
            ip_address="10.0.0.1",
        )

        assert entry.id is not None
        assert entry.resource_id == str(alice.id)
        assert entry.status == ActivityStatus.SUCCESS.value

        logs = await core.auditor.list_for_user(alice.id)
        assert logs[0].action == "wallet_export"
        assert logs[0].details["format"] == "csv"

    @pytest.mark.asyncio
    async def test_system_entry_without_user(self, core):
        entry = await core.auditor.record("session_purge", details={"purged": 0})

        assert entry.user_id is None

    @pytest.mark.asyncio
    async def test_list_for_resource_oldest_first(self, core, watch):
        await core.registry.update_watch(watch.id, {"label": "renamed"})
        await core.registry.remove_watch(watch.id)

        logs = await core.auditor.list_for_resource("watch_address", watch.id)
        assert [log.action for log in logs] == [
            "watch_address_add",
            "watch_address_update",
            "watch_address_delete",
        ]

    @pytest.mark.asyncio
    async def test_degraded_store_never_raises(self, caplog):
        auditor = ActivityAuditor(BrokenDatabase())

        with caplog.at_level(logging.ERROR, logger="watchledger.ops"):
            result = await auditor.record("user_login", user_id=1)

        assert result is None
        assert auditor.degraded_count == 1
        assert "user_login" in caplog.text

    @pytest.mark.asyncio
    async def test_business_write_survives_audit_failure(self, core, alice):
        core.registry.auditor = ActivityAuditor(BrokenDatabase())

        watch = await core.registry.add_watch(alice.id, "0x" + "4" * 40)

        assert watch.id is not None
        assert [w.id for w in await core.registry.list_watches(alice.id)] == [watch.id]
        assert core.registry.auditor.degraded_count == 1
