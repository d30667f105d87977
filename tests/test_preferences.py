"""Tests for the preference store."""

import pytest

from watchledger.contracts import PreferenceUpdate
from watchledger.exceptions import NotFoundError, ValidationError, WatchLedgerError


class TestPreferences:
    """Tests for defaults and partial updates."""

    @pytest.mark.asyncio
    async def test_defaults_created_on_first_access(self, core, alice):
        prefs = await core.preferences.get(alice.id)

        assert prefs.user_id == alice.id
        assert prefs.default_currency == "USD"
        assert prefs.theme == "light"
        assert prefs.language == "en"
        assert dict(prefs.notifications) == {}

        again = await core.preferences.get(alice.id)
        assert again.id == prefs.id

    @pytest.mark.asyncio
    async def test_unknown_user(self, core):
        with pytest.raises(NotFoundError):
            await core.preferences.get(999)

    @pytest.mark.asyncio
    async def test_scalar_fields_replace(self, core, alice):
        prefs = await core.preferences.update(alice.id, {"theme": "dark", "language": "de"})

        assert prefs.theme == "dark"
        assert prefs.language == "de"
        assert prefs.default_currency == "USD"

    @pytest.mark.asyncio
    async def test_maps_merge(self, core, alice):
        await core.preferences.update(
            alice.id, PreferenceUpdate(notifications={"email": True, "push": False})
        )
        prefs = await core.preferences.update(alice.id, {"notifications": {"push": True}})

        assert dict(prefs.notifications) == {"email": True, "push": True}
        stored = await core.preferences.get(alice.id)
        assert dict(stored.notifications) == {"email": True, "push": True}

    @pytest.mark.asyncio
    async def test_rejects_unknown_theme(self, core, alice):
        with pytest.raises(ValidationError) as exc_info:
            await core.preferences.update(alice.id, {"theme": "neon"})

        assert isinstance(exc_info.value, WatchLedgerError)
        assert exc_info.value.field == "theme"
        assert exc_info.value.value == "neon"
        assert (await core.preferences.get(alice.id)).theme == "light"

    @pytest.mark.asyncio
    async def test_rejects_unknown_field(self, core, alice):
        with pytest.raises(ValidationError) as exc_info:
            await core.preferences.update(alice.id, {"font": "serif"})

        assert exc_info.value.field == "font"

    @pytest.mark.asyncio
    async def test_update_is_audited(self, core, alice):
        await core.preferences.update(alice.id, {"default_currency": "EUR"})

        logs = await core.auditor.list_for_user(alice.id)
        assert logs[0].action == "preferences_update"
        assert list(logs[0].details["fields"]) == ["default_currency"]
