"""Tests for shared column types, networks and configuration."""

from datetime import datetime, timezone

import pytest

from watchledger.config import Settings
from watchledger.exceptions import InvalidAddressFormat, UnsupportedNetwork, ValidationError
from watchledger.ledger.types import StructuredMap, as_utc
from watchledger.networks import get_all_networks, get_network, normalize_address


class TestStructuredMap:
    """Tests for the immutable settings map."""

    def test_merge_overlays_keys(self):
        base = StructuredMap({"email": True, "push": False})

        merged = base.merge({"push": True, "sms": False})

        assert dict(merged) == {"email": True, "push": True, "sms": False}
        assert dict(base) == {"email": True, "push": False}

    def test_replace_discards_keys(self):
        base = StructuredMap({"a": 1})

        assert dict(base.replace({"b": 2})) == {"b": 2}

    def test_non_string_keys_rejected(self):
        with pytest.raises(ValidationError):
            StructuredMap({1: "x"})

    def test_is_read_only(self):
        data = StructuredMap({"a": 1})

        with pytest.raises(TypeError):
            data["a"] = 2  # type: ignore[index]

    def test_empty(self):
        assert len(StructuredMap()) == 0
        assert StructuredMap(None).to_dict() == {}


class TestAsUtc:
    def test_naive_becomes_utc(self):
        value = as_utc(datetime(2024, 1, 1, 12, 0))

        assert value.tzinfo == timezone.utc

    def test_none(self):
        assert as_utc(None) is None


class TestNetworks:
    """Tests for address validation per network."""

    def test_known_networks(self):
        assert get_network(1).symbol == "ETH"
        assert get_network(137).name == "Polygon"
        assert get_network(999) is None
        assert len(get_all_networks()) >= 5

    def test_normalize_lowercases(self):
        address = "0xAbCdEf0000000000000000000000000000000001"

        assert normalize_address(f"  {address} ", 1) == address.lower()

    @pytest.mark.parametrize("address", ["", "0x123", "abcdef" * 7, "0x" + "g" * 40])
    def test_invalid_addresses(self, address):
        with pytest.raises(InvalidAddressFormat):
            normalize_address(address, 1)

    def test_unknown_network(self):
        with pytest.raises(UnsupportedNetwork):
            normalize_address("0x" + "1" * 40, 12345)


class TestSettings:
    """Tests for configuration helpers."""

    def test_redacts_database_password(self):
        settings = Settings(database_url="postgresql+asyncpg://ledger:secret@db:5432/ledger")

        safe = settings.get_safe_dict()

        assert "secret" not in safe["database_url"]
        assert safe["database_url"] == "postgresql+asyncpg://ledger:***@db:5432/ledger"

    def test_is_production(self):
        assert Settings(environment="Production").is_production
        assert not Settings(environment="test").is_production
