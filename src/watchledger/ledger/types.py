"""Column types and value containers shared by the ledger models."""

from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.types import TypeDecorator

from watchledger.exceptions import ValidationError


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StructuredMap(Mapping[str, Any]):
    """Immutable string-keyed mapping stored in JSON columns.

    Updates are explicit: ``merge()`` overlays the supplied keys onto the
    existing ones, ``replace()`` discards them. Both return a new map.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Optional[Mapping[str, Any]] = None):
        items = dict(data or {})
        for key in items:
            if not isinstance(key, str):
                raise ValidationError(
                    f"Map keys must be strings, got {key!r}", field="key", value=key
                )
        self._data = items

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"StructuredMap({self._data!r})"

    def merge(self, partial: Optional[Mapping[str, Any]]) -> "StructuredMap":
        """Return a copy with the keys of ``partial`` set on top of this map."""
        merged = dict(self._data)
        merged.update(StructuredMap(partial)._data)
        return StructuredMap(merged)

    def replace(self, new: Optional[Mapping[str, Any]]) -> "StructuredMap":
        """Return a map holding only ``new``."""
        return StructuredMap(new)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)


class StructuredMapType(TypeDecorator):
    """Persist a StructuredMap as a JSON object."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, StructuredMap):
            value = StructuredMap(value)
        return value.to_dict()

    def process_result_value(self, value, dialect):
        return StructuredMap(value or {})


class DecimalString(TypeDecorator):
    """Store decimals as canonical strings so precision survives any backend."""

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format(Decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back in UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


def empty_map() -> StructuredMap:
    """Column default for JSON map columns."""
    return StructuredMap()
