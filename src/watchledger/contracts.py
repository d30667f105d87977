"""Input contracts for partial updates.

Only fields the caller actually set are applied (``model_fields_set``), so
``None`` can still be used to clear a nullable column.
"""

from typing import Any, Literal, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as ContractError

from watchledger.exceptions import ValidationError

UpdateT = TypeVar("UpdateT", bound=BaseModel)


class WatchAddressUpdate(BaseModel):
    """Editable attributes of a watch address."""

    model_config = ConfigDict(extra="forbid")

    label: Optional[str] = Field(None, max_length=100, description="Display label")
    notes: Optional[str] = Field(None, description="Free-form notes")
    is_favorite: Optional[bool] = Field(None, description="Pin to the top of listings")
    notification_enabled: Optional[bool] = Field(
        None, description="Emit balance-change notifications"
    )
    tags: Optional[dict[str, Any]] = Field(None, description="Tags to merge (or replace)")
    replace_tags: bool = Field(
        default=False, description="Replace the tag map instead of merging into it"
    )


class PreferenceUpdate(BaseModel):
    """Partial update of a user's preferences.

    Scalar fields replace; the three settings maps are merged key by key.
    """

    model_config = ConfigDict(extra="forbid")

    default_currency: Optional[str] = Field(None, min_length=3, max_length=10)
    theme: Optional[Literal["light", "dark", "auto"]] = None
    language: Optional[str] = Field(None, min_length=2, max_length=10)
    notifications: Optional[dict[str, Any]] = None
    display_settings: Optional[dict[str, Any]] = None
    privacy_settings: Optional[dict[str, Any]] = None


class WalletUpdate(BaseModel):
    """Editable attributes of a user wallet."""

    model_config = ConfigDict(extra="forbid")

    wallet_name: Optional[str] = Field(None, min_length=1, max_length=100)
    is_primary: Optional[bool] = Field(None, description="Make (or stop being) the primary wallet")


def parse_update(contract: type[UpdateT], data: Union[UpdateT, Mapping[str, Any]]) -> UpdateT:
    """Validate a partial update against its contract.

    Raises:
        ValidationError: first offending field, with the rejected input
    """
    if isinstance(data, contract):
        return data
    try:
        return contract.model_validate(dict(data))
    except ContractError as e:
        error = e.errors()[0]
        field = str(error["loc"][0]) if error["loc"] else None
        raise ValidationError(
            f"Invalid {field or 'update'}: {error['msg']}",
            field=field,
            value=error.get("input"),
        ) from e
