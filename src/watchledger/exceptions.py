"""Error taxonomy for the address/balance ledger.

Callers can branch on the base classes (ValidationError, ConflictError, ...)
or on the concrete subclass when they need to know which invariant failed.
"""

from typing import Any, Optional


class WatchLedgerError(Exception):
    """Base class for all ledger errors."""

    pass


# ======================
# Validation
# ======================


class ValidationError(WatchLedgerError):
    """Input rejected before any row was touched."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(message)


class InvalidAddressFormat(ValidationError):
    """Address does not match the network's address format."""

    def __init__(self, address: str, network_id: int):
        self.network_id = network_id
        super().__init__(
            f"Invalid address format for network {network_id}: {address!r}",
            field="address",
            value=address,
        )


class UnsupportedNetwork(ValidationError):
    """Network id is not in the network registry."""

    def __init__(self, network_id: int):
        self.network_id = network_id
        super().__init__(
            f"Unsupported network: {network_id}", field="network_id", value=network_id
        )


class InvalidBalance(ValidationError):
    """Balance is not a finite, non-negative decimal."""

    def __init__(self, value: Any, reason: str = "not a valid decimal"):
        super().__init__(f"Invalid balance {value!r}: {reason}", field="balance", value=value)


# ======================
# Conflicts
# ======================


class ConflictError(WatchLedgerError):
    """Uniqueness invariant violated."""

    def __init__(self, message: str, key: Optional[tuple] = None):
        self.key = key
        super().__init__(message)


class DuplicateUsername(ConflictError):
    def __init__(self, username: str):
        super().__init__(f"Username already taken: {username}", key=("username", username))


class DuplicateEmail(ConflictError):
    def __init__(self, email: str):
        super().__init__(f"Email already registered: {email}", key=("email", email))


class DuplicateWatch(ConflictError):
    """(user, address, network) already watched."""

    def __init__(self, user_id: int, address: str, network_id: int):
        super().__init__(
            f"User {user_id} already watches {address} on network {network_id}",
            key=(user_id, address, network_id),
        )


class DuplicateWallet(ConflictError):
    """(user, address, network) already registered as a wallet."""

    def __init__(self, user_id: int, address: str, network_id: int):
        super().__init__(
            f"User {user_id} already has wallet {address} on network {network_id}",
            key=(user_id, address, network_id),
        )


# ======================
# Lookup / state
# ======================


class NotFoundError(WatchLedgerError):
    """Requested record does not exist (or is tombstoned)."""

    def __init__(self, resource: str, identifier: Any = None):
        self.resource = resource
        self.identifier = identifier
        if identifier is None:
            super().__init__(f"{resource} not found")
        else:
            super().__init__(f"{resource} {identifier} not found")


class InactiveError(WatchLedgerError):
    """User exists but has been deactivated."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} is inactive")


class ExpiredError(WatchLedgerError):
    """Credential existed but can no longer be used."""

    pass


class SessionExpired(ExpiredError):
    pass


class RefreshExpired(ExpiredError):
    pass


class RevokedError(ExpiredError):
    """Session was explicitly revoked (logout, account closure)."""

    pass


# ======================
# Infrastructure
# ======================


class TransientStoreError(WatchLedgerError):
    """I/O failure against the durable store. Safe to retry."""

    pass


class LockTimeoutError(TransientStoreError):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class AuditDegraded(WatchLedgerError):
    """Audit write failed. Logged on the ops channel, never raised to callers."""

    pass


class ChainReadError(WatchLedgerError):
    """Chain reader could not fetch a balance (RPC down, bad response)."""

    def __init__(self, message: str, network_id: Optional[int] = None):
        self.network_id = network_id
        super().__init__(message)
