"""Watch-address registry and balance ledger core."""

__version__ = "0.1.0"
