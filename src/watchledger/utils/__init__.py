"""Utility modules for watchledger."""

from watchledger.utils.locks import LockRegistry, stream_key

__all__ = ["LockRegistry", "stream_key"]
