"""Concrete local/remote store adapters."""

from .memory import InMemoryLocalStore, InMemoryRemoteStore
from .sqlite import SqliteLocalStore

__all__ = ["InMemoryLocalStore", "InMemoryRemoteStore", "SqliteLocalStore"]
