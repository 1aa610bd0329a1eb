"""Caches and persistence adapters."""

from .snapshot_store import InMemoryStore, JsonDirectoryStore, KeyValueStore, SnapshotRepository
from .symbol_store import StoreStats, SymbolStore

__all__ = [
    "InMemoryStore",
    "JsonDirectoryStore",
    "KeyValueStore",
    "SnapshotRepository",
    "StoreStats",
    "SymbolStore",
]
