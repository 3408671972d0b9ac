"""Storage backends: key/value cache and SQLite audit trail."""

from storage.cache import InMemoryTTLCache, KeyValueCache
from storage.sqlite import SQLiteAuditStore

__all__ = ["InMemoryTTLCache", "KeyValueCache", "SQLiteAuditStore"]
