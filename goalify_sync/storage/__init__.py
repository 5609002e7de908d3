"""Storage module - local records and key-value state."""

from .kv_store import KeyValueStore, MemoryKeyValueStore, SQLiteKeyValueStore
from .record_store import RecordStore

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SQLiteKeyValueStore",
    "RecordStore",
]
