"""Persistence: key-value stores and the learner repository."""
from lessoncore.store.kv import InMemoryStore, KeyValueStore, SQLiteKeyValueStore
from lessoncore.store.repository import LearnerRepository

__all__ = [
    "InMemoryStore",
    "KeyValueStore",
    "SQLiteKeyValueStore",
    "LearnerRepository",
]
