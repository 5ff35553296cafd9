"""
Storage collaborators for decision chains.

- KeyValueStore: get / conditional put / list contract
- InMemoryKeyValueStore: development and tests
- SqlKeyValueStore: PostgreSQL / SQLite via async SQLAlchemy
"""

from logibrew.storage.base import KeyValueStore, StoredValue
from logibrew.storage.memory import InMemoryKeyValueStore
from logibrew.storage.sql import SqlKeyValueStore

__all__ = [
    "KeyValueStore",
    "StoredValue",
    "InMemoryKeyValueStore",
    "SqlKeyValueStore",
]
