from .base import SnapshotTableStore, StoreTransaction
from .factory import create_store
from .memory import InMemorySnapshotTableStore
from .sql import SQLSnapshotTableStore, build_tables

__all__ = [
    "SnapshotTableStore",
    "StoreTransaction",
    "InMemorySnapshotTableStore",
    "SQLSnapshotTableStore",
    "build_tables",
    "create_store",
]
