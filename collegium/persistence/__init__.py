"""
Persistence module: the entity store adapter and its SQLite backing.
"""

from .database import DatabaseManager, SQLiteDatabase
from .store import (
    EntityStore, StoreSession, InMemoryEntityStore, SQLiteEntityStore, StoreFactory,
)

__all__ = [
    "DatabaseManager",
    "SQLiteDatabase",
    "EntityStore",
    "StoreSession",
    "InMemoryEntityStore",
    "SQLiteEntityStore",
    "StoreFactory",
]
