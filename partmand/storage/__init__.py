"""
Storage backends and partition catalog stores.
"""

from .interfaces import CatalogStore, StorageBackend
from .sqlite_backend import SQLiteCatalogStore, SQLiteStorageBackend
from .postgres_backend import PostgresCatalogStore, PostgresConnectionManager, PostgresStorageBackend

__all__ = [
    'CatalogStore',
    'StorageBackend',
    'SQLiteCatalogStore',
    'SQLiteStorageBackend',
    'PostgresCatalogStore',
    'PostgresConnectionManager',
    'PostgresStorageBackend',
]
