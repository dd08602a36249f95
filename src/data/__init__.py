"""Data layer - models, local persistence, and schema migrations."""

from .errors import MigrationError, NetworkError, OfflineCacheError, StorageError
from .migrations import CURRENT_SCHEMA_VERSION, MIGRATIONS, MigrationRunner, MigrationStep, migrate_database
from .models import (
    CacheHealth,
    CacheRecord,
    CacheStats,
    EntityType,
    OperationType,
    PendingOperation,
    SyncMetadata,
    SyncStatus,
)
from .persistence import LocalStore, get_data_dir

__all__ = [
    "LocalStore",
    "get_data_dir",
    "migrate_database",
    "MigrationRunner",
    "MigrationStep",
    "MIGRATIONS",
    "CURRENT_SCHEMA_VERSION",
    "CacheRecord",
    "CacheStats",
    "CacheHealth",
    "EntityType",
    "OperationType",
    "PendingOperation",
    "SyncMetadata",
    "SyncStatus",
    "OfflineCacheError",
    "StorageError",
    "MigrationError",
    "NetworkError",
]
