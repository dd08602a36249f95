"""Cache manager for offline reference data.

Preloads providers and clients from the backend into the local store,
evicts stale entries, and reports stats and health for diagnostics.
Every public operation is best-effort: network and storage failures are
logged and turned into empty results, never raised to the caller.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..data.errors import NetworkError, StorageError
from ..data.migrations import CURRENT_SCHEMA_VERSION
from ..data.models import (
    CacheHealth,
    CacheRecord,
    CacheStats,
    EntityType,
    SyncStatus,
    parse_iso,
    utcnow,
)
from ..data.persistence import LocalStore
from ..remote.base import EntitySource

# Eviction policy
RETENTION_PERIOD = timedelta(days=7)
DELETED_RETENTION_PERIOD = timedelta(days=30)

# Health thresholds
PENDING_OPERATIONS_THRESHOLD = 500
MAX_RETRIES = 3
TEMP_ENTITY_MAX_AGE = timedelta(days=7)

SYNC_KEY = "sync"
TRACKED_TYPES = (EntityType.PROVIDER, EntityType.CLIENT)


def preload_key(entity_type: EntityType) -> str:
    return f"{EntityType(entity_type).resource}_preload"


def _log(msg: str) -> None:
    print(f"[cache] {msg}", flush=True)


class CacheManager:
    """Coordinates preload, cleanup, stats and health over a LocalStore.

    Args:
        store: Migrated local store
        sources: Entity sources keyed by entity type
        is_online: Connectivity check, consulted before any network call
    """

    def __init__(
        self,
        store: LocalStore,
        sources: Iterable[EntitySource] = (),
        is_online: Callable[[], bool] = lambda: True,
        *,
        retention: timedelta = RETENTION_PERIOD,
        deleted_retention: timedelta = DELETED_RETENTION_PERIOD,
        pending_threshold: int = PENDING_OPERATIONS_THRESHOLD,
        max_retries: int = MAX_RETRIES,
        temp_entity_max_age: timedelta = TEMP_ENTITY_MAX_AGE,
        expected_schema_version: int = CURRENT_SCHEMA_VERSION,
    ):
        self.store = store
        self.sources: Dict[EntityType, EntitySource] = {s.entity_type: s for s in sources}
        self.is_online = is_online
        self.retention = retention
        self.deleted_retention = deleted_retention
        self.pending_threshold = pending_threshold
        self.max_retries = max_retries
        self.temp_entity_max_age = temp_entity_max_age
        self.expected_schema_version = expected_schema_version

    # --- Preload ---

    def preload(self, entity_type: EntityType) -> int:
        """Fetch all entities of one type and upsert them with fetched_at=now.

        Returns:
            Number of records stored (0 when offline or on failure)
        """
        entity_type = EntityType(entity_type)
        label = entity_type.resource
        if not self.is_online():
            _log(f"Cannot preload {label}: offline")
            return 0

        source = self.sources.get(entity_type)
        if source is None:
            _log(f"Cannot preload {label}: no source configured")
            return 0

        _log(f"Preloading {label}...")
        try:
            entities = source.fetch_all()
        except NetworkError as exc:
            _log(f"Error preloading {label}: {exc}")
            return 0

        now = utcnow()
        records: List[CacheRecord] = []
        skipped = 0
        for entity in entities:
            try:
                records.append(CacheRecord.from_entity(entity_type, entity, fetched_at=now))
            except (ValueError, AttributeError):
                skipped += 1
        if skipped:
            _log(f"Skipped {skipped} {label} without an id")

        try:
            stored = self.store.put_many(records)
            self.store.set_sync_metadata(preload_key(entity_type), SyncStatus.IDLE, now)
        except StorageError as exc:
            _log(f"Error storing preloaded {label}: {exc}")
            return 0

        _log(f"Preloaded {stored} {label}")
        return stored

    def preload_providers(self) -> int:
        return self.preload(EntityType.PROVIDER)

    def preload_clients(self) -> int:
        return self.preload(EntityType.CLIENT)

    def preload_all(self) -> Dict[str, int]:
        """Preload every tracked type; one failing type does not stop the other."""
        return {entity_type.resource: self.preload(entity_type) for entity_type in TRACKED_TYPES}

    # --- Cleanup ---

    def clean_old_data(self, now: Optional[datetime] = None) -> int:
        """Evict stale cached data.

        Removes records fetched longer ago than the retention period,
        records whose entity was soft-deleted longer ago than the deleted
        retention period, and pending operations already confirmed synced.
        Unsynced operations are always kept.

        Returns:
            Number of rows removed
        """
        now = now or utcnow()
        cutoff = now - self.retention
        removed = 0
        for entity_type in TRACKED_TYPES:
            try:
                stale = self.store.delete_older_than(entity_type, cutoff)
                deleted = self._purge_soft_deleted(entity_type, now)
            except StorageError as exc:
                _log(f"Error cleaning {entity_type.resource}: {exc}")
                continue
            if stale or deleted:
                _log(f"Cleaned {stale} stale and {deleted} deleted {entity_type.resource}")
            removed += stale + deleted

        try:
            synced = self.store.delete_synced_operations()
        except StorageError as exc:
            _log(f"Error cleaning synced operations: {exc}")
            synced = 0
        if synced:
            _log(f"Cleaned {synced} synced operations")
        return removed + synced

    def _purge_soft_deleted(self, entity_type: EntityType, now: datetime) -> int:
        cutoff = now - self.deleted_retention
        expired = []
        for record in self.store.get_all(entity_type):
            deleted_at = parse_iso(record.entity.get("deleted_at"))
            if deleted_at is not None and deleted_at < cutoff:
                expired.append(record.entity_id)
        return self.store.delete_many(entity_type, expired)

    def clear_all_cache(self) -> bool:
        """Delete all records, pending operations and sync metadata.

        The schema version is kept.
        """
        try:
            self.store.clear()
            self.store.clear_pending()
            self.store.clear_sync_metadata()
        except StorageError as exc:
            _log(f"Error clearing cache: {exc}")
            return False
        _log("All cache cleared")
        return True

    # --- Reads for collaborators ---

    def get_cached(self, entity_type: EntityType, entity_id: str) -> Optional[Dict[str, Any]]:
        try:
            record = self.store.get(entity_type, entity_id)
        except StorageError as exc:
            _log(f"Error reading {entity_type} {entity_id}: {exc}")
            return None
        return record.entity if record else None

    def list_cached(self, entity_type: EntityType) -> List[Dict[str, Any]]:
        try:
            return [record.entity for record in self.store.get_all(entity_type)]
        except StorageError as exc:
            _log(f"Error reading {EntityType(entity_type).resource}: {exc}")
            return []

    # --- Diagnostics ---

    def get_cache_stats(self) -> CacheStats:
        """Count live records; zeroed stats if the store can't be read."""
        try:
            return CacheStats(
                providers_count=self.store.count(EntityType.PROVIDER),
                clients_count=self.store.count(EntityType.CLIENT),
                pending_operations_count=self.store.count_pending(),
                last_sync=self._last_successful_sync(),
                cache_size=self.store.estimate_size(),
            )
        except StorageError as exc:
            _log(f"Error getting cache stats: {exc}")
            return CacheStats()

    def _last_successful_sync(self) -> Optional[datetime]:
        keys = [preload_key(entity_type) for entity_type in TRACKED_TYPES] + [SYNC_KEY]
        times = []
        for key in keys:
            meta = self.store.get_sync_metadata(key)
            if meta and meta.status != SyncStatus.ERROR and meta.last_sync:
                times.append(meta.last_sync)
        return max(times) if times else None

    def check_cache_health(self, now: Optional[datetime] = None) -> CacheHealth:
        """Run integrity checks. Never raises; failures become issues."""
        health = CacheHealth()
        if not self.store.is_readable():
            health.issues.append("Local store is unreadable")
            return health

        now = now or utcnow()
        try:
            version = self.store.get_schema_version()
            if version != self.expected_schema_version:
                health.issues.append(
                    f"Schema version {version} does not match expected {self.expected_schema_version}"
                )
                return health

            pending = self.store.count_pending()
            if pending > self.pending_threshold:
                health.issues.append(
                    f"{pending} pending operations exceed the limit of {self.pending_threshold}"
                )

            failed = self.store.count_pending(min_retries=self.max_retries)
            if failed:
                health.issues.append(f"{failed} operations failed after {self.max_retries} retries")

            for entity_type in TRACKED_TYPES:
                stale_temp = self._count_old_temporary(entity_type, now)
                if stale_temp:
                    days = self.temp_entity_max_age.days
                    health.issues.append(
                        f"{stale_temp} temporary {entity_type.resource} older than {days} days"
                    )

            sync_meta = self.store.get_sync_metadata(SYNC_KEY)
            if sync_meta and sync_meta.status == SyncStatus.ERROR:
                health.issues.append("Last sync failed")
        except Exception as exc:
            _log(f"Error checking cache health: {exc}")
            health.issues.append(f"Error checking cache health: {exc}")
        return health

    def _count_old_temporary(self, entity_type: EntityType, now: datetime) -> int:
        cutoff = now - self.temp_entity_max_age
        count = 0
        for record in self.store.get_all(entity_type):
            if not record.is_temporary:
                continue
            created = parse_iso(record.entity.get("created_at")) or record.fetched_at
            if created < cutoff:
                count += 1
        return count
