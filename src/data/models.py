"""Data models for the offline reference-data cache.

This module defines the shapes that flow between the local store, the cache
manager and the sync manager:

1. CACHE RECORDS
   - One record per (entity_type, entity_id); last write wins
   - fetched_at is always UTC and drives staleness eviction

2. PENDING OPERATIONS
   - Mutations recorded while offline, replayed in insertion order
   - Kept until the backend confirms them

3. DERIVED SUMMARIES
   - CacheStats and CacheHealth are computed on demand, never stored
   - to_dict() emits the camelCase keys diagnostics consumers expect
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


TEMP_ID_PREFIX = "temp_"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, tolerating a trailing 'Z'.

    Naive values are assumed to be UTC. Returns None for empty or
    unparseable input.
    """
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# Enumerations
# =============================================================================


class EntityType(str, Enum):
    """Reference entity types tracked by the cache."""

    PROVIDER = "provider"
    CLIENT = "client"

    @property
    def resource(self) -> str:
        """REST collection path segment (e.g. 'providers')."""
        return f"{self.value}s"


class OperationType(str, Enum):
    """Kind of mutation recorded while offline."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncStatus(str, Enum):
    """Status stored alongside sync metadata entries."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


# =============================================================================
# Persisted shapes
# =============================================================================


@dataclass
class CacheRecord:
    """A cached reference entity plus the time it was fetched."""

    entity_type: EntityType
    entity_id: str
    entity: Dict[str, Any]
    fetched_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_entity(
        cls,
        entity_type: EntityType,
        entity: Dict[str, Any],
        fetched_at: Optional[datetime] = None,
    ) -> "CacheRecord":
        """Wrap an API entity; the entity must carry an 'id'."""
        entity_id = entity.get("id")
        if entity_id is None or entity_id == "":
            raise ValueError(f"{entity_type.value} entity has no id")
        return cls(
            entity_type=EntityType(entity_type),
            entity_id=str(entity_id),
            entity=entity,
            fetched_at=fetched_at or utcnow(),
        )

    @property
    def is_temporary(self) -> bool:
        """True when the entity was created offline and has no server id yet."""
        return self.entity_id.startswith(TEMP_ID_PREFIX)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utcnow()) - self.fetched_at).total_seconds()


@dataclass
class PendingOperation:
    """A mutation attempted while offline, waiting to be replayed."""

    operation_type: OperationType
    entity_type: EntityType
    payload: Dict[str, Any] = field(default_factory=dict)
    entity_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    synced: bool = False
    retries: int = 0
    error: Optional[str] = None
    id: Optional[int] = None  # Assigned by the store; insertion order

    @property
    def targets_temporary_entity(self) -> bool:
        return bool(self.entity_id) and self.entity_id.startswith(TEMP_ID_PREFIX)


@dataclass
class SyncMetadata:
    """Last sync time and status for one sync key."""

    key: str
    last_sync: datetime
    status: SyncStatus = SyncStatus.IDLE


# =============================================================================
# Derived summaries
# =============================================================================


@dataclass
class CacheStats:
    """On-demand summary of the cache contents.

    Units:
    - cache_size: bytes of serialized cached data (approximate)
    """

    providers_count: int = 0
    clients_count: int = 0
    pending_operations_count: int = 0
    last_sync: Optional[datetime] = None
    cache_size: int = 0  # Unit: bytes

    @property
    def cache_size_display(self) -> str:
        return f"{self.cache_size / 1024:.2f} KB"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providersCount": self.providers_count,
            "clientsCount": self.clients_count,
            "pendingOperationsCount": self.pending_operations_count,
            "lastSync": to_iso(self.last_sync),
            "cacheSize": self.cache_size_display,
            "cacheSizeBytes": self.cache_size,
        }


@dataclass
class CacheHealth:
    """Result of the cache integrity checks."""

    issues: List[str] = field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {"isHealthy": self.is_healthy, "issues": list(self.issues)}
