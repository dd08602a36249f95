"""Local persistent store for cached reference data.

Backed by a single SQLite file so cached providers/clients, pending offline
operations and the schema version survive restarts.
All data is stored in ~/.offline_cache/ unless OFFLINE_CACHE_DATA_DIR is set.

Table shapes (other than the schema version table) are owned by the
migration runner in ``migrations.py``; call ``migrate_database`` before
reading or writing records.
"""

from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .errors import StorageError
from .models import (
    CacheRecord,
    EntityType,
    OperationType,
    PendingOperation,
    SyncMetadata,
    SyncStatus,
    parse_iso,
    utcnow,
)

DB_FILENAME = "cache.db"


def get_data_dir() -> Path:
    """Get user-persistent data directory.

    Returns ~/.offline_cache/ by default, or OFFLINE_CACHE_DATA_DIR env var.
    Creates the directory if it doesn't exist.
    """
    data_dir = Path(os.environ.get("OFFLINE_CACHE_DATA_DIR", Path.home() / ".offline_cache"))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def format_ts(value: datetime) -> str:
    """Serialize a timestamp so that string order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class LocalStore:
    """Persistent storage for cached entities and offline operations.

    Every public method opens its own short-lived connection, so a single
    instance can be shared between the coordinator threads and diagnostics
    requests. Failures surface as StorageError.
    """

    def __init__(self, data_dir: Optional[Path] = None, db_name: str = DB_FILENAME):
        self.data_dir = Path(data_dir) if data_dir else get_data_dir()
        self.db_path = self.data_dir / db_name
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create data directory {self.data_dir}: {exc}", exc) from exc
        self._init_db()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and always close it."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open {self.db_path}: {exc}", exc) from exc
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(f"Storage operation failed: {exc}", exc) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create the schema version table if it doesn't exist."""
        with self.connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    version INTEGER NOT NULL
                )
            """)

    # --- Schema version ---

    def get_schema_version(self, conn: Optional[sqlite3.Connection] = None) -> int:
        """Return the stored schema version, 0 when the store is new."""
        if conn is not None:
            row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
            return int(row[0]) if row else 0
        with self.connect() as own:
            return self.get_schema_version(own)

    def set_schema_version(self, version: int, conn: Optional[sqlite3.Connection] = None) -> None:
        """Record a new schema version. Versions never decrease."""
        if conn is None:
            with self.connect() as own:
                return self.set_schema_version(version, own)
        current = self.get_schema_version(conn)
        if version < current:
            raise ValueError(f"Schema version cannot go backwards ({current} -> {version})")
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (id, version) VALUES (1, ?)",
            (int(version),),
        )

    # --- Cache records ---

    def get(self, entity_type: EntityType, entity_id: str) -> Optional[CacheRecord]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT entity_type, entity_id, data, fetched_at FROM cache_records "
                "WHERE entity_type = ? AND entity_id = ?",
                (EntityType(entity_type).value, str(entity_id)),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_all(self, entity_type: EntityType) -> List[CacheRecord]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT entity_type, entity_id, data, fetched_at FROM cache_records "
                "WHERE entity_type = ? ORDER BY entity_id",
                (EntityType(entity_type).value,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def put(self, record: CacheRecord) -> None:
        """Insert or overwrite a single record (last write wins)."""
        self.put_many([record])

    def put_many(self, records: Iterable[CacheRecord]) -> int:
        """Upsert records in one transaction.

        Returns:
            Number of records written
        """
        rows = [self._record_to_row(record) for record in records]
        if not rows:
            return 0
        with self.connect() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO cache_records (entity_type, entity_id, data, fetched_at) "
                "VALUES (?, ?, ?, ?)",
                rows,
            )
        return len(rows)

    def delete(self, entity_type: EntityType, entity_id: str) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM cache_records WHERE entity_type = ? AND entity_id = ?",
                (EntityType(entity_type).value, str(entity_id)),
            )
            return cursor.rowcount > 0

    def delete_many(self, entity_type: EntityType, entity_ids: Iterable[str]) -> int:
        ids = [(EntityType(entity_type).value, str(entity_id)) for entity_id in entity_ids]
        if not ids:
            return 0
        with self.connect() as conn:
            cursor = conn.executemany(
                "DELETE FROM cache_records WHERE entity_type = ? AND entity_id = ?",
                ids,
            )
            return cursor.rowcount

    def delete_older_than(self, entity_type: EntityType, cutoff: datetime) -> int:
        """Remove records fetched before cutoff.

        Runs as a single DELETE, so concurrent callers never remove the same
        row twice.

        Returns:
            Number of rows deleted
        """
        with self.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM cache_records WHERE entity_type = ? AND fetched_at < ?",
                (EntityType(entity_type).value, format_ts(cutoff)),
            )
            return cursor.rowcount

    def clear(self, entity_type: Optional[EntityType] = None) -> None:
        """Clear records of one entity type, or all records.

        Args:
            entity_type: Specific type to clear, or None for all
        """
        with self.connect() as conn:
            if entity_type is not None:
                conn.execute(
                    "DELETE FROM cache_records WHERE entity_type = ?",
                    (EntityType(entity_type).value,),
                )
            else:
                conn.execute("DELETE FROM cache_records")

    def count(self, entity_type: Optional[EntityType] = None) -> int:
        with self.connect() as conn:
            if entity_type is None:
                row = conn.execute("SELECT COUNT(*) FROM cache_records").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM cache_records WHERE entity_type = ?",
                    (EntityType(entity_type).value,),
                ).fetchone()
        return int(row[0])

    # --- Pending operations ---

    def add_pending_operation(self, operation: PendingOperation) -> PendingOperation:
        """Append an operation to the replay queue and return it with its id."""
        try:
            payload = json.dumps(operation.payload)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Operation payload is not serializable: {exc}", exc) from exc
        with self.connect() as conn:
            cursor = conn.execute(
                "INSERT INTO pending_operations "
                "(operation_type, entity_type, entity_id, payload, created_at, retries, error, synced) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    OperationType(operation.operation_type).value,
                    EntityType(operation.entity_type).value,
                    operation.entity_id,
                    payload,
                    format_ts(operation.created_at),
                    operation.retries,
                    operation.error,
                    int(operation.synced),
                ),
            )
            operation.id = cursor.lastrowid
        return operation

    def list_pending_operations(
        self,
        include_synced: bool = False,
        entity_type: Optional[EntityType] = None,
    ) -> List[PendingOperation]:
        """Return queued operations in insertion (replay) order."""
        query = (
            "SELECT id, operation_type, entity_type, entity_id, payload, created_at, "
            "retries, error, synced FROM pending_operations"
        )
        clauses, params = [], []
        if not include_synced:
            clauses.append("synced = 0")
        if entity_type is not None:
            clauses.append("entity_type = ?")
            params.append(EntityType(entity_type).value)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id"
        with self.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_operation(row) for row in rows]

    def mark_synced(self, operation_id: int) -> None:
        with self.connect() as conn:
            conn.execute("UPDATE pending_operations SET synced = 1, error = NULL WHERE id = ?", (operation_id,))

    def record_failure(self, operation_id: int, error: str) -> None:
        """Increment the retry counter and remember the last error."""
        with self.connect() as conn:
            conn.execute(
                "UPDATE pending_operations SET retries = retries + 1, error = ? WHERE id = ?",
                (error, operation_id),
            )

    def remap_entity_id(self, entity_type: EntityType, old_id: str, new_id: str) -> int:
        """Point unsynced operations at an entity's new id.

        Used once the server assigns a real id to an entity created offline.

        Returns:
            Number of operations updated
        """
        with self.connect() as conn:
            cursor = conn.execute(
                "UPDATE pending_operations SET entity_id = ? "
                "WHERE entity_type = ? AND entity_id = ? AND synced = 0",
                (str(new_id), EntityType(entity_type).value, str(old_id)),
            )
            return cursor.rowcount

    def delete_pending_operation(self, operation_id: int) -> bool:
        with self.connect() as conn:
            cursor = conn.execute("DELETE FROM pending_operations WHERE id = ?", (operation_id,))
            return cursor.rowcount > 0

    def delete_synced_operations(self) -> int:
        with self.connect() as conn:
            cursor = conn.execute("DELETE FROM pending_operations WHERE synced = 1")
            return cursor.rowcount

    def count_pending(self, include_synced: bool = False, min_retries: int = 0) -> int:
        query = "SELECT COUNT(*) FROM pending_operations WHERE retries >= ?"
        if not include_synced:
            query += " AND synced = 0"
        with self.connect() as conn:
            row = conn.execute(query, (min_retries,)).fetchone()
        return int(row[0])

    def clear_pending(self) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM pending_operations")

    # --- Sync metadata ---

    def set_sync_metadata(
        self,
        key: str,
        status: SyncStatus = SyncStatus.IDLE,
        last_sync: Optional[datetime] = None,
    ) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_metadata (key, last_sync, status) VALUES (?, ?, ?)",
                (key, format_ts(last_sync or utcnow()), SyncStatus(status).value),
            )

    def get_sync_metadata(self, key: str) -> Optional[SyncMetadata]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT key, last_sync, status FROM sync_metadata WHERE key = ?", (key,)
            ).fetchone()
        if not row:
            return None
        return SyncMetadata(key=row[0], last_sync=parse_iso(row[1]), status=SyncStatus(row[2]))

    def clear_sync_metadata(self) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM sync_metadata")

    # --- Diagnostics ---

    def estimate_size(self) -> int:
        """Approximate bytes of serialized cached data and queued payloads."""
        with self.connect() as conn:
            records = conn.execute("SELECT COALESCE(SUM(LENGTH(data)), 0) FROM cache_records").fetchone()
            pending = conn.execute("SELECT COALESCE(SUM(LENGTH(payload)), 0) FROM pending_operations").fetchone()
        return int(records[0]) + int(pending[0])

    def is_readable(self) -> bool:
        """Check the database file passes SQLite's quick integrity check."""
        try:
            with self.connect() as conn:
                row = conn.execute("PRAGMA quick_check").fetchone()
                return bool(row) and row[0] == "ok"
        except StorageError:
            return False

    def reset(self) -> None:
        """Delete the database file and start again from schema version 0."""
        try:
            if self.db_path.exists():
                self.db_path.unlink()
        except OSError as exc:
            raise StorageError(f"Cannot delete {self.db_path}: {exc}", exc) from exc
        self._init_db()

    # --- Row conversion ---

    @staticmethod
    def _record_to_row(record: CacheRecord) -> tuple:
        try:
            data = json.dumps(record.entity)
        except (TypeError, ValueError) as exc:
            raise StorageError(
                f"{record.entity_type} {record.entity_id} is not serializable: {exc}", exc
            ) from exc
        return (
            EntityType(record.entity_type).value,
            str(record.entity_id),
            data,
            format_ts(record.fetched_at),
        )

    @staticmethod
    def _row_to_record(row) -> CacheRecord:
        entity_type, entity_id, data, fetched_at = row
        try:
            entity = json.loads(data)
        except ValueError as exc:
            raise StorageError(f"Corrupt cache record {entity_type}/{entity_id}: {exc}", exc) from exc
        return CacheRecord(
            entity_type=EntityType(entity_type),
            entity_id=entity_id,
            entity=entity,
            fetched_at=parse_iso(fetched_at) or utcnow(),
        )

    @staticmethod
    def _row_to_operation(row) -> PendingOperation:
        op_id, op_type, entity_type, entity_id, payload, created_at, retries, error, synced = row
        return PendingOperation(
            id=op_id,
            operation_type=OperationType(op_type),
            entity_type=EntityType(entity_type),
            entity_id=entity_id,
            payload=json.loads(payload) if payload else {},
            created_at=parse_iso(created_at) or utcnow(),
            retries=int(retries or 0),
            error=error,
            synced=bool(synced),
        )
