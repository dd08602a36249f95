"""Schema migrations for the local store.

Each step moves the store from ``version - 1`` to ``version`` and is safe to
re-run: tables are created with IF NOT EXISTS and columns are only added when
missing. The runner records the new version after every successful step, so a
failure leaves the store at the last step that completed.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .errors import MigrationError, StorageError
from .models import utcnow
from .persistence import LocalStore, format_ts


def _log(msg: str) -> None:
    print(f"[migration] {msg}", flush=True)


@dataclass(frozen=True)
class MigrationStep:
    """A single, narrow schema change."""

    version: int
    description: str
    apply: Callable[[sqlite3.Connection], None]


def table_columns(conn: sqlite3.Connection, table: str) -> List[str]:
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def _add_column(conn: sqlite3.Connection, table: str, column: str, definition: str) -> bool:
    """Add a column unless it already exists. Returns True if added."""
    if column in table_columns(conn, table):
        return False
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
    return True


# --- Steps ---


def _create_base_tables(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS cache_records (
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            data JSON NOT NULL,
            PRIMARY KEY (entity_type, entity_id)
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS pending_operations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            operation_type TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            entity_id TEXT,
            payload JSON NOT NULL,
            created_at TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_pending_entity
        ON pending_operations(entity_type, entity_id, id)
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS sync_metadata (
            key TEXT PRIMARY KEY,
            last_sync TEXT NOT NULL,
            status TEXT NOT NULL
        )
    """)


def _add_fetched_at(conn: sqlite3.Connection) -> None:
    # Existing rows predate fetch tracking; treat them as fetched now so
    # they get one full retention period before eviction.
    _add_column(conn, "cache_records", "fetched_at", "TEXT")
    conn.execute(
        "UPDATE cache_records SET fetched_at = ? WHERE fetched_at IS NULL",
        (format_ts(utcnow()),),
    )
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_records_fetched_at
        ON cache_records(entity_type, fetched_at)
    """)


def _add_replay_tracking(conn: sqlite3.Connection) -> None:
    _add_column(conn, "pending_operations", "retries", "INTEGER NOT NULL DEFAULT 0")
    _add_column(conn, "pending_operations", "error", "TEXT")
    _add_column(conn, "pending_operations", "synced", "INTEGER NOT NULL DEFAULT 0")


MIGRATIONS: Sequence[MigrationStep] = (
    MigrationStep(1, "create cache, pending operation and sync metadata tables", _create_base_tables),
    MigrationStep(2, "add fetched_at to cached records (default: now)", _add_fetched_at),
    MigrationStep(3, "add retries, error and synced to pending operations", _add_replay_tracking),
)

CURRENT_SCHEMA_VERSION = MIGRATIONS[-1].version


class MigrationRunner:
    """Applies ordered migration steps to a LocalStore."""

    def __init__(self, store: LocalStore, steps: Sequence[MigrationStep] = MIGRATIONS):
        ordered = sorted(steps, key=lambda step: step.version)
        versions = [step.version for step in ordered]
        if len(set(versions)) != len(versions):
            raise ValueError(f"Duplicate migration versions: {versions}")
        self.store = store
        self.steps: List[MigrationStep] = ordered

    @property
    def target_version(self) -> int:
        return self.steps[-1].version if self.steps else 0

    def pending_steps(self, current: Optional[int] = None) -> List[MigrationStep]:
        if current is None:
            current = self.store.get_schema_version()
        return [step for step in self.steps if step.version > current]

    def run(self) -> int:
        """Bring the store up to the target version.

        Returns:
            The schema version after migrating

        Raises:
            MigrationError: If a step fails (later steps are not attempted)
        """
        try:
            current = self.store.get_schema_version()
        except StorageError as exc:
            raise MigrationError(0, f"Cannot read schema version: {exc}", exc) from exc

        if current > self.target_version:
            _log(f"Store is at v{current}, newer than v{self.target_version}; leaving it alone")
            return current

        pending = self.pending_steps(current)
        if not pending:
            _log(f"Database ready (v{current})")
            return current

        _log(f"Migrating from v{current} to v{self.target_version} ({len(pending)} step(s))")
        for step in pending:
            try:
                with self.store.connect() as conn:
                    step.apply(conn)
                    self.store.set_schema_version(step.version, conn)
            except Exception as exc:
                _log(f"Step v{step.version} failed ({step.description}): {exc}")
                raise MigrationError(step.version, f"{step.description}: {exc}", exc) from exc
            current = step.version
            _log(f"Applied v{step.version}: {step.description}")

        _log(f"Database ready (v{current})")
        return current


def migrate_database(store: LocalStore, steps: Sequence[MigrationStep] = MIGRATIONS) -> int:
    """Migrate the store to the latest schema. Safe to call repeatedly."""
    return MigrationRunner(store, steps).run()
